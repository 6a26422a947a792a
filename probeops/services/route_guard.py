"""Per-route access decisions for the dashboard views."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from probeops.config import RouteSettings
from probeops.domain.models import Role
from probeops.services.auth_state import AuthStateMachine
from probeops.services.notifications import Notifier
from probeops.services.rbac import has_role, is_admin


class GuardOutcome(str, Enum):
    LOADING = "loading"
    REDIRECT_LOGIN = "redirect_login"
    ACCESS_DENIED = "access_denied"
    RENDER = "render"


@dataclass(frozen=True, slots=True)
class Route:
    path: str
    required_role: Role | None = None


@dataclass(frozen=True, slots=True)
class GuardDecision:
    outcome: GuardOutcome
    route: Route
    redirect_to: str | None = None
    title: str | None = None
    message: str | None = None

    @property
    def should_render(self) -> bool:
        return self.outcome is GuardOutcome.RENDER


def admin_route(path: str) -> Route:
    return Route(path=path, required_role=Role.ADMIN)


class RouteGuard:
    def __init__(
        self,
        auth: AuthStateMachine,
        settings: RouteSettings | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._auth = auth
        self._settings = settings or RouteSettings()
        self._notifier = notifier or auth.notifier

    def decide(self, route: Route) -> GuardDecision:
        state = self._auth.state
        # No redirect until the stored session has been checked.
        if state.is_loading:
            return GuardDecision(GuardOutcome.LOADING, route)

        if not state.is_authenticated:
            return GuardDecision(
                GuardOutcome.REDIRECT_LOGIN,
                route,
                redirect_to=self._settings.login_path,
            )

        if route.required_role is not None and not (
            is_admin(state.user) or has_role(state.user, route.required_role)
        ):
            return GuardDecision(
                GuardOutcome.ACCESS_DENIED,
                route,
                redirect_to=self._settings.default_path,
                title=self._notifier.text("route.denied.title"),
                message=self._notifier.text("route.denied.body", role=route.required_role.value),
            )

        return GuardDecision(GuardOutcome.RENDER, route)


__all__ = ["GuardDecision", "GuardOutcome", "Route", "RouteGuard", "admin_route"]
