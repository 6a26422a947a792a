"""Usage snapshot for the signed-in account, refreshed on a timer and on focus."""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from typing import Callable, Optional

from pydantic import ValidationError

from probeops.config import RateLimitSettings
from probeops.domain.models import RateLimitModel, SubscriptionTier, UsageWindow
from probeops.logging import logger
from probeops.services.api import ApiClient
from probeops.services.auth_state import AuthState, AuthStateMachine, AuthStatus
from probeops.services.exceptions import ApiError, ServiceError, Unauthorized, UnrecognizedShape
from probeops.services.notifications import Notifier
from probeops.utils.datetime import seconds_since, utc_now

RATE_LIMITS_PATH = "/user/rate-limits"


@dataclass(frozen=True, slots=True)
class TierLimits:
    daily: int
    monthly: int
    probe_interval: int


TIER_DEFAULTS: dict[SubscriptionTier, TierLimits] = {
    SubscriptionTier.FREE: TierLimits(daily=100, monthly=1000, probe_interval=15),
    SubscriptionTier.STANDARD: TierLimits(daily=500, monthly=5000, probe_interval=5),
    SubscriptionTier.ENTERPRISE: TierLimits(daily=1000, monthly=10000, probe_interval=5),
}


def fallback_snapshot(tier: SubscriptionTier) -> RateLimitModel:
    limits = TIER_DEFAULTS[tier]
    return RateLimitModel(
        tier=tier,
        daily=UsageWindow(limit=limits.daily, used=0, remaining=limits.daily),
        monthly=UsageWindow(limit=limits.monthly, used=0, remaining=limits.monthly),
        probe_interval=limits.probe_interval,
        fetched_at=utc_now(),
        is_fallback=True,
    )


def usage_percent(window: UsageWindow) -> int:
    """Whole-number share of the window used, capped at 100 for display."""

    if window.limit <= 0:
        return 100 if window.used > 0 else 0
    return min(100, math.floor(window.used / window.limit * 100 + 0.5))


class RateLimitView:
    """Display values recomputed from the snapshot on every access."""

    def __init__(self, snapshot: RateLimitModel, threshold_percent: int = 80) -> None:
        self.snapshot = snapshot
        self.threshold_percent = threshold_percent

    @property
    def daily_usage_percent(self) -> int:
        return usage_percent(self.snapshot.daily)

    @property
    def monthly_usage_percent(self) -> int:
        return usage_percent(self.snapshot.monthly)

    @property
    def is_approaching_daily_limit(self) -> bool:
        return self.daily_usage_percent >= self.threshold_percent

    @property
    def is_approaching_monthly_limit(self) -> bool:
        return self.monthly_usage_percent >= self.threshold_percent

    @property
    def age_seconds(self) -> float | None:
        return seconds_since(self.snapshot.fetched_at)


Listener = Callable[[Optional[RateLimitModel]], None]


class RateLimitCache:
    def __init__(
        self,
        api: ApiClient,
        auth: AuthStateMachine,
        settings: RateLimitSettings | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._api = api
        self._auth = auth
        self._settings = settings or RateLimitSettings()
        self._notifier = notifier or auth.notifier
        self._snapshot: RateLimitModel | None = None
        self._epoch = 0
        self._tier: SubscriptionTier | None = None
        self._session: tuple[int, str | None] | None = None
        self._poller: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe: Callable[[], None] | None = None
        self._listeners: list[Listener] = []

    @property
    def snapshot(self) -> RateLimitModel | None:
        return self._snapshot

    @property
    def view(self) -> RateLimitView | None:
        if self._snapshot is None:
            return None
        return RateLimitView(self._snapshot, self._settings.approaching_threshold_percent)

    @property
    def is_active(self) -> bool:
        return self._poller is not None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def start(self) -> None:
        """Follow the auth state; must be called from a running event loop."""

        if self._unsubscribe is not None:
            return
        self._unsubscribe = self._auth.subscribe(self._on_auth_change)
        self._on_auth_change(self._auth.state)

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        cancelled = self._deactivate()
        if cancelled:
            await asyncio.gather(*cancelled, return_exceptions=True)

    def on_focus(self) -> None:
        """Window regained focus: refetch in the background."""

        self.request_refresh()

    def request_refresh(self) -> None:
        if self.is_active:
            self._spawn(self._fetch_quietly())

    async def refresh(self) -> RateLimitModel | None:
        """Fetch right now, bypassing the timer. Errors propagate."""

        if not self._auth.state.is_authenticated:
            return None
        return await self._fetch()

    # Internal helpers -------------------------------------------------

    def _on_auth_change(self, state: AuthState) -> None:
        if state.is_authenticated:
            session = (state.user.id, self._auth.token)
            tier = state.user.subscription_tier
            if self.is_active and session != self._session:
                # A different session; the old usage must not leak into it.
                self._deactivate()
            if not self.is_active:
                self._session = session
                self._tier = tier
                self._activate()
            elif tier is not self._tier:
                self._tier = tier
                self._spawn(self._fetch_quietly())
        elif state.status is AuthStatus.ANONYMOUS and (self.is_active or self._snapshot is not None):
            self._deactivate()

    def _activate(self) -> None:
        self._epoch += 1
        self._poller = asyncio.get_running_loop().create_task(self._poll())
        logger.debug("rate_limit_polling_started", interval=self._settings.refresh_interval_seconds)

    def _deactivate(self) -> list[asyncio.Task]:
        """Drop the snapshot and cancel background work; returns the cancelled tasks."""

        self._epoch += 1
        self._tier = None
        self._session = None
        poller, self._poller = self._poller, None
        tasks = [task for task in self._tasks if task is not asyncio.current_task()]
        if poller is not None and poller is not asyncio.current_task():
            tasks.append(poller)
        for task in tasks:
            task.cancel()
        self._set_snapshot(None)
        return tasks

    async def _poll(self) -> None:
        while True:
            await self._fetch_quietly()
            await asyncio.sleep(self._settings.refresh_interval_seconds)

    async def _fetch_quietly(self) -> None:
        try:
            await self._fetch()
        except ServiceError as exc:
            logger.warning("rate_limit_refresh_failed", error=str(exc))

    async def _fetch(self) -> RateLimitModel:
        epoch = self._epoch
        try:
            payload = await self._api.get(RATE_LIMITS_PATH)
            try:
                snapshot = RateLimitModel.model_validate(payload)
            except ValidationError as exc:
                raise UnrecognizedShape("rate limit", payload) from exc
            snapshot = snapshot.model_copy(update={"fetched_at": utc_now(), "is_fallback": False})
        except Unauthorized:
            self._notifier.notify("session.expired.title", "session.expired.body", variant="destructive")
            raise
        except (ApiError, UnrecognizedShape) as exc:
            tier = self._known_tier()
            if tier is None:
                raise
            logger.warning("rate_limit_fallback_used", tier=tier.value, error=str(exc))
            snapshot = fallback_snapshot(tier)

        if epoch != self._epoch or not self._auth.state.is_authenticated:
            logger.debug("rate_limit_response_ignored", epoch=epoch)
            return snapshot
        self._set_snapshot(snapshot)
        return snapshot

    def _known_tier(self) -> SubscriptionTier | None:
        user = self._auth.user
        return user.subscription_tier if user is not None else None

    def _set_snapshot(self, snapshot: RateLimitModel | None) -> None:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("rate_limit_listener_failed")

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


__all__ = [
    "RateLimitCache",
    "RateLimitView",
    "TIER_DEFAULTS",
    "TierLimits",
    "fallback_snapshot",
    "usage_percent",
]
