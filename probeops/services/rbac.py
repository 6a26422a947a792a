"""Role and subscription-tier checks derived from the session user."""

from __future__ import annotations

from typing import TYPE_CHECKING

from probeops.domain.models import Role, SubscriptionTier, UserModel

if TYPE_CHECKING:
    from probeops.services.auth_state import AuthStateMachine


def is_admin(user: UserModel | None) -> bool:
    # Sessions stored before role normalization only carry the legacy flag.
    if user is None:
        return False
    return user.role is Role.ADMIN or user.is_admin is True


def has_role(user: UserModel | None, required: Role | str) -> bool:
    if user is None:
        return False
    try:
        required = Role(required)
    except ValueError:
        return False
    if user.role is Role.ADMIN:
        return True
    return user.role is required


def tier_satisfies(user: UserModel | None, minimum: SubscriptionTier | str) -> bool:
    if user is None:
        return False
    return user.subscription_tier.rank >= SubscriptionTier(minimum).rank


class RbacView:
    """Capability checks against whatever session the state machine holds now."""

    def __init__(self, auth: AuthStateMachine) -> None:
        self._auth = auth

    def is_admin(self) -> bool:
        return is_admin(self._auth.user)

    def has_role(self, required: Role | str) -> bool:
        return has_role(self._auth.user, required)

    def tier_satisfies(self, minimum: SubscriptionTier | str) -> bool:
        return tier_satisfies(self._auth.user, minimum)

    def subscription_tier(self) -> SubscriptionTier | None:
        user = self._auth.user
        return user.subscription_tier if user else None


__all__ = ["RbacView", "has_role", "is_admin", "tier_satisfies"]
