"""Tests for role and tier capability checks."""

from __future__ import annotations

import pytest

from conftest import user_payload
from probeops.domain.models import Role, SubscriptionTier, UserModel
from probeops.services.rbac import RbacView, has_role, is_admin, tier_satisfies


def _user(role: str = "user", tier: str = "free", legacy_admin: bool = False) -> UserModel:
    return UserModel(id=1, username="u", role=role, subscription_tier=tier, is_admin=legacy_admin)


def test_admin_override_for_role_checks():
    assert has_role(_user("admin"), "user") is True
    assert has_role(_user("admin"), Role.ADMIN) is True
    assert has_role(_user("user"), "admin") is False
    assert has_role(_user("user"), "user") is True
    assert has_role(None, "user") is False


def test_is_admin_honours_legacy_flag():
    assert is_admin(_user("admin")) is True
    assert is_admin(_user("user", legacy_admin=True)) is True
    assert is_admin(_user("user")) is False
    assert is_admin(None) is False


@pytest.mark.parametrize(
    ("tier", "expected"),
    [("enterprise", True), ("standard", True), ("free", False)],
)
def test_tier_satisfies_standard(tier, expected):
    assert tier_satisfies(_user(tier=tier), SubscriptionTier.STANDARD) is expected


def test_tier_order_and_missing_session():
    assert tier_satisfies(_user(tier="free"), "free") is True
    assert tier_satisfies(_user(tier="standard"), "enterprise") is False
    assert tier_satisfies(None, "free") is False


@pytest.mark.asyncio
async def test_view_rederives_after_session_changes(auth, backend):
    view = RbacView(auth)
    await auth.init()
    assert view.has_role("user") is False
    assert view.subscription_tier() is None

    backend.on("POST", "/users/login", json={"token": "t", "user": user_payload(subscription_tier="standard")})
    await auth.login({"email": "bob@example.com", "password": "pw"})
    assert view.has_role("user") is True
    assert view.tier_satisfies("standard") is True
    assert view.is_admin() is False

    auth.confirm_tier_change("free")
    assert view.tier_satisfies("standard") is False


def test_unknown_role_name_is_never_held():
    assert has_role(_user("user"), "viewer") is False
    assert has_role(_user("admin"), "viewer") is False
