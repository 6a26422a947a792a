"""Rate limit cache: activation, fallback and refresh behaviour."""

from __future__ import annotations

import asyncio

import httpx
import pytest
import pytest_asyncio

from conftest import user_payload
from probeops.config import RateLimitSettings
from probeops.domain.models import RateLimitModel, SubscriptionTier, UsageWindow
from probeops.services.exceptions import ServerFault, Unauthorized
from probeops.services.rate_limit import (
    RATE_LIMITS_PATH,
    RateLimitCache,
    RateLimitView,
    fallback_snapshot,
    usage_percent,
)


def limits_payload(tier: str = "free", daily_used: int = 10, monthly_used: int = 100) -> dict:
    return {
        "tier": tier,
        "daily": {"limit": 100, "used": daily_used, "remaining": max(0, 100 - daily_used)},
        "monthly": {"limit": 1000, "used": monthly_used, "remaining": max(0, 1000 - monthly_used)},
        "probe_interval": 15,
    }


def expect_snapshot(cache: RateLimitCache, timeout: float = 1.0):
    """Awaitable resolving with the next non-empty snapshot the cache publishes."""

    future = asyncio.get_running_loop().create_future()

    def listener(snapshot):
        if snapshot is not None and not future.done():
            future.set_result(snapshot)

    unsubscribe = cache.subscribe(listener)
    future.add_done_callback(lambda _: unsubscribe())
    return asyncio.wait_for(future, timeout)


async def login(auth, backend, tier: str = "free", token: str = "t", **user) -> None:
    backend.on(
        "POST",
        "/users/login",
        json={"token": token, "user": user_payload(subscription_tier=tier, **user)},
    )
    await auth.login({"email": "bob@example.com", "password": "pw"})


@pytest_asyncio.fixture
async def cache(api, auth, notifier):
    cache = RateLimitCache(api, auth, RateLimitSettings(), notifier)
    cache.start()
    yield cache
    await cache.stop()


def test_usage_percent_rounds_and_clamps():
    assert usage_percent(UsageWindow(limit=100, used=150, remaining=0)) == 100
    assert usage_percent(UsageWindow(limit=8, used=1, remaining=7)) == 13
    assert usage_percent(UsageWindow(limit=0, used=0, remaining=0)) == 0


def test_view_flags_approaching_limits():
    snapshot = RateLimitModel.model_validate(limits_payload(daily_used=80, monthly_used=100))
    view = RateLimitView(snapshot, threshold_percent=80)

    assert view.daily_usage_percent == 80
    assert view.is_approaching_daily_limit is True
    assert view.monthly_usage_percent == 10
    assert view.is_approaching_monthly_limit is False
    assert view.age_seconds is None


def test_fallback_table_for_standard():
    snapshot = fallback_snapshot(SubscriptionTier.STANDARD)

    assert (snapshot.daily.limit, snapshot.monthly.limit, snapshot.probe_interval) == (500, 5000, 5)
    assert snapshot.daily.used == 0
    assert snapshot.monthly.remaining == 5000
    assert snapshot.is_fallback is True


@pytest.mark.asyncio
async def test_anonymous_has_no_snapshot(cache, auth, backend):
    await auth.init()

    assert cache.snapshot is None
    assert cache.view is None
    assert cache.is_active is False
    assert await cache.refresh() is None
    assert backend.calls("GET", RATE_LIMITS_PATH) == []


@pytest.mark.asyncio
async def test_login_activates_fetch(cache, auth, backend):
    await auth.init()
    backend.on("GET", RATE_LIMITS_PATH, json=limits_payload(daily_used=40))
    arrived = expect_snapshot(cache)

    await login(auth, backend)
    snapshot = await arrived

    assert cache.is_active
    assert snapshot.daily.used == 40
    assert snapshot.is_fallback is False
    assert snapshot.fetched_at is not None
    assert cache.view.daily_usage_percent == 40


@pytest.mark.asyncio
async def test_failed_fetch_uses_tier_defaults(cache, auth, backend):
    await auth.init()
    backend.on("GET", RATE_LIMITS_PATH, status=500, json={"error": "boom"})
    arrived = expect_snapshot(cache)

    await login(auth, backend, tier="standard")
    snapshot = await arrived

    assert snapshot.is_fallback is True
    assert snapshot.tier is SubscriptionTier.STANDARD
    assert (snapshot.daily.limit, snapshot.monthly.limit, snapshot.probe_interval) == (500, 5000, 5)
    assert snapshot.daily.used == 0


@pytest.mark.asyncio
async def test_unauthorized_is_not_masked_by_fallback(cache, auth, backend, notifier):
    await auth.init()
    backend.on("GET", RATE_LIMITS_PATH, status=401, json={"error": "Token expired"})
    await login(auth, backend)

    with pytest.raises(Unauthorized):
        await cache.refresh()

    assert cache.snapshot is None
    assert notifier.history[-1].title == "Session expired"


@pytest.mark.asyncio
async def test_logout_discards_snapshot_and_late_responses(cache, auth, backend):
    await auth.init()
    backend.on("GET", RATE_LIMITS_PATH, json=limits_payload())
    backend.on("POST", "/users/logout", json={})
    arrived = expect_snapshot(cache)
    await login(auth, backend)
    await arrived

    release = asyncio.Event()

    async def slow_limits(request: httpx.Request) -> httpx.Response:
        await release.wait()
        return httpx.Response(200, json=limits_payload(daily_used=99))

    backend.on("GET", RATE_LIMITS_PATH, handler=slow_limits)
    pending = asyncio.create_task(cache.refresh())
    await asyncio.sleep(0)

    await auth.logout()
    assert cache.snapshot is None
    assert cache.is_active is False

    release.set()
    late = await pending
    assert late.daily.used == 99
    assert cache.snapshot is None


@pytest.mark.asyncio
async def test_focus_triggers_refetch(cache, auth, backend):
    await auth.init()
    backend.on("GET", RATE_LIMITS_PATH, json=limits_payload(daily_used=10))
    arrived = expect_snapshot(cache)
    await login(auth, backend)
    await arrived

    backend.on("GET", RATE_LIMITS_PATH, json=limits_payload(daily_used=11))
    arrived = expect_snapshot(cache)
    cache.on_focus()
    snapshot = await arrived

    assert snapshot.daily.used == 11
    assert len(backend.calls("GET", RATE_LIMITS_PATH)) == 2


@pytest.mark.asyncio
async def test_tier_change_refetches(cache, auth, backend):
    await auth.init()
    backend.on("GET", RATE_LIMITS_PATH, json=limits_payload())
    arrived = expect_snapshot(cache)
    await login(auth, backend)
    await arrived

    backend.on("GET", RATE_LIMITS_PATH, json=limits_payload(tier="enterprise"))
    arrived = expect_snapshot(cache)
    auth.confirm_tier_change("enterprise")
    snapshot = await arrived

    assert snapshot.tier is SubscriptionTier.ENTERPRISE
    assert len(backend.calls("GET", RATE_LIMITS_PATH)) == 2


@pytest.mark.asyncio
async def test_explicit_refresh_returns_latest(cache, auth, backend):
    await auth.init()
    backend.on("GET", RATE_LIMITS_PATH, json=limits_payload(daily_used=5))
    arrived = expect_snapshot(cache)
    await login(auth, backend)
    await arrived

    backend.on("GET", RATE_LIMITS_PATH, json=limits_payload(daily_used=6))
    snapshot = await cache.refresh()

    assert snapshot.daily.used == 6
    assert cache.snapshot.daily.used == 6


@pytest.mark.asyncio
async def test_timer_refetches_without_prompting(api, auth, backend, notifier):
    cache = RateLimitCache(api, auth, RateLimitSettings(refresh_interval_seconds=1), notifier)
    cache.start()
    try:
        await auth.init()
        backend.on("GET", RATE_LIMITS_PATH, json=limits_payload(daily_used=1))
        arrived = expect_snapshot(cache)
        await login(auth, backend)
        await arrived

        backend.on("GET", RATE_LIMITS_PATH, json=limits_payload(daily_used=2))
        snapshot = await expect_snapshot(cache, timeout=3.0)
    finally:
        await cache.stop()

    assert snapshot.daily.used == 2
    assert len(backend.calls("GET", RATE_LIMITS_PATH)) == 2


@pytest.mark.asyncio
async def test_failure_after_session_ended_propagates(cache, auth, backend):
    await auth.init()
    backend.on("GET", RATE_LIMITS_PATH, json=limits_payload())
    backend.on("POST", "/users/logout", json={})
    arrived = expect_snapshot(cache)
    await login(auth, backend)
    await arrived

    release = asyncio.Event()

    async def failing_limits(request: httpx.Request) -> httpx.Response:
        await release.wait()
        return httpx.Response(500, json={"error": "boom"})

    backend.on("GET", RATE_LIMITS_PATH, handler=failing_limits)
    pending = asyncio.create_task(cache.refresh())
    await asyncio.sleep(0)
    await auth.logout()
    release.set()

    with pytest.raises(ServerFault):
        await pending
    assert cache.snapshot is None


@pytest.mark.asyncio
async def test_relogin_as_other_account_drops_previous_usage(cache, auth, backend):
    await auth.init()
    backend.on("GET", RATE_LIMITS_PATH, json=limits_payload(daily_used=90))
    arrived = expect_snapshot(cache)
    await login(auth, backend, id=1, username="alice", token="alice-token")
    assert (await arrived).daily.used == 90

    published = []
    cache.subscribe(published.append)
    backend.on("GET", RATE_LIMITS_PATH, json=limits_payload(daily_used=5))
    arrived = expect_snapshot(cache)
    await login(auth, backend, id=2, username="bob", token="bob-token")

    assert cache.snapshot is None
    snapshot = await arrived
    assert snapshot.daily.used == 5
    assert published[0] is None
    assert len(backend.calls("GET", RATE_LIMITS_PATH)) == 2
    assert backend.calls("GET", RATE_LIMITS_PATH)[-1].headers["Authorization"] == "Bearer bob-token"
