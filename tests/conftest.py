"""Shared pytest fixtures: an in-process fake backend and wired services."""

from __future__ import annotations

import inspect
from typing import Any, Callable

import httpx
import pytest
import pytest_asyncio

from probeops.config import ApiSettings
from probeops.services.api import ApiClient
from probeops.services.auth_client import AuthClient
from probeops.services.auth_state import AuthStateMachine
from probeops.services.notifications import Notifier
from probeops.services.session_store import MemoryStorage, SessionStore

API_ROOT = "https://api.test/api"


class FakeBackend:
    """Route table keyed by (method, path relative to the API root)."""

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], Callable[[httpx.Request], Any]] = {}
        self.requests: list[httpx.Request] = []

    def on(
        self,
        method: str,
        path: str,
        status: int = 200,
        json: Any = None,
        *,
        handler: Callable[[httpx.Request], Any] | None = None,
    ) -> None:
        if handler is None:
            def handler(request: httpx.Request, _status=status, _json=json) -> httpx.Response:
                return httpx.Response(_status, json=_json)
        self._routes[(method.upper(), path)] = handler

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [
            request
            for request in self.requests
            if request.method == method.upper() and self._relative(request) == path
        ]

    @staticmethod
    def _relative(request: httpx.Request) -> str:
        return request.url.path.removeprefix("/api")

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self._routes.get((request.method, self._relative(request)))
        if handler is None:
            return httpx.Response(404, json={"error": "Not found"})
        result = handler(request)
        if inspect.isawaitable(result):
            result = await result
        return result


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest_asyncio.fixture
async def http_client(backend):
    async with httpx.AsyncClient(transport=httpx.MockTransport(backend)) as client:
        yield client


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def store(storage) -> SessionStore:
    return SessionStore(storage)


@pytest.fixture
def api(http_client, store) -> ApiClient:
    return ApiClient(http_client, ApiSettings(base_url=API_ROOT), token_provider=store.token)


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()


@pytest.fixture
def auth(api, store, notifier) -> AuthStateMachine:
    return AuthStateMachine(AuthClient(api), store, notifier)


def user_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "id": 1,
        "username": "bob",
        "email": "bob@example.com",
        "created_at": "2024-01-01T00:00:00Z",
        "is_active": True,
        "is_admin": False,
        "api_key_count": 1,
    }
    payload.update(overrides)
    return payload
