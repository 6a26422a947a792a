"""HTTP access to the ProbeOps backend with error classification."""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

import httpx

from probeops.config import ApiSettings
from probeops.logging import logger
from probeops.services.exceptions import (
    ApiError,
    NetworkError,
    NotFound,
    ServerFault,
    Unauthorized,
    ValidationFailed,
)

TokenProvider = Callable[[], Optional[str]]

NO_RESPONSE_MESSAGE = (
    "No response from server. This may be due to CORS restrictions, "
    "network issues, or the server is down."
)


def server_message(response: httpx.Response) -> str:
    """Prefer the backend's ``error`` then ``message`` field over the status."""

    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, Mapping):
        for field in ("error", "message", "detail"):
            value = body.get(field)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return f"Server error: {response.status_code}"


def classify_response(response: httpx.Response) -> ApiError:
    status = response.status_code
    message = server_message(response)
    if status == 401:
        return Unauthorized(message, status_code=status)
    if status == 404:
        return NotFound(message, status_code=status)
    if 400 <= status < 500:
        return ValidationFailed(message, status_code=status)
    return ServerFault(message, status_code=status)


class ApiClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        settings: ApiSettings | None = None,
        token_provider: TokenProvider | None = None,
    ) -> None:
        self._client = http_client
        self._settings = settings or ApiSettings()
        self._token_provider = token_provider or (lambda: None)

    def url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{str(self._settings.base_url).rstrip('/')}/{path.lstrip('/')}"

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        token = self._token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        url = self.url(path)
        try:
            response = await self._client.request(
                method,
                url,
                json=json,
                params=params,
                headers=self._headers(),
                timeout=self._settings.request_timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            error = classify_response(exc.response)
            logger.warning(
                "api_request_failed",
                method=method,
                path=path,
                status_code=error.status_code,
                kind=error.kind.value,
            )
            raise error from exc
        except httpx.RequestError as exc:
            logger.warning("api_no_response", method=method, path=path, error=str(exc))
            raise NetworkError(NO_RESPONSE_MESSAGE) from exc

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def get(self, path: str, **kwargs: Any) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Any:
        return await self.request("POST", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        return await self.request("DELETE", path, **kwargs)


__all__ = ["ApiClient", "NO_RESPONSE_MESSAGE", "classify_response", "server_message"]
