"""Remote authentication calls translated into canonical session users."""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import ValidationError

from probeops.domain.models import (
    Credentials,
    LoginResult,
    NewUser,
    RegisterResult,
    Role,
    SubscriptionTier,
    UserModel,
)
from probeops.logging import logger
from probeops.services.api import ApiClient
from probeops.services.exceptions import (
    AuthError,
    ErrorKind,
    ServiceError,
    UnrecognizedShape,
)
from probeops.services.shapes import extract_api_key, extract_user

LOGIN_PATH = "/users/login"
REGISTER_PATH = "/users/register"
CURRENT_USER_PATH = "/users/me"
LOGOUT_PATH = "/users/logout"


def normalize_user(raw: Mapping[str, Any], *, role: Role | None = None) -> UserModel:
    """Fill in ``role`` and ``subscription_tier`` when the backend omits them.

    A missing role is derived from the legacy ``is_admin`` flag and a missing
    tier becomes ``free``. ``role`` forces the result regardless of the payload.
    """

    data = dict(raw)
    derive_role = role is None and not data.get("role")
    if role is not None:
        data["role"] = role
    elif derive_role:
        data.pop("role", None)
    if data.get("is_admin") is None:
        data.pop("is_admin", None)
    if not data.get("subscription_tier"):
        data["subscription_tier"] = SubscriptionTier.FREE
    try:
        user = UserModel.model_validate(data)
    except ValidationError as exc:
        raise UnrecognizedShape("user", raw) from exc
    # Read the flag after coercion so "1" and "true" agree with the model.
    if derive_role and user.is_admin:
        user = user.model_copy(update={"role": Role.ADMIN})
    return user


def _message(payload: Any) -> str | None:
    if isinstance(payload, Mapping):
        value = payload.get("message")
        if isinstance(value, str):
            return value
    return None


class AuthClient:
    def __init__(self, api: ApiClient) -> None:
        self._api = api

    async def login(self, credentials: Credentials) -> LoginResult:
        try:
            payload = await self._api.post(LOGIN_PATH, json=credentials.model_dump())
        except ServiceError as exc:
            raise AuthError.from_error(exc) from exc

        token = payload.get("token") if isinstance(payload, Mapping) else None
        if not isinstance(token, str) or not token:
            raise AuthError("Login response did not include a token.", kind=ErrorKind.MISSING_TOKEN)
        try:
            user = normalize_user(extract_user(payload))
        except UnrecognizedShape as exc:
            raise AuthError.from_error(exc) from exc
        return LoginResult(user=user, token=token, message=_message(payload))

    async def register(self, new_user: NewUser) -> RegisterResult:
        try:
            payload = await self._api.post(REGISTER_PATH, json=new_user.model_dump())
            user = normalize_user(extract_user(payload))
        except ServiceError as exc:
            raise AuthError.from_error(exc) from exc

        try:
            api_key = extract_api_key(payload)
        except UnrecognizedShape:
            logger.warning("register_response_without_api_key", user_id=user.id)
            api_key = None
        return RegisterResult(user=user, api_key=api_key, message=_message(payload))

    async def verify_session(self) -> UserModel:
        try:
            payload = await self._api.get(CURRENT_USER_PATH)
            return normalize_user(extract_user(payload))
        except ServiceError as exc:
            raise AuthError.from_error(exc) from exc

    async def logout(self) -> bool:
        """Tell the backend the token is done; report rather than raise failures."""

        try:
            await self._api.post(LOGOUT_PATH)
        except ServiceError as exc:
            logger.warning("remote_logout_failed", error=str(exc))
            return False
        return True


__all__ = ["AuthClient", "normalize_user"]
