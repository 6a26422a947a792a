"""Ordered shape matchers for backend payloads that drift between formats.

Each matcher inspects a decoded JSON payload and returns the extracted value,
or ``None`` when the payload is not in its shape. ``first_match`` tries them in
priority order and raises ``UnrecognizedShape`` when none applies.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional, Sequence, TypeVar

from probeops.services.exceptions import UnrecognizedShape

T = TypeVar("T")
Matcher = Callable[[Any], Optional[T]]


def first_match(what: str, payload: Any, matchers: Sequence[Matcher[T]]) -> T:
    for matcher in matchers:
        result = matcher(payload)
        if result is not None:
            return result
    raise UnrecognizedShape(what, payload)


def _looks_like_user(value: Any) -> bool:
    return isinstance(value, Mapping) and "id" in value and "username" in value


def nested_user(payload: Any) -> Mapping[str, Any] | None:
    if isinstance(payload, Mapping) and _looks_like_user(payload.get("user")):
        return payload["user"]
    return None


def flat_user(payload: Any) -> Mapping[str, Any] | None:
    return payload if _looks_like_user(payload) else None


USER_MATCHERS: tuple[Matcher[Mapping[str, Any]], ...] = (nested_user, flat_user)


def extract_user(payload: Any) -> Mapping[str, Any]:
    return first_match("user", payload, USER_MATCHERS)


def _key_from(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    if isinstance(value, Mapping):
        for field in ("key", "value"):
            candidate = value.get(field)
            if isinstance(candidate, str) and candidate:
                return candidate
    return None


def snake_case_api_key(payload: Any) -> str | None:
    if isinstance(payload, Mapping):
        return _key_from(payload.get("api_key"))
    return None


def camel_case_api_key(payload: Any) -> str | None:
    if isinstance(payload, Mapping):
        return _key_from(payload.get("apiKey"))
    return None


def top_level_key(payload: Any) -> str | None:
    if isinstance(payload, Mapping):
        value = payload.get("key")
        if isinstance(value, str) and value:
            return value
    return None


API_KEY_MATCHERS: tuple[Matcher[str], ...] = (
    snake_case_api_key,
    camel_case_api_key,
    top_level_key,
)


def extract_api_key(payload: Any) -> str:
    return first_match("api key", payload, API_KEY_MATCHERS)


def bare_list(payload: Any) -> list[Any] | None:
    return list(payload) if isinstance(payload, list) else None


def wrapped_list(field: str) -> Matcher[list[Any]]:
    def _match(payload: Any) -> list[Any] | None:
        if isinstance(payload, Mapping) and isinstance(payload.get(field), list):
            return list(payload[field])
        return None

    _match.__name__ = f"wrapped_{field}"
    return _match


def extract_list(what: str, payload: Any, field: str) -> list[Any]:
    return first_match(what, payload, (bare_list, wrapped_list(field)))


__all__ = [
    "API_KEY_MATCHERS",
    "USER_MATCHERS",
    "extract_api_key",
    "extract_list",
    "extract_user",
    "first_match",
]
