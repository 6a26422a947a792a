"""User-facing notifications and error descriptions."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Callable, Literal

from probeops.i18n import I18nService
from probeops.logging import logger
from probeops.services.exceptions import ApiError, AuthError, ErrorKind, ServiceError

Variant = Literal["default", "destructive"]

HISTORY_LIMIT = 50


@dataclass(frozen=True, slots=True)
class Notification:
    title: str
    description: str
    variant: Variant = "default"


Listener = Callable[[Notification], None]


class Notifier:
    """Fan-out of toast-style messages to whatever UI is attached."""

    def __init__(
        self,
        i18n: I18nService | None = None,
        locale: str | None = None,
        history_limit: int = HISTORY_LIMIT,
    ) -> None:
        self.i18n = i18n or I18nService()
        self.locale = locale
        self._listeners: list[Listener] = []
        self.history: deque[Notification] = deque(maxlen=history_limit)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def text(self, key: str, **kwargs) -> str:
        return self.i18n.gettext(key, locale=self.locale, **kwargs)

    def notify(self, title_key: str, body_key: str, *, variant: Variant = "default", **kwargs) -> Notification:
        return self.emit(Notification(self.text(title_key), self.text(body_key, **kwargs), variant))

    def emit_error(self, title_key: str, description: str) -> Notification:
        return self.emit(Notification(self.text(title_key), description, "destructive"))

    def emit(self, notification: Notification) -> Notification:
        self.history.append(notification)
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception("notification_listener_failed", title=notification.title)
        return notification

    def describe_error(
        self,
        error: ServiceError,
        *,
        fallback_key: str | None = None,
        session_call: bool = False,
    ) -> str:
        """Turn an error into text for the user.

        ``session_call`` marks failures of calls made on behalf of an existing
        session, where a 401 means the session expired rather than bad
        credentials.
        """

        kind = error.kind if isinstance(error, (ApiError, AuthError)) else None
        message = getattr(error, "message", None) or str(error)
        if kind is ErrorKind.NETWORK:
            return self.text("error.network")
        if kind is ErrorKind.SERVER_FAULT:
            return self.text("error.server")
        if kind is ErrorKind.UNAUTHORIZED and session_call:
            return self.text("session.expired.body")
        if kind is ErrorKind.NOT_FOUND and not message:
            return self.text("error.not_found")
        if kind is ErrorKind.UNRECOGNIZED_SHAPE:
            return self.text("error.unrecognized")
        if kind is ErrorKind.MISSING_TOKEN:
            return self.text("error.missing_token")
        if message:
            return message
        return self.text(fallback_key) if fallback_key else self.text("error.server")


__all__ = ["Notification", "Notifier"]
