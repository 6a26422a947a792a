"""Session lifecycle owned by a single state container.

The machine starts in ``initializing``. ``init()`` reads the session store:
with nothing stored it settles on ``anonymous``; with a stored candidate it
exposes the cached user right away while ``verifying`` against the backend,
then settles on ``authenticated`` or ``anonymous`` depending on the outcome.

Every operation that can change the session takes a fresh operation token.
A verification that resolves after a newer operation started is discarded, so
a slow mount-time check can never overwrite a login or logout that happened
while it was in flight.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

from probeops.domain.models import (
    Credentials,
    NewUser,
    RegisterResult,
    Role,
    SubscriptionTier,
    UserModel,
)
from probeops.logging import logger
from probeops.services.auth_client import AuthClient
from probeops.services.exceptions import AuthError, ErrorKind, OperationInProgress
from probeops.services.notifications import Notifier
from probeops.services.session_store import SessionStore


class AuthStatus(str, Enum):
    INITIALIZING = "initializing"
    VERIFYING = "verifying"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"


@dataclass(frozen=True, slots=True)
class AuthState:
    status: AuthStatus
    user: UserModel | None = None
    pending: str | None = None

    @property
    def is_loading(self) -> bool:
        return self.status in (AuthStatus.INITIALIZING, AuthStatus.VERIFYING)

    @property
    def is_authenticated(self) -> bool:
        return self.status is AuthStatus.AUTHENTICATED and self.user is not None


Listener = Callable[[AuthState], None]


class AuthStateMachine:
    def __init__(
        self,
        client: AuthClient,
        store: SessionStore,
        notifier: Notifier | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self.notifier = notifier or Notifier()
        self._status = AuthStatus.INITIALIZING
        self._user: UserModel | None = None
        self._token: str | None = None
        self._pending: str | None = None
        self._op_seq = 0
        self._closed = False
        self._listeners: list[Listener] = []
        self.last_error: AuthError | None = None

    # Read side ---------------------------------------------------------

    @property
    def status(self) -> AuthStatus:
        return self._status

    @property
    def user(self) -> UserModel | None:
        return self._user

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def pending(self) -> str | None:
        return self._pending

    @property
    def state(self) -> AuthState:
        return AuthState(status=self._status, user=self._user, pending=self._pending)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # Lifecycle ---------------------------------------------------------

    async def init(self) -> AuthState:
        if self._status is not AuthStatus.INITIALIZING:
            return self.state

        stored = self._store.load()
        if stored.is_empty:
            self._transition(AuthStatus.ANONYMOUS, None, None)
            return self.state

        op = self._begin()
        self._transition(AuthStatus.VERIFYING, stored.user, stored.token)
        await self._verify(op, stored.token)
        return self.state

    async def refresh(self) -> AuthState:
        """Re-check the current token against the backend."""

        if self._status is not AuthStatus.AUTHENTICATED or not self._token:
            return self.state
        await self._verify(self._begin(), self._token)
        return self.state

    def teardown(self) -> None:
        self._closed = True
        self._begin()
        self._listeners.clear()
        logger.info("auth_state_teardown", status=self._status.value)

    # Mutations ---------------------------------------------------------

    async def login(self, credentials: Credentials | Mapping[str, Any]) -> UserModel:
        credentials = Credentials.model_validate(credentials)
        self._start_pending("login")
        op = self._begin()
        try:
            result = await self._client.login(credentials)
        except AuthError as exc:
            self._fail("login", exc)
            raise
        finally:
            self._finish_pending()

        if self._closed:
            return result.user
        self.last_error = None
        self._store.save(result.user, result.token)
        self._transition(AuthStatus.AUTHENTICATED, result.user, result.token)
        logger.info("login_succeeded", user_id=result.user.id, role=result.user.role.value, op=op)

        body_key = "login.success.body_admin" if result.user.role is Role.ADMIN else "login.success.body"
        self.notifier.notify("login.success.title", body_key, username=result.user.username)
        return result.user

    async def register(self, new_user: NewUser | Mapping[str, Any]) -> RegisterResult:
        new_user = NewUser.model_validate(new_user)
        if self._store.token() is not None:
            # The stored user record must keep matching the stored token.
            raise AuthError("Log out before registering a new account.", kind=ErrorKind.VALIDATION)
        self._start_pending("register")
        try:
            result = await self._client.register(new_user)
        except AuthError as exc:
            self._fail("register", exc)
            raise
        finally:
            self._finish_pending()

        # Fresh accounts never start as admin or on a paid tier.
        user = result.user.model_copy(
            update={
                "role": Role.USER,
                "is_admin": False,
                "subscription_tier": SubscriptionTier.FREE,
            }
        )
        self.last_error = None
        self._store.save_user(user)
        if result.api_key:
            self._store.save_first_api_key(result.api_key)
        logger.info("register_succeeded", user_id=user.id, has_api_key=bool(result.api_key))

        self.notifier.notify("register.success.title", "register.success.body", username=user.username)
        return result.model_copy(update={"user": user})

    async def logout(self) -> AuthState:
        self._start_pending("logout")
        self._begin()
        remote_ok = False
        try:
            remote_ok = await self._client.logout()
        finally:
            self._store.clear()
            self._finish_pending(emit=False)
            self._transition(AuthStatus.ANONYMOUS, None, None)

        logger.info("logout_completed", remote_ok=remote_ok)
        if remote_ok:
            self.notifier.notify("logout.success.title", "logout.success.body")
        else:
            self.notifier.notify("logout.success.title", "logout.local.body")
        return self.state

    def confirm_tier_change(self, tier: SubscriptionTier | str) -> UserModel:
        """Apply a tier change the backend has already confirmed."""

        tier = SubscriptionTier(tier)
        if self._status is not AuthStatus.AUTHENTICATED or self._user is None or not self._token:
            raise AuthError("No active session to update.", kind=ErrorKind.UNAUTHORIZED)
        if self._user.subscription_tier is tier:
            return self._user

        user = self._user.model_copy(update={"subscription_tier": tier})
        self._begin()
        self._store.save(user, self._token)
        self._transition(AuthStatus.AUTHENTICATED, user, self._token)
        logger.info("subscription_tier_confirmed", user_id=user.id, tier=tier.value)
        self.notifier.notify("tier.changed.title", "tier.changed.body", tier=tier.value.capitalize())
        return user

    # Internal helpers -------------------------------------------------

    async def _verify(self, op: int, token: str | None) -> None:
        try:
            fresh = await self._client.verify_session()
        except AuthError as exc:
            if self._is_stale(op):
                logger.info("stale_verification_discarded", op=op, outcome="error")
                return
            logger.warning("session_verification_failed", kind=exc.kind.value, error=exc.message)
            self._store.clear()
            self._transition(AuthStatus.ANONYMOUS, None, None)
            if exc.kind is ErrorKind.UNAUTHORIZED:
                self.notifier.notify("session.expired.title", "session.expired.body", variant="destructive")
            return

        if self._is_stale(op):
            logger.info("stale_verification_discarded", op=op, outcome="success")
            return
        if token:
            self._store.save(fresh, token)
        self._transition(AuthStatus.AUTHENTICATED, fresh, token)
        logger.info("session_verified", user_id=fresh.id)

    def _begin(self) -> int:
        self._op_seq += 1
        return self._op_seq

    def _is_stale(self, op: int) -> bool:
        return self._closed or op != self._op_seq

    def _start_pending(self, name: str) -> None:
        if self._pending is not None:
            raise OperationInProgress(f"Cannot {name} while {self._pending} is in progress.")
        self._pending = name
        self._emit()

    def _finish_pending(self, *, emit: bool = True) -> None:
        self._pending = None
        if emit:
            self._emit()

    def _fail(self, operation: str, error: AuthError) -> None:
        self.last_error = error
        logger.warning(f"{operation}_failed", kind=error.kind.value, error=error.message)
        description = self.notifier.describe_error(error, fallback_key=f"{operation}.failed.fallback")
        self.notifier.emit_error(f"{operation}.failed.title", description)

    def _transition(self, status: AuthStatus, user: UserModel | None, token: str | None) -> None:
        previous = self._status
        self._status = status
        self._user = user
        self._token = token
        if previous is not status:
            logger.debug("auth_status_changed", previous=previous.value, current=status.value)
        self._emit()

    def _emit(self) -> None:
        state = self.state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("auth_listener_failed", status=state.status.value)


__all__ = ["AuthState", "AuthStateMachine", "AuthStatus"]
