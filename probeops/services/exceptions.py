"""Domain-specific exceptions."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    NETWORK = "network"
    SERVER_FAULT = "server_fault"
    UNRECOGNIZED_SHAPE = "unrecognized_shape"
    MISSING_TOKEN = "missing_token"


class ServiceError(Exception):
    pass


class ApiError(ServiceError):
    """A backend call that did not produce a usable 2xx response."""

    kind: ErrorKind = ErrorKind.SERVER_FAULT

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class Unauthorized(ApiError):
    kind = ErrorKind.UNAUTHORIZED


class ValidationFailed(ApiError):
    kind = ErrorKind.VALIDATION


class NotFound(ApiError):
    kind = ErrorKind.NOT_FOUND


class NetworkError(ApiError):
    kind = ErrorKind.NETWORK


class ServerFault(ApiError):
    kind = ErrorKind.SERVER_FAULT


class UnrecognizedShape(ServiceError):
    """Raised when no known matcher accepts a backend payload."""

    def __init__(self, what: str, payload: object) -> None:
        super().__init__(f"Unrecognized {what} response shape.")
        self.what = what
        self.payload = payload


class AuthError(ServiceError):
    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind,
        cause: ServiceError | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.cause = cause

    @classmethod
    def from_error(cls, error: ServiceError) -> "AuthError":
        if isinstance(error, AuthError):
            return error
        if isinstance(error, ApiError):
            return cls(error.message, kind=error.kind, cause=error)
        if isinstance(error, UnrecognizedShape):
            return cls(str(error), kind=ErrorKind.UNRECOGNIZED_SHAPE, cause=error)
        return cls(str(error), kind=ErrorKind.SERVER_FAULT, cause=error)


class OperationInProgress(ServiceError):
    pass


class RateLimitExceeded(ServiceError):
    pass


__all__ = [
    "ApiError",
    "AuthError",
    "ErrorKind",
    "NetworkError",
    "NotFound",
    "OperationInProgress",
    "RateLimitExceeded",
    "ServerFault",
    "ServiceError",
    "Unauthorized",
    "UnrecognizedShape",
    "ValidationFailed",
]
