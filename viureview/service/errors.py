from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each class carries an HTTP ``status_code`` and a stable ``error_code``:
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - rate_limited (429)
    - validation_error (400)
    - conflict (409)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class BadRequestError(ValidationError):
    """Request is malformed, e.g. no project id can be resolved."""
    pass


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g. enabling a factor twice (409)."""
    status_code = 409
    error_code = "conflict"


class RateLimitedError(ServiceError):
    """Rate limit exceeded (429)."""
    status_code = 429
    error_code = "rate_limited"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


# Bearer credential resolution. These carry the internal reason for logs;
# the authentication gate replaces all of them with ``Unauthorized``.
class MissingCredential(AuthenticationError):
    pass


class MalformedToken(AuthenticationError):
    pass


class SessionNotFound(AuthenticationError):
    pass


class SessionInactive(AuthenticationError):
    pass


class SessionExpired(AuthenticationError):
    pass


class InvalidToken(AuthenticationError):
    pass


class Unauthorized(AuthenticationError):
    """The single outcome callers see for any failed bearer resolution."""

    def __init__(self, message: str = "authentication required", **kwargs) -> None:
        super().__init__(message, **kwargs)


# Two-factor lifecycle
class WrongPassword(AuthenticationError):
    def __init__(self, message: str = "incorrect password", **kwargs) -> None:
        super().__init__(message, **kwargs)


class InvalidCode(ValidationError):
    def __init__(self, message: str = "invalid verification code", **kwargs) -> None:
        super().__init__(message, **kwargs)


class AlreadyEnabled(ConflictError):
    def __init__(
        self, message: str = "two-factor authentication is already enabled", **kwargs
    ) -> None:
        super().__init__(message, **kwargs)


class NotEnabled(ValidationError):
    def __init__(
        self, message: str = "two-factor authentication is not enabled", **kwargs
    ) -> None:
        super().__init__(message, **kwargs)


class NoPasswordConfigured(ValidationError):
    def __init__(
        self, message: str = "no password is configured for this account", **kwargs
    ) -> None:
        super().__init__(message, **kwargs)


class AccountLocked(RateLimitedError):
    def __init__(
        self,
        message: str = "account temporarily locked after repeated failures",
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)


Forbidden = ForbiddenError
NotFound = NotFoundError
BadRequest = BadRequestError


__all__ = [
    "ServiceError",
    "ValidationError",
    "BadRequestError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "RateLimitedError",
    "ServerError",
    "MissingCredential",
    "MalformedToken",
    "SessionNotFound",
    "SessionInactive",
    "SessionExpired",
    "InvalidToken",
    "Unauthorized",
    "WrongPassword",
    "InvalidCode",
    "AlreadyEnabled",
    "NotEnabled",
    "NoPasswordConfigured",
    "AccountLocked",
    "Forbidden",
    "NotFound",
    "BadRequest",
]
