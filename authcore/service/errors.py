from __future__ import annotations

from typing import Optional

class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries an HTTP ``status_code`` and a stable ``error_code``:
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - validation_error (400)
    - conflict (409)
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

class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"

class UnauthenticatedError(AuthenticationError):
    """No token was presented in either carrier header."""

    def __init__(self, message: str = "authentication required", **kwargs) -> None:
        super().__init__(message, **kwargs)

class TokenError(AuthenticationError):
    """A presented token was rejected by the codec or the revocation check."""

class MalformedTokenError(TokenError):
    def __init__(self, message: str = "malformed token", **kwargs) -> None:
        super().__init__(message, **kwargs)

class InvalidSignatureError(TokenError):
    def __init__(self, message: str = "invalid token signature", **kwargs) -> None:
        super().__init__(message, **kwargs)

class TokenExpiredError(TokenError):
    def __init__(self, message: str = "token expired", **kwargs) -> None:
        super().__init__(message, **kwargs)

class TokenRevokedError(TokenError):
    """Token has a valid signature but was revoked at sign-out."""

    def __init__(self, message: str = "token revoked", **kwargs) -> None:
        super().__init__(message, **kwargs)

class InvalidCredentialsError(AuthenticationError):
    """Unknown username or wrong password; both render identically."""

    def __init__(self, message: str = "invalid credentials", **kwargs) -> None:
        super().__init__(message, **kwargs)

class AccountNotVerifiedError(AuthenticationError):
    def __init__(self, message: str = "account is not verified", **kwargs) -> None:
        super().__init__(message, **kwargs)

class ForbiddenError(ServiceError):
    """Access denied (403)."""
    status_code = 403
    error_code = "forbidden"

class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"

class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "UnauthenticatedError",
    "TokenError",
    "MalformedTokenError",
    "InvalidSignatureError",
    "TokenExpiredError",
    "TokenRevokedError",
    "InvalidCredentialsError",
    "AccountNotVerifiedError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
]
