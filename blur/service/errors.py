from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries an HTTP ``status_code``, a stable ``error_code`` used
    in the response envelope, and a ``reason`` that names the precise failure:
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - validation_error (400)
    - conflict (409)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"
    reason: str = "invalid_request"

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
        self.detail = {"reason": self.reason, **(detail or {})}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"
    reason = "invalid_fields"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"
    reason = "conflict"


class DuplicateEmail(ConflictError):
    reason = "duplicate_email"


class DuplicateNickname(ConflictError):
    reason = "duplicate_nickname"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"
    reason = "unauthorized"


class InvalidCredentials(AuthenticationError):
    """Login failed; deliberately does not say which field was wrong."""
    reason = "invalid_credentials"


class InvalidToken(AuthenticationError):
    """Token signature, shape, type or expiry is invalid."""
    reason = "invalid_token"


class TokenMismatch(AuthenticationError):
    """Refresh token is valid but is not the one on record for the account."""
    reason = "token_mismatch"


class VerificationError(ServiceError):
    """Verification code could not be accepted (400)."""
    status_code = 400
    error_code = "validation_error"
    reason = "verification_failed"


class InvalidCode(VerificationError):
    reason = "invalid_code"


class CodeExpired(VerificationError):
    reason = "code_expired"


class EmailNotVerified(VerificationError):
    reason = "email_not_verified"


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"
    reason = "forbidden"


class AccountInactive(ForbiddenError):
    reason = "account_inactive"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"
    reason = "not_found"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"
    reason = "server_error"


__all__ = [
    "ServiceError",
    "ValidationError",
    "ConflictError",
    "DuplicateEmail",
    "DuplicateNickname",
    "AuthenticationError",
    "InvalidCredentials",
    "InvalidToken",
    "TokenMismatch",
    "VerificationError",
    "InvalidCode",
    "CodeExpired",
    "EmailNotVerified",
    "ForbiddenError",
    "AccountInactive",
    "NotFoundError",
    "ServerError",
]
