"""
auth/errors.py -- Typed error taxonomy for the auth core.

Every failure raised by auth/ carries an explicit ErrorKind (which fixes the
HTTP status) and an AuthReason (which becomes the machine-readable error code).
The API layer renders these without ever inspecting the message text.

Messages are what the client sees. Login and refresh failures deliberately
share one reason/message pair per flow so responses do not reveal whether an
account or token record exists.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal"

    @property
    def status_code(self) -> int:
        return _STATUS_BY_KIND[self]


_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTERNAL: 500,
}


class AuthReason(str, Enum):
    """Fine-grained failure reason. The value is the wire error code."""

    # 400
    INVALID_INPUT = "invalid_input"
    WEAK_PASSWORD = "weak_password"
    # 401
    MISSING_TOKEN = "missing_token"
    TOKEN_INVALID = "token_invalid"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_UNKNOWN_OR_REUSED = "token_unknown_or_reused"
    PRINCIPAL_NOT_FOUND = "principal_not_found"
    PRINCIPAL_INACTIVE = "principal_inactive"
    INVALID_CREDENTIALS = "invalid_credentials"
    CURRENT_PASSWORD_INCORRECT = "current_password_incorrect"
    # 403
    INSUFFICIENT_ROLE = "insufficient_role"
    NOT_OWNER = "not_owner"
    # 404
    USER_NOT_FOUND = "user_not_found"
    # 409
    EMAIL_TAKEN = "email_taken"
    # 500
    INTERNAL_ERROR = "internal_error"


class AuthError(Exception):
    """Base class. Subclasses pin the kind; callers pick the reason."""

    kind: ErrorKind = ErrorKind.INTERNAL
    default_reason: AuthReason = AuthReason.INTERNAL_ERROR
    default_message: str = "An unexpected error occurred."

    def __init__(self, reason: AuthReason | None = None, message: str | None = None) -> None:
        self.reason = reason or self.default_reason
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    def __repr__(self) -> str:
        return f"{type(self).__name__}(reason={self.reason.value!r}, message={self.message!r})"


class ValidationError(AuthError):
    kind = ErrorKind.VALIDATION
    default_reason = AuthReason.INVALID_INPUT
    default_message = "Invalid input."


class Unauthenticated(AuthError):
    kind = ErrorKind.UNAUTHENTICATED
    default_reason = AuthReason.TOKEN_INVALID
    default_message = "Authentication required."


class Forbidden(AuthError):
    kind = ErrorKind.FORBIDDEN
    default_reason = AuthReason.INSUFFICIENT_ROLE
    default_message = "Insufficient permissions."


class NotFoundError(AuthError):
    kind = ErrorKind.NOT_FOUND
    default_reason = AuthReason.USER_NOT_FOUND
    default_message = "User not found."


class ConflictError(AuthError):
    kind = ErrorKind.CONFLICT
    default_reason = AuthReason.EMAIL_TAKEN
    default_message = "A user with that email already exists."


class InternalError(AuthError):
    kind = ErrorKind.INTERNAL


# Client-facing messages for 401s. Kept in one table so every code path that
# raises the same reason also sends the same text.
UNAUTHENTICATED_MESSAGES = {
    AuthReason.MISSING_TOKEN: "Authentication required.",
    AuthReason.TOKEN_INVALID: "Invalid token.",
    AuthReason.TOKEN_EXPIRED: "Token has expired.",
    AuthReason.TOKEN_UNKNOWN_OR_REUSED: "Refresh token is invalid or has already been used.",
    AuthReason.PRINCIPAL_NOT_FOUND: "User not found.",
    AuthReason.PRINCIPAL_INACTIVE: "User account is inactive.",
    AuthReason.INVALID_CREDENTIALS: "Invalid email or password.",
    AuthReason.CURRENT_PASSWORD_INCORRECT: "Current password is incorrect.",
}


def unauthenticated(reason: AuthReason) -> Unauthenticated:
    """Build an Unauthenticated error with the canonical message for reason."""
    return Unauthenticated(reason, UNAUTHENTICATED_MESSAGES[reason])
