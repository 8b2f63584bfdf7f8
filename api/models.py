"""
API request and response models for the authcore REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

JSON field names are camelCase on the wire (refreshToken, currentPassword)
and snake_case in Python. Request models accept either spelling; responses
are always serialized by alias.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import Principal, Role


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_CamelModel):
    """Request body for POST /api/v1/auth/register.

    Length limits here only bound the payload size. Name length, email shape
    and the password policy are enforced by AuthFlows.register so the same
    rules apply to the CLI.
    """

    name: str = Field(max_length=200)
    email: str = Field(max_length=255)
    password: str = Field(max_length=256)


class LoginRequest(_CamelModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(max_length=255)
    password: str = Field(max_length=256)


class RefreshRequest(_CamelModel):
    """Request body for POST /api/v1/auth/refresh-token."""

    refresh_token: str = Field(min_length=1, max_length=4096)


class LogoutRequest(_CamelModel):
    """Optional request body for POST /api/v1/auth/logout."""

    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class ChangePasswordRequest(_CamelModel):
    """Request body for PUT /api/v1/users/change-password."""

    current_password: str = Field(max_length=256)
    new_password: str = Field(max_length=256)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(_CamelModel):
    """Public view of a principal. password_hash is never part of it."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    role: Role
    is_active: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_principal(cls, principal: Principal) -> "UserResponse":
        return cls(
            id=principal.id,
            name=principal.name,
            email=principal.email,
            role=principal.role,
            is_active=principal.is_active,
            created_at=principal.created_at,
            updated_at=principal.updated_at,
        )


class AuthResponse(_CamelModel):
    """Response for register and login: the principal plus a fresh token pair."""

    user: UserResponse
    token: str
    refresh_token: str
    expires_in: int


class TokenResponse(_CamelModel):
    """Response for POST /api/v1/auth/refresh-token."""

    token: str
    refresh_token: str
    expires_in: int


class MeResponse(_CamelModel):
    user: UserResponse


class SessionResponse(_CamelModel):
    """Response for GET /api/v1/auth/session (soft authentication)."""

    authenticated: bool
    user: Optional[UserResponse] = None


class MessageResponse(_CamelModel):
    message: str


class RevokedResponse(_CamelModel):
    """Number of refresh tokens deleted."""

    revoked: int


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
