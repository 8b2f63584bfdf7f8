"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores, flows and routes do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Closed set of principal roles.

    Stored and transmitted as the upper-case value. Role("editor") raises
    ValueError, so unchecked role strings cannot enter the system.
    """

    ADMIN = "ADMIN"
    EDITOR = "EDITOR"
    USER = "USER"


class TokenClass(str, Enum):
    """The two signed token classes. Each has its own signing secret."""

    ACCESS = "access"
    REFRESH = "refresh"


@dataclass
class Principal:
    """An identity record as held by the principal store.

    password_hash never leaves the server: response models are built from
    explicit fields, not from this dataclass.
    """

    email: str
    name: str
    password_hash: str
    role: Role = Role.USER
    id: int | None = None
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class RefreshTokenRecord:
    """A persisted refresh token.

    token_hash is HMAC-SHA256(REFRESH_TOKEN_SECRET, token). The raw token is
    returned to the client once and never stored. A record is deleted the
    moment it is redeemed, so a row existing at all means "not yet used".
    """

    user_id: int
    token_hash: str
    issued_at: datetime
    expires_at: datetime
    id: int | None = None


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims from either token class. Never persisted."""

    subject: int
    email: str
    role: Role
    issued_at: datetime
    expires_at: datetime
    token_class: TokenClass
    jti: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime, seconds


@dataclass(frozen=True)
class AuthResult:
    """Return value of register and login."""

    principal: Principal
    tokens: TokenPair
