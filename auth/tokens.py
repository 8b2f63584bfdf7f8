"""
auth/tokens.py -- Signed token issue/verify and refresh token fingerprints.

Security design decisions:
  JWT: python-jose with HS256. Two token classes, each with its own secret:
       access tokens (ACCESS_TOKEN_SECRET, short TTL) authorize requests;
       refresh tokens (REFRESH_TOKEN_SECRET, long TTL) are exchanged for a new
       pair. Both carry sub (principal id), email, role, type, iat, exp and jti.

  Secret-domain separation: a token of one class never verifies as the
       other. The distinct keys make the signature check fail; the "type"
       claim is checked as well in case both keys are ever configured equal.

  Expiry is checked against an injectable clock rather than inside
       jose.jwt.decode, so tests can move time without sleeping.

  Failure reasons: verification raises TokenError with an explicit
       TokenFailure (MALFORMED, SIGNATURE_INVALID, EXPIRED). Callers map the
       reason to an HTTP error; nothing inspects exception text.

  Refresh fingerprints: the store keeps HMAC-SHA256(REFRESH_TOKEN_SECRET,
       token) instead of the raw token. Deterministic, so lookup is a single
       indexed equality match; keyed, so a leaked table cannot be replayed
       or brute-forced without the secret. The random jti gives every refresh
       token enough entropy that bcrypt's slowness is unnecessary here.

Layer rule: no imports from api/. Import from core/ is allowed for settings.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING

from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.models import Principal, Role, TokenClaims, TokenClass, TokenPair

if TYPE_CHECKING:
    from core.config import Settings

_ALGORITHM = "HS256"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenFailure(str, Enum):
    MALFORMED = "malformed"
    SIGNATURE_INVALID = "signature_invalid"
    EXPIRED = "expired"


class TokenError(Exception):
    """Raised by TokenCodec.verify(). reason says why."""

    def __init__(self, reason: TokenFailure, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class TokenCodec:
    """Issuer and verifier for access and refresh tokens.

    Usage:
        codec = TokenCodec.from_settings(get_settings())
        token = codec.issue_access(principal)
        claims = codec.verify(token, TokenClass.ACCESS)
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: int,
        refresh_ttl: int,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._secrets = {TokenClass.ACCESS: access_secret, TokenClass.REFRESH: refresh_secret}
        self._ttls = {TokenClass.ACCESS: access_ttl, TokenClass.REFRESH: refresh_ttl}
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], datetime] = utc_now) -> TokenCodec:
        return cls(
            access_secret=settings.access_token_secret,
            refresh_secret=settings.refresh_token_secret,
            access_ttl=settings.access_token_ttl,
            refresh_ttl=settings.refresh_token_ttl,
            clock=clock,
        )

    @property
    def access_ttl(self) -> int:
        return self._ttls[TokenClass.ACCESS]

    @property
    def refresh_ttl(self) -> int:
        return self._ttls[TokenClass.REFRESH]

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def _issue(self, principal: Principal, token_class: TokenClass) -> tuple[str, TokenClaims]:
        if principal.id is None:
            raise ValueError("Cannot issue a token for an unsaved principal")
        # JWT timestamps are whole seconds; drop microseconds so the claims
        # returned here equal the claims verify() will decode.
        issued_at = self._clock().replace(microsecond=0)
        expires_at = issued_at + timedelta(seconds=self._ttls[token_class])
        jti = secrets.token_hex(16)
        payload = {
            "sub": str(principal.id),
            "email": principal.email,
            "role": principal.role.value,
            "type": token_class.value,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": jti,
        }
        token = jwt.encode(payload, self._secrets[token_class], algorithm=_ALGORITHM)
        claims = TokenClaims(
            subject=principal.id,
            email=principal.email,
            role=principal.role,
            issued_at=issued_at,
            expires_at=expires_at,
            token_class=token_class,
            jti=jti,
        )
        return token, claims

    def issue_access(self, principal: Principal) -> str:
        token, _claims = self._issue(principal, TokenClass.ACCESS)
        return token

    def issue_refresh(self, principal: Principal) -> tuple[str, TokenClaims]:
        """Return the refresh token and its claims (the store needs expires_at)."""
        return self._issue(principal, TokenClass.REFRESH)

    def issue_pair(self, principal: Principal) -> tuple[TokenPair, TokenClaims]:
        access = self.issue_access(principal)
        refresh, refresh_claims = self.issue_refresh(principal)
        return TokenPair(access_token=access, refresh_token=refresh, expires_in=self.access_ttl), refresh_claims

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, token: str, token_class: TokenClass, *, allow_expired: bool = False) -> TokenClaims:
        """Verify token as token_class and return its claims.

        Raises TokenError(MALFORMED) for anything that is not a well-formed
        JWT with the expected claims, TokenError(SIGNATURE_INVALID) when the
        signature does not match this class's secret, and
        TokenError(EXPIRED) when the injected clock is past exp.

        allow_expired skips only the expiry check (logout uses it to clean up
        records for tokens the client held past their lifetime).
        """
        try:
            jwt.get_unverified_claims(token)
        except (JWTError, AttributeError, TypeError) as exc:
            raise TokenError(TokenFailure.MALFORMED, str(exc)) from exc

        try:
            payload = jwt.decode(
                token,
                self._secrets[token_class],
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTClaimsError as exc:
            raise TokenError(TokenFailure.MALFORMED, str(exc)) from exc
        except JWTError as exc:
            raise TokenError(TokenFailure.SIGNATURE_INVALID, str(exc)) from exc

        if payload.get("type") != token_class.value:
            raise TokenError(TokenFailure.SIGNATURE_INVALID, "token class mismatch")

        claims = _claims_from_payload(payload, token_class)
        if not allow_expired and self._clock() > claims.expires_at:
            raise TokenError(TokenFailure.EXPIRED)
        return claims

    # ------------------------------------------------------------------
    # Refresh token fingerprint
    # ------------------------------------------------------------------

    def fingerprint(self, refresh_token: str) -> str:
        """Return HMAC-SHA256(REFRESH_TOKEN_SECRET, token) as hex for storage."""
        return hmac.new(
            self._secrets[TokenClass.REFRESH].encode(),
            refresh_token.encode(),
            hashlib.sha256,
        ).hexdigest()


def _claims_from_payload(payload: dict, token_class: TokenClass) -> TokenClaims:
    try:
        subject = int(payload["sub"])
        role = Role(payload["role"])
        email = str(payload["email"])
        issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
        expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenError(TokenFailure.MALFORMED, f"bad claims: {exc}") from exc
    jti = payload.get("jti")
    return TokenClaims(
        subject=subject,
        email=email,
        role=role,
        issued_at=issued_at,
        expires_at=expires_at,
        token_class=token_class,
        jti=str(jti) if jti is not None else None,
    )
