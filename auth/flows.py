"""
auth/flows.py -- Register, login, refresh, logout and password change.

AuthFlows is the only place that sequences CredentialService, TokenCodec and
the two repositories. Routes call one method per request; the method either
returns a result or raises an AuthError subclass (auth/errors.py).

Enumeration resistance [C1]:
  login() gives one error (INVALID_CREDENTIALS, same message) for unknown
  email, wrong password and inactive account, and runs bcrypt in every case.
  refresh() gives TOKEN_UNKNOWN_OR_REUSED, with one message, for every
  rejection: bad signature, wrong token class, never-issued or already
  rotated token, missing or inactive account. Only an expired token is
  reported separately (TOKEN_EXPIRED). The audit record keeps the precise
  reason.

Replay guard [R1]:
  refresh() only succeeds if a live record matches the token fingerprint and
  owner, and rotate() removes that record in the same transaction that adds
  the replacement. A second refresh with the same token finds nothing.

All methods are synchronous: bcrypt is CPU-bound and the HTTP layer runs
these calls in FastAPI's worker thread pool.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from auth.errors import (
    AuthReason,
    ConflictError,
    NotFoundError,
    ValidationError,
    unauthenticated,
)
from auth.models import AuthResult, Principal, Role, TokenClaims, TokenClass, TokenPair
from auth.passwords import CredentialService, check_password_policy, validate_email
from auth.ports import AuditSink, PrincipalRepository, RefreshTokenRepository
from auth.store import RotationConflict
from auth.tokens import TokenCodec, TokenError, TokenFailure

logger = logging.getLogger("authcore.auth")

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100


def token_error_reason(exc: TokenError) -> AuthReason:
    """Map a codec failure to the 401 reason sent to clients."""
    if exc.reason is TokenFailure.EXPIRED:
        return AuthReason.TOKEN_EXPIRED
    return AuthReason.TOKEN_INVALID


class AuthFlows:
    """Credential lifecycle orchestration over injected collaborators.

    Usage:
        flows = AuthFlows(users, refresh_tokens, credentials, codec, audit)
        result = flows.register("Alice", "alice@example.com", "Secret123!")
        pair = flows.refresh(result.tokens.refresh_token)
    """

    def __init__(
        self,
        users: PrincipalRepository,
        refresh_tokens: RefreshTokenRepository,
        credentials: CredentialService,
        codec: TokenCodec,
        audit: AuditSink,
    ) -> None:
        self.users = users
        self.refresh_tokens = refresh_tokens
        self.credentials = credentials
        self.codec = codec
        self.audit = audit

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue_and_store(self, principal: Principal) -> TokenPair:
        pair, refresh_claims = self.codec.issue_pair(principal)
        self.refresh_tokens.persist(
            principal.id,
            self.codec.fingerprint(pair.refresh_token),
            refresh_claims.issued_at,
            refresh_claims.expires_at,
        )
        return pair

    def _reject_refresh(self, reason: AuthReason, principal_id: int | None = None, detail: str = ""):
        """Audit the precise reason; tell the client only expired or rejected."""
        self.audit.record("token.refresh_rejected", principal_id, {"reason": reason.value, "detail": detail})
        if reason is AuthReason.TOKEN_EXPIRED:
            return unauthenticated(AuthReason.TOKEN_EXPIRED)
        return unauthenticated(AuthReason.TOKEN_UNKNOWN_OR_REUSED)

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def register(self, name: str, email: str, password: str) -> AuthResult:
        name = name.strip()
        email = email.strip().lower()
        if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
            raise ValidationError(
                AuthReason.INVALID_INPUT,
                f"Name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters.",
            )
        if not validate_email(email):
            raise ValidationError(AuthReason.INVALID_INPUT, "Invalid email format.")
        check_password_policy(password)

        if self.users.find_by_email(email) is not None:
            # The store's UNIQUE constraint still guards the race between
            # this check and create().
            raise ConflictError()

        principal = Principal(
            email=email,
            name=name,
            password_hash=self.credentials.hash(password),
            role=Role.USER,
            is_active=True,
        )
        principal.id = self.users.create(principal)
        created = self.users.find_by_id(principal.id) or principal

        tokens = self._issue_and_store(created)
        self.audit.record("user.registered", created.id, {"email": created.email, "role": created.role.value})
        logger.info("User registered (id=%s)", created.id)
        return AuthResult(principal=created, tokens=tokens)

    def login(self, email: str, password: str) -> AuthResult:
        principal = self.users.find_by_email(email.strip())
        if principal is None:
            self.credentials.verify_dummy(password)
            self.audit.record("user.login_failed", None, {"reason": "unknown_email"})
            raise unauthenticated(AuthReason.INVALID_CREDENTIALS)

        if not self.credentials.verify(password, principal.password_hash):
            self.audit.record("user.login_failed", principal.id, {"reason": "wrong_password"})
            raise unauthenticated(AuthReason.INVALID_CREDENTIALS)

        if not principal.is_active:
            self.audit.record("user.login_failed", principal.id, {"reason": "inactive"})
            raise unauthenticated(AuthReason.INVALID_CREDENTIALS)

        tokens = self._issue_and_store(principal)
        self.audit.record("user.login", principal.id, {"email": principal.email})
        return AuthResult(principal=principal, tokens=tokens)

    def refresh(self, refresh_token: str) -> TokenPair:
        try:
            claims = self.codec.verify(refresh_token, TokenClass.REFRESH)
        except TokenError as exc:
            raise self._reject_refresh(token_error_reason(exc), detail=exc.reason.value) from exc

        fingerprint = self.codec.fingerprint(refresh_token)
        record = self.refresh_tokens.find_active(fingerprint, claims.subject)
        if record is None:
            raise self._reject_refresh(AuthReason.TOKEN_UNKNOWN_OR_REUSED, claims.subject, "no live record")

        principal = self.users.find_by_id(claims.subject)
        if principal is None:
            raise self._reject_refresh(AuthReason.PRINCIPAL_NOT_FOUND, claims.subject)
        if not principal.is_active:
            raise self._reject_refresh(AuthReason.PRINCIPAL_INACTIVE, claims.subject)

        pair, new_claims = self.codec.issue_pair(principal)
        try:
            self.refresh_tokens.rotate(
                record.id,
                fingerprint,
                principal.id,
                self.codec.fingerprint(pair.refresh_token),
                new_claims.issued_at,
                new_claims.expires_at,
            )
        except RotationConflict as exc:
            # Lost the race against a concurrent refresh with the same token.
            raise self._reject_refresh(AuthReason.TOKEN_UNKNOWN_OR_REUSED, principal.id, "rotation conflict") from exc

        self.audit.record("token.refreshed", principal.id, {"old_record_id": record.id})
        return pair

    def logout(self, refresh_token: str | None, principal: Principal | None = None) -> bool:
        """Drop the refresh record for refresh_token, if any. Always succeeds.

        When principal is given, only a record owned by that principal is
        deleted, so one user cannot log another out with a stolen token
        string. Returns True if a record was removed.
        """
        removed = False
        if refresh_token:
            claims = self._decode_for_logout(refresh_token)
            owner_ok = claims is not None and (principal is None or claims.subject == principal.id)
            if owner_ok:
                removed = self.refresh_tokens.delete_token(self.codec.fingerprint(refresh_token), claims.subject)
        self.audit.record(
            "user.logout",
            principal.id if principal is not None else None,
            {"refresh_token_removed": removed},
        )
        return removed

    def _decode_for_logout(self, refresh_token: str) -> TokenClaims | None:
        try:
            return self.codec.verify(refresh_token, TokenClass.REFRESH, allow_expired=True)
        except TokenError:
            return None

    def change_password(self, user_id: int, current_password: str, new_password: str) -> int:
        """Replace the password and revoke every refresh token. Returns tokens revoked.

        Access tokens already issued stay valid until they expire.
        """
        principal = self.users.find_by_id(user_id)
        if principal is None:
            raise NotFoundError()
        if not self.credentials.verify(current_password, principal.password_hash):
            self.audit.record("user.password_change_failed", user_id, {"reason": "current_password_incorrect"})
            raise unauthenticated(AuthReason.CURRENT_PASSWORD_INCORRECT)
        check_password_policy(new_password)
        if new_password == current_password:
            raise ValidationError(AuthReason.WEAK_PASSWORD, "New password must differ from the current password.")

        if not self.users.update_password_hash(user_id, self.credentials.hash(new_password)):
            raise NotFoundError()
        revoked = self.refresh_tokens.revoke_all(user_id)
        self.audit.record("user.password_changed", user_id, {"refresh_tokens_revoked": revoked})
        logger.info("Password changed (id=%s, sessions revoked=%d)", user_id, revoked)
        return revoked

    def revoke_sessions(self, user_id: int, actor_id: int | None = None) -> int:
        """Delete every refresh record for user_id (admin-forced logout)."""
        if self.users.find_by_id(user_id) is None:
            raise NotFoundError()
        revoked = self.refresh_tokens.revoke_all(user_id)
        self.audit.record("user.sessions_revoked", user_id, {"actor_id": actor_id, "revoked": revoked})
        return revoked

    def get_principal(self, user_id: int) -> Principal:
        principal = self.users.find_by_id(user_id)
        if principal is None:
            raise NotFoundError()
        return principal
