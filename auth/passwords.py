"""
auth/passwords.py -- Password hashing, verification and input policy.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). Its cost factor makes
       brute-force expensive; the cost is configurable through
       PASSWORD_HASH_COST and defaults to 12.

  bcrypt only looks at the first 72 bytes of its input. The policy rejects
       longer passwords instead of letting them be truncated silently.

  Timing equalization [C1]: CredentialService keeps a dummy hash computed at
       the configured cost. Logins for unknown emails verify against it, so
       response time does not reveal whether an account exists.

  A stored hash that bcrypt cannot parse is a data integrity problem, not a
       wrong password. verify() raises InternalError for it rather than
       returning False.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import re

import bcrypt

from auth.errors import AuthReason, InternalError, ValidationError

logger = logging.getLogger("authcore.auth")

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

PASSWORD_MIN_LENGTH = 8
_BCRYPT_MAX_BYTES = 72


def validate_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email))


def password_policy_violation(password: str) -> str | None:
    """Return the first policy rule the password breaks, or None if it passes."""
    if len(password) < PASSWORD_MIN_LENGTH:
        return f"Password must be at least {PASSWORD_MIN_LENGTH} characters long."
    if len(password.encode("utf-8")) > _BCRYPT_MAX_BYTES:
        return f"Password must be at most {_BCRYPT_MAX_BYTES} bytes long."
    if not re.search(r"[a-z]", password):
        return "Password must contain at least one lowercase letter."
    if not re.search(r"[A-Z]", password):
        return "Password must contain at least one uppercase letter."
    if not re.search(r"\d", password):
        return "Password must contain at least one digit."
    return None


def check_password_policy(password: str) -> None:
    """Raise ValidationError(WEAK_PASSWORD) if the password fails the policy."""
    violation = password_policy_violation(password)
    if violation is not None:
        raise ValidationError(AuthReason.WEAK_PASSWORD, violation)


class CredentialService:
    """One-way password hashing. Pure CPU work, no I/O.

    Usage:
        credentials = CredentialService(cost=12)
        hashed = credentials.hash("Secret123!")
        credentials.verify("Secret123!", hashed)   # True
    """

    def __init__(self, cost: int = 12) -> None:
        self.cost = cost
        self._dummy_hash = self.hash("authcore_timing_dummy")

    def hash(self, plain: str) -> str:
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.cost)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if plain matches hashed.

        Raises InternalError if hashed is not a bcrypt hash.
        """
        candidate = plain.encode("utf-8")
        if len(candidate) > _BCRYPT_MAX_BYTES:
            # Never accepted at hash time, so it cannot match.
            self.verify_dummy(plain)
            return False
        try:
            return bcrypt.checkpw(candidate, hashed.encode("utf-8"))
        except ValueError as exc:
            logger.error("Stored password hash is malformed: %s", exc)
            raise InternalError(AuthReason.INTERNAL_ERROR) from exc

    def verify_dummy(self, plain: str) -> None:
        """Burn one bcrypt check against the dummy hash [C1]."""
        bcrypt.checkpw(plain.encode("utf-8")[:_BCRYPT_MAX_BYTES], self._dummy_hash.encode("utf-8"))
