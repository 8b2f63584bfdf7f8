"""
auth/ports.py -- Collaborator contracts consumed by AuthFlows and the gates.

auth/store.py provides the SQL implementations; tests substitute doubles that
simulate races and store failures. Protocols are structural, so neither side
imports the other.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from auth.models import Principal, RefreshTokenRecord


class PrincipalRepository(Protocol):
    """Lookup and the two writes the auth core is allowed to make."""

    def find_by_id(self, user_id: int) -> Principal | None: ...

    def find_by_email(self, email: str) -> Principal | None: ...

    def create(self, principal: Principal) -> int:
        """Insert and return the new id. Raises ConflictError on duplicate email."""
        ...

    def update_password_hash(self, user_id: int, password_hash: str) -> bool: ...


class RefreshTokenRepository(Protocol):
    """Single-use refresh records, keyed by token fingerprint."""

    def persist(self, user_id: int, token_hash: str, issued_at: datetime, expires_at: datetime) -> int: ...

    def find_active(self, token_hash: str, user_id: int) -> RefreshTokenRecord | None: ...

    def rotate(
        self,
        old_record_id: int,
        old_token_hash: str,
        user_id: int,
        new_token_hash: str,
        issued_at: datetime,
        expires_at: datetime,
    ) -> int:
        """Delete old and insert new as one unit. Raises RotationConflict if old is gone."""
        ...

    def delete_token(self, token_hash: str, user_id: int | None = None) -> bool: ...

    def revoke_all(self, user_id: int) -> int: ...


class AuditSink(Protocol):
    """Write-only audit trail. Implementations must not raise."""

    def record(self, event: str, principal_id: int | None = None, metadata: dict[str, Any] | None = None) -> None: ...
