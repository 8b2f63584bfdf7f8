"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore and RefreshTokenStore are the repositories; _row_to_principal /
_row_to_refresh are the mappers. Flow, dependency and route code never touches
SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Refresh tokens are stored as keyed fingerprints (see auth/tokens.py), never
  as raw token strings.

Rotation [R1]:
  RefreshTokenStore.rotate() deletes the presented record and inserts its
  replacement inside one transaction. The DELETE matches the old row by id
  and fingerprint, and ids are never reused (AUTOINCREMENT), so a late
  duplicate can never match the replacement row. The DELETE takes the write
  lock on that row (SQLite: the database write lock; PostgreSQL: the row
  lock), so a concurrent duplicate rotation blocks until the first commits
  and then deletes zero rows. Zero rows deleted means
  the token was already consumed: the transaction is rolled back and
  RotationConflict is raised, so no second token is ever issued. Because the
  insert commits with the delete, a cancelled request leaves either the old
  record or the new one, never neither.

Timestamps on refresh records are integer epoch seconds so expiry checks are
plain integer comparisons in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import ConflictError
from auth.models import Principal, RefreshTokenRecord, Role
from auth.tokens import utc_now

_DEFAULT_DB_URL = "sqlite:///authcore.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lower-case
    Column("name", String(100), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default=Role.USER.value),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("issued_at", Integer, nullable=False),  # epoch seconds
    Column("expires_at", Integer, nullable=False),  # epoch seconds
    Index("ix_refresh_tokens_user_id", "user_id"),
    sqlite_autoincrement=True,  # never reuse ids of consumed rows
)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _make_engine(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _epoch(moment: datetime) -> int:
    return int(moment.timestamp())


# ---------------------------------------------------------------------------
# Principal repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for Principal records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        uid = store.create(Principal(email="a@example.com", name="A", password_hash=h))
        principal = store.find_by_email("a@example.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = _make_engine(db_url)

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create(self, principal: Principal) -> int:
        """Insert a principal and return its new id.

        Raises ConflictError if the email is already registered. The UNIQUE
        constraint is the authority here, so two concurrent registrations for
        the same email cannot both succeed even if both passed the flow's
        pre-check.
        """
        now = _now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        email=principal.email.lower(),
                        name=principal.name,
                        password_hash=principal.password_hash,
                        role=principal.role.value,
                        is_active=1 if principal.is_active else 0,
                        created_at=now,
                        updated_at=now,
                    )
                )
        except IntegrityError as exc:
            raise ConflictError() from exc
        return result.inserted_primary_key[0]

    def find_by_id(self, user_id: int) -> Principal | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def find_by_email(self, email: str) -> Principal | None:
        """Look up a principal by email, case-insensitively."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.lower())).fetchone()
        return _row_to_principal(row) if row is not None else None

    def update_password_hash(self, user_id: int, password_hash: str) -> bool:
        """Replace the stored hash. Returns False if user_id does not exist."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_hash=password_hash, updated_at=_now_iso())
            )
        return result.rowcount > 0

    def set_active(self, user_id: int, active: bool) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(is_active=1 if active else 0, updated_at=_now_iso())
            )
        return result.rowcount > 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(_users.select().limit(1))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Refresh token repository
# ---------------------------------------------------------------------------


class RotationConflict(Exception):
    """The record being rotated was already gone (consumed, revoked or purged)."""


class RefreshTokenStore:
    """Repository for single-use refresh token records.

    Methods take the token fingerprint (auth.tokens.TokenCodec.fingerprint),
    not the raw token.

    Usage:
        store = RefreshTokenStore("sqlite:///:memory:")
        rid = store.persist(user_id, fp, issued_at, expires_at)
        record = store.find_active(fp, user_id)
        new_id = store.rotate(record.id, fp, user_id, new_fp, issued_at, expires_at)
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, clock: Callable[[], datetime] = utc_now) -> None:
        self.engine: Engine = _make_engine(db_url)
        self._clock = clock

    def persist(self, user_id: int, token_hash: str, issued_at: datetime, expires_at: datetime) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.insert().values(
                    user_id=user_id,
                    token_hash=token_hash,
                    issued_at=_epoch(issued_at),
                    expires_at=_epoch(expires_at),
                )
            )
        return result.inserted_primary_key[0]

    def find_active(self, token_hash: str, user_id: int) -> RefreshTokenRecord | None:
        """Return the live record for this fingerprint and owner, or None.

        Expired rows are treated as absent even before purge_expired() runs.
        """
        now = _epoch(self._clock())
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(
                    (_refresh_tokens.c.token_hash == token_hash)
                    & (_refresh_tokens.c.user_id == user_id)
                    & (_refresh_tokens.c.expires_at >= now)
                )
            ).fetchone()
        return _row_to_refresh(row) if row is not None else None

    def rotate(
        self,
        old_record_id: int,
        old_token_hash: str,
        user_id: int,
        new_token_hash: str,
        issued_at: datetime,
        expires_at: datetime,
    ) -> int:
        """Atomically replace old_record_id with a new record [R1].

        Returns the new record id. Raises RotationConflict, with nothing
        written, if the old record no longer exists.
        """
        with self.engine.begin() as conn:
            deleted = conn.execute(
                _refresh_tokens.delete().where(
                    (_refresh_tokens.c.id == old_record_id)
                    & (_refresh_tokens.c.token_hash == old_token_hash)
                    & (_refresh_tokens.c.user_id == user_id)
                )
            )
            if deleted.rowcount != 1:
                # Leaving the with-block by exception rolls the transaction back.
                raise RotationConflict(f"refresh record {old_record_id} already consumed")
            result = conn.execute(
                _refresh_tokens.insert().values(
                    user_id=user_id,
                    token_hash=new_token_hash,
                    issued_at=_epoch(issued_at),
                    expires_at=_epoch(expires_at),
                )
            )
        return result.inserted_primary_key[0]

    def delete_token(self, token_hash: str, user_id: int | None = None) -> bool:
        """Delete one record by fingerprint. Idempotent; returns True if a row went away.

        When user_id is given the delete only matches that owner's record.
        """
        condition = _refresh_tokens.c.token_hash == token_hash
        if user_id is not None:
            condition = condition & (_refresh_tokens.c.user_id == user_id)
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(condition))
        return result.rowcount > 0

    def revoke_all(self, user_id: int) -> int:
        """Delete every refresh record for a principal. Returns rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
        return result.rowcount

    def count_active(self, user_id: int) -> int:
        now = _epoch(self._clock())
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_refresh_tokens)
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.expires_at >= now))
            ).scalar()
        return result or 0

    def purge_expired(self) -> int:
        """Delete all expired records. Returns number of rows removed."""
        now = _epoch(self._clock())
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at < now))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_principal(row) -> Principal:
    return Principal(
        id=row.id,
        email=row.email,
        name=row.name,
        password_hash=row.password_hash,
        role=Role(row.role),
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_refresh(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        issued_at=datetime.fromtimestamp(row.issued_at, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(row.expires_at, tz=timezone.utc),
    )
