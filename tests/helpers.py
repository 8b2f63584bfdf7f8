"""
tests/helpers.py -- Plain helpers shared by test modules.

Kept out of conftest.py so test modules can import them by name.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

ACCESS_SECRET = "unit-access-secret-0123456789abcdef012345"
REFRESH_SECRET = "unit-refresh-secret-0123456789abcdef01234"

# Admin account created by the api_client fixture.
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "AdminPass123"


class FakeClock:
    """Callable clock for TokenCodec and RefreshTokenStore. advance() moves time."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: int) -> None:
        self.current += timedelta(seconds=seconds)
