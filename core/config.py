"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for authcore happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Cross-field validation of the two signing
      secrets once every field is resolved.

Security notes:
  [S1] Both ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET are required. There
       is no dev-mode fallback: a missing secret is a hard startup failure.

  [S2] Each secret must be at least 32 characters. HMAC-SHA256 signing relies
       on key entropy.

  [S3] The two secrets must differ. Access and refresh tokens live in separate
       secret domains; a shared key would let one class verify as the other
       whenever the type claim check is bypassed.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import re
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authcore.config")

_MIN_SECRET_LENGTH = 32

_DURATION_RE = re.compile(r"^(\d+)\s*([smhd]?)$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: object) -> int:
    """Convert a TTL setting to seconds.

    Accepts a bare integer (seconds) or a string with a unit suffix:
    "900", "15m", "1h", "7d". Raises ValueError for anything else, including
    zero and negative durations.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, int):
        seconds = value
    else:
        match = _DURATION_RE.match(str(value).strip().lower())
        if match is None:
            raise ValueError(f"Invalid duration: {value!r}. Use seconds or <n>s/m/h/d.")
        seconds = int(match.group(1)) * _DURATION_UNITS[match.group(2)]
    if seconds <= 0:
        raise ValueError(f"Duration must be positive, got {value!r}")
    return seconds


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Secrets default to the empty string so the validator can report a clear
    message; every other field has a working default.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "sqlite:///authcore.db"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    access_token_secret: str = ""
    refresh_token_secret: str = ""
    # Stored as seconds after parse_duration runs.
    access_token_ttl: int = 15 * 60
    refresh_token_ttl: int = 7 * 24 * 3600

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    password_hash_cost: int = 12

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("access_token_ttl", "refresh_token_ttl", mode="before")
    @classmethod
    def _parse_ttl(cls, value: object) -> int:
        return parse_duration(value)

    @field_validator("password_hash_cost")
    @classmethod
    def _check_cost(cls, value: int) -> int:
        # bcrypt accepts log2 rounds in [4, 31].
        if not 4 <= value <= 31:
            raise ValueError("PASSWORD_HASH_COST must be between 4 and 31.")
        return value

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing secret policy [S1][S2][S3]."""
        for name in ("access_token_secret", "refresh_token_secret"):
            value = getattr(self, name)
            if not value:
                raise ValueError(
                    f"{name.upper()} is required. Set it in your environment or .env file."
                )
            if len(value) < _MIN_SECRET_LENGTH:
                raise ValueError(f"{name.upper()} must be at least {_MIN_SECRET_LENGTH} characters.")
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must be different.")
        if self.refresh_token_ttl <= self.access_token_ttl:
            logger.warning(
                "REFRESH_TOKEN_TTL (%ds) is not longer than ACCESS_TOKEN_TTL (%ds)",
                self.refresh_token_ttl,
                self.access_token_ttl,
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
