"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for CouponGuard happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. login_max_attempts -> LOGIN_MAX_ATTEMPTS). Type coercion and
      validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Non-positive windows, lockouts and
      thresholds are rejected at startup rather than silently disabling a
      limiter.

All durations are milliseconds, matching the names of the env vars.

Layer rule: core/ is the kernel. This module may not import from api/.
"""

import logging
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.models import DAY_MS, MINUTE_MS, RateLimitConfig

logger = logging.getLogger("couponguard.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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

    @property
    def effective_log_level(self) -> str:
        """DEBUG forces debug logging; otherwise LOG_LEVEL, uppercased."""
        return "DEBUG" if self.debug else self.log_level.upper()

    # ------------------------------------------------------------------
    # Login rate limiting (per IP, and per email for the email variant)
    # ------------------------------------------------------------------

    login_window_ms: int = 10 * MINUTE_MS
    login_max_attempts: int = 10
    login_lock_ms: int = 30 * MINUTE_MS

    # ------------------------------------------------------------------
    # Submission rate limiting
    # ------------------------------------------------------------------

    submit_window_ms: int = 10 * MINUTE_MS
    submit_max_per_ip: int = 20
    submit_lock_ms: int = 30 * MINUTE_MS

    # The Nth submission locks the address for EMAIL_LOCK_MS from that moment,
    # not from the first submission of the day.
    email_daily_window_ms: int = DAY_MS
    email_max_per_day: int = 3
    email_lock_ms: int = DAY_MS

    # Escape hatch for load tests. Login throttling is never disabled by
    # this flag.
    disable_rate_limit: bool = False

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    cleanup_interval_ms: int = 5 * MINUTE_MS

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        """Reject zero or negative limits.

        A zero window or zero max would make every request either always
        allowed or always locked, neither of which is a useful deployment.
        """
        numeric = (
            "login_window_ms",
            "login_max_attempts",
            "login_lock_ms",
            "submit_window_ms",
            "submit_max_per_ip",
            "submit_lock_ms",
            "email_daily_window_ms",
            "email_max_per_day",
            "email_lock_ms",
            "cleanup_interval_ms",
        )
        bad = [name.upper() for name in numeric if getattr(self, name) <= 0]
        if bad:
            raise ValueError(f"Rate limit settings must be positive: {', '.join(bad)}")
        if self.disable_rate_limit:
            logger.warning("DISABLE_RATE_LIMIT is set -- submission throttling is off.")
        return self

    # ------------------------------------------------------------------
    # Limiter configs
    # ------------------------------------------------------------------

    def login_config(self) -> RateLimitConfig:
        return RateLimitConfig(
            max_attempts=self.login_max_attempts,
            window_ms=self.login_window_ms,
            lockout_ms=self.login_lock_ms,
            cleanup_interval_ms=self.cleanup_interval_ms,
            name="login",
        )

    def submit_ip_config(self) -> RateLimitConfig:
        return RateLimitConfig(
            max_attempts=self.submit_max_per_ip,
            window_ms=self.submit_window_ms,
            lockout_ms=self.submit_lock_ms,
            cleanup_interval_ms=self.cleanup_interval_ms,
            name="submit_ip",
        )

    def submit_email_config(self) -> RateLimitConfig:
        return RateLimitConfig(
            max_attempts=self.email_max_per_day,
            window_ms=self.email_daily_window_ms,
            lockout_ms=self.email_lock_ms,
            cleanup_interval_ms=self.cleanup_interval_ms,
            name="submit_email",
        )


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
