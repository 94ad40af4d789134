import math
from dataclasses import dataclass
from typing import Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


@dataclass
class AttemptRecord:
    key: str
    failure_count: int
    window_start: float  # ms, from the limiter clock
    locked_until: Optional[float] = None

    def is_locked(self, now: float) -> bool:
        return self.locked_until is not None and now < self.locked_until

    def lock_served(self, now: float) -> bool:
        """True when a lock was set and has since run out."""
        return self.locked_until is not None and now >= self.locked_until

    def window_expired(self, now: float, window_ms: int) -> bool:
        return now >= self.window_start + window_ms


@dataclass(frozen=True)
class RateLimitConfig:
    """Thresholds for one RateLimiter instance.

    Validated on construction so a bad environment value fails at startup
    instead of silently disabling a limiter.
    """

    max_attempts: int = 10
    window_ms: int = 10 * MINUTE_MS
    lockout_ms: int = 30 * MINUTE_MS
    cleanup_interval_ms: int = 5 * MINUTE_MS
    name: str = "default"

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1 (got {self.max_attempts})")
        for field_name in ("window_ms", "lockout_ms", "cleanup_interval_ms"):
            value = getattr(self, field_name)
            if value <= 0:
                raise ValueError(f"{field_name} must be positive (got {value})")


@dataclass(frozen=True)
class RateLimitResult:
    ok: bool
    retry_after_ms: Optional[int] = None

    @property
    def retry_after_seconds(self) -> Optional[int]:
        """Whole seconds for a Retry-After header, rounded up, never below 1."""
        if self.retry_after_ms is None:
            return None
        return max(1, math.ceil(self.retry_after_ms / 1000))


ALLOWED = RateLimitResult(ok=True)


def denied(retry_after_ms: float) -> RateLimitResult:
    """Build a denial. retry_after_ms is rounded up and clamped to >= 1."""
    return RateLimitResult(ok=False, retry_after_ms=max(1, math.ceil(retry_after_ms)))
