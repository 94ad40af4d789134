"""
core/ratelimit.py -- In-memory failure counter with rolling window and lockout.

One RateLimiter tracks one kind of attempt (login per IP, submissions per
email, ...). Each key gets an AttemptRecord created lazily on its first
failure. Once failures reach max_attempts inside the window the key is locked
for lockout_ms, independently of the window.

Read path vs write path:
  check()          -- gate a request before processing. Never counts.
  record_failure() -- after the outcome is known. The only way to count.
  record_success() -- clears the key entirely.

Decision order in check(): the lock is always evaluated first. An active lock
blocks even after the window has run out; a lock that has run out means the
penalty was served, so the record is dropped and the key starts clean.

Storage is per-process. Several workers behind a load balancer each keep
their own counters; there is no cross-process coordination.

Empty keys fail open: check() allows, record_*() do nothing. A request with
no identity cannot be attributed to anyone, and blocking it would lock out
every anonymous caller at once.

Usage:
    limiter = RateLimiter(RateLimitConfig(max_attempts=10, name="login"))
    result = limiter.check(ip)
    if not result.ok:
        ...  # 429, Retry-After: result.retry_after_seconds
    limiter.record_failure(ip)
    sweep = limiter.start_cleanup_sweep()   # inside a running event loop
    sweep.stop()
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from threading import Lock
from typing import Optional

from core.models import ALLOWED, AttemptRecord, RateLimitConfig, RateLimitResult, denied

logger = logging.getLogger("couponguard.ratelimit")

Clock = Callable[[], float]


def monotonic_ms() -> float:
    return time.monotonic() * 1000


class RateLimiter:
    """Per-key failure counter. All operations are synchronous."""

    def __init__(self, config: Optional[RateLimitConfig] = None, clock: Clock = monotonic_ms) -> None:
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._records: dict[str, AttemptRecord] = {}
        # FastAPI runs sync dependencies in a thread pool, so the
        # read-modify-write sequences below must not interleave.
        self._lock = Lock()

    @property
    def name(self) -> str:
        return self.config.name

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._records

    def failure_count(self, key: str) -> int:
        """Current failure count for key, 0 if untracked."""
        with self._lock:
            record = self._records.get(key)
            return record.failure_count if record else 0

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def check(self, key: Optional[str]) -> RateLimitResult:
        """Decide whether an attempt for key may proceed.

        May lazily drop a stale record or engage a lock whose threshold was
        reached without one being set, but never increments the count.
        """
        if not key:
            return ALLOWED
        now = self._clock()
        cfg = self.config
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return ALLOWED
            if record.is_locked(now):
                return denied(record.locked_until - now)
            if record.lock_served(now) or record.window_expired(now, cfg.window_ms):
                del self._records[key]
                return ALLOWED
            if record.failure_count >= cfg.max_attempts:
                record.locked_until = now + cfg.lockout_ms
                logger.warning("[%s] lockout engaged on check for %s", self.name, key)
                return denied(cfg.lockout_ms)
        return ALLOWED

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def record_failure(self, key: Optional[str]) -> None:
        """Count one failed attempt for key, locking it at max_attempts."""
        if not key:
            return
        now = self._clock()
        cfg = self.config
        with self._lock:
            record = self._records.get(key)
            if record is not None and record.is_locked(now):
                # Lock already running; count it but do not extend the penalty.
                record.failure_count += 1
                return
            if record is None or record.lock_served(now) or record.window_expired(now, cfg.window_ms):
                record = AttemptRecord(key=key, failure_count=0, window_start=now)
                self._records[key] = record
            record.failure_count += 1
            if record.failure_count >= cfg.max_attempts:
                record.locked_until = now + cfg.lockout_ms
                logger.warning(
                    "[%s] lockout engaged for %s after %d failures (%d ms)",
                    self.name,
                    key,
                    record.failure_count,
                    cfg.lockout_ms,
                )

    def record_success(self, key: Optional[str]) -> None:
        """Forget key entirely. Idempotent."""
        if not key:
            return
        with self._lock:
            self._records.pop(key, None)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired(self) -> int:
        """Delete records whose window and lock have both run out. Returns number removed."""
        now = self._clock()
        window_ms = self.config.window_ms
        with self._lock:
            stale = [
                key
                for key, record in self._records.items()
                if record.window_expired(now, window_ms) and not record.is_locked(now)
            ]
            for key in stale:
                del self._records[key]
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._records.clear()

    def start_cleanup_sweep(self) -> CleanupSweep:
        """Start a background sweep over this limiter. Needs a running event loop."""
        sweep = CleanupSweep([self], self.config.cleanup_interval_ms)
        sweep.start()
        return sweep


class CleanupSweep:
    """Cancellable background task that purges stale records.

    Pattern mirrors a lifespan-managed purge loop: asyncio.sleep yields to the
    event loop between passes, and task.cancel() on shutdown unwinds it out of
    the sleep. The sweep only ever deletes expired records, so it cannot undo a
    lock decision made by a request in between passes.
    """

    def __init__(self, limiters: Iterable[RateLimiter], interval_ms: int) -> None:
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive (got {interval_ms})")
        self._limiters = list(limiters)
        self.interval_ms = interval_ms
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> CleanupSweep:
        """Schedule the sweep on the running loop. Calling it twice is a no-op."""
        if self.running:
            return self
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._loop())
        logger.info(
            "Cleanup sweep started (%d limiter(s), every %d ms)",
            len(self._limiters),
            self.interval_ms,
        )
        return self

    def stop(self) -> None:
        """Cancel the sweep. Safe to call more than once."""
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
            logger.info("Cleanup sweep stopped")
        self._task = None

    def run_once(self) -> int:
        """Purge every limiter once. Returns the total number of records removed."""
        cleaned = 0
        for limiter in self._limiters:
            cleaned += limiter.purge_expired()
        if cleaned > 0:
            logger.debug("Rate limiter cleanup removed %d entries", cleaned)
        return cleaned

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_ms / 1000)
            try:
                self.run_once()
            except Exception:
                logger.exception("Rate limiter cleanup pass failed")
