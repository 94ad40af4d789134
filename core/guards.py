"""
core/guards.py -- Login and submission throttling entry points.

RateLimitGuards composes four independent RateLimiter instances. They never
share storage: an IP locked out of login can still submit a coupon form, and
the other way round.

  login         -- failed logins per client IP
  login_email   -- failed logins per normalized email, for callers that also
                   want to stop one account being guessed from many IPs
  submit_ip     -- public form submissions per client IP
  submit_email  -- public form submissions per (tenant, email), daily

Callers normalize once before calling; the email-keyed methods here do it
themselves via normalize_email_key() so check and record always agree.

Layer rule: no imports from api/. This module knows nothing about HTTP.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from core.config import Settings
from core.models import RateLimitConfig, RateLimitResult
from core.ratelimit import CleanupSweep, Clock, RateLimiter, monotonic_ms

logger = logging.getLogger("couponguard.guards")


def normalize_email_key(email: Optional[str], tenant_id: Optional[int] = None) -> str:
    """Lowercase and trim an email; prefix with the tenant id when one is given.

    Tenant scoping keeps the daily quota per tenant: the same address may
    request coupons from two different shops.
    """
    base = str(email or "").strip().lower()
    if not base:
        return ""
    # bool is an int subclass; a stray True must not become tenant "True".
    if isinstance(tenant_id, int) and not isinstance(tenant_id, bool):
        return f"{tenant_id}:{base}"
    return base


@dataclass(frozen=True)
class SubmitDecision:
    ok: bool
    reason: Optional[str] = None  # "ip" | "email" when denied
    retry_after_ms: Optional[int] = None

    @classmethod
    def deny(cls, reason: str, result: RateLimitResult) -> SubmitDecision:
        return cls(ok=False, reason=reason, retry_after_ms=result.retry_after_ms)

    @property
    def retry_after_seconds(self) -> Optional[int]:
        return RateLimitResult(ok=self.ok, retry_after_ms=self.retry_after_ms).retry_after_seconds


class RateLimitGuards:
    def __init__(
        self,
        login: RateLimitConfig,
        submit_ip: RateLimitConfig,
        submit_email: RateLimitConfig,
        login_email: Optional[RateLimitConfig] = None,
        clock: Clock = monotonic_ms,
    ) -> None:
        if login_email is None:
            login_email = RateLimitConfig(
                max_attempts=login.max_attempts,
                window_ms=login.window_ms,
                lockout_ms=login.lockout_ms,
                cleanup_interval_ms=login.cleanup_interval_ms,
                name="login_email",
            )
        self.login = RateLimiter(login, clock=clock)
        self.login_email = RateLimiter(login_email, clock=clock)
        self.submit_ip = RateLimiter(submit_ip, clock=clock)
        self.submit_email = RateLimiter(submit_email, clock=clock)
        self._sweep: Optional[CleanupSweep] = None

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = monotonic_ms) -> RateLimitGuards:
        return cls(
            login=settings.login_config(),
            submit_ip=settings.submit_ip_config(),
            submit_email=settings.submit_email_config(),
            clock=clock,
        )

    @property
    def limiters(self) -> tuple[RateLimiter, ...]:
        return (self.login, self.login_email, self.submit_ip, self.submit_email)

    # ------------------------------------------------------------------
    # Login (per IP)
    # ------------------------------------------------------------------

    def check_login_rate_limit(self, identity: Optional[str]) -> RateLimitResult:
        return self.login.check(identity)

    def record_login_failure(self, identity: Optional[str]) -> None:
        self.login.record_failure(identity)

    def record_login_success(self, identity: Optional[str]) -> None:
        self.login.record_success(identity)

    # ------------------------------------------------------------------
    # Login (per email)
    # ------------------------------------------------------------------

    def check_login_email_rate_limit(self, email: Optional[str]) -> RateLimitResult:
        return self.login_email.check(normalize_email_key(email))

    def record_login_email_failure(self, email: Optional[str]) -> None:
        self.login_email.record_failure(normalize_email_key(email))

    def record_login_email_success(self, email: Optional[str]) -> None:
        self.login_email.record_success(normalize_email_key(email))

    # ------------------------------------------------------------------
    # Public form submissions
    # ------------------------------------------------------------------

    def check_submit_rate_limit(
        self,
        ip: Optional[str],
        email: Optional[str],
        tenant_id: Optional[int] = None,
    ) -> SubmitDecision:
        """Gate one submission on the IP window first, then the email quota.

        An accepted submission is recorded against both limiters straight
        away so a burst of parallel posts cannot all slip under the quota.
        A denied submission is not recorded.

        The email quota uses the same lockout rule as every other limiter:
        the submission that reaches EMAIL_MAX_PER_DAY locks the address for
        EMAIL_LOCK_MS counted from that submission. Quota spread across most
        of a day therefore blocks for up to nearly two days, not until 24h
        after the first request.
        """
        ip_check = self.submit_ip.check(ip)
        if not ip_check.ok:
            logger.info("Submission from %s rejected: IP limit", ip)
            return SubmitDecision.deny("ip", ip_check)

        email_key = normalize_email_key(email, tenant_id)
        email_check = self.submit_email.check(email_key)
        if not email_check.ok:
            logger.info("Submission for %s rejected: email limit", email_key)
            return SubmitDecision.deny("email", email_check)

        self.submit_ip.record_failure(ip)
        self.submit_email.record_failure(email_key)
        return SubmitDecision(ok=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_cleanup_interval(self, interval_ms: Optional[int] = None) -> CleanupSweep:
        """Start one sweep over all limiters. Returns the running handle if already started."""
        if self._sweep is not None and self._sweep.running:
            return self._sweep
        interval = interval_ms or min(lim.config.cleanup_interval_ms for lim in self.limiters)
        self._sweep = CleanupSweep(self.limiters, interval).start()
        return self._sweep

    def stop_cleanup_interval(self) -> None:
        if self._sweep is not None:
            self._sweep.stop()
            self._sweep = None

    def reset(self) -> None:
        for limiter in self.limiters:
            limiter.reset()
