"""
tests/conftest.py -- Shared test fixtures for CouponGuard.

This module provides:
  - FakeClock / clock: a manual millisecond clock so window and lockout
    expiry can be tested without sleeping
  - make_limiter: factory for isolated RateLimiter instances on that clock
  - clean_env: unsets limiter env vars so the host shell cannot leak in
  - guards: RateLimitGuards with small thresholds on that clock
  - api_client: TestClient against the real app with a patched lifespan and a
    small set of stand-in consumer routes (login, submit, coupon)

The consumer routes stand in for the coupon application's real handlers so the
dependencies in api/dependencies.py are exercised through FastAPI's actual
dependency injection, exception handlers and response serialization.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import asynccontextmanager

import pytest
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient
from pydantic import BaseModel

from api.dependencies import check_submit_rate_limit, get_guards, require_login_allowed
from api.main import app
from core.config import Settings, get_settings
from core.guards import RateLimitGuards
from core.models import RateLimitConfig
from core.ratelimit import RateLimiter
from tests.helpers import GOOD_PASSWORD, RATE_LIMIT_ENV_VARS


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced clock returning milliseconds."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_limiter(clock: FakeClock):
    """Return a factory building RateLimiters on the shared fake clock."""

    def _make(**overrides) -> RateLimiter:
        params = {
            "max_attempts": 10,
            "window_ms": 15 * 60 * 1000,
            "lockout_ms": 30 * 60 * 1000,
            "cleanup_interval_ms": 5 * 60 * 1000,
            "name": "test",
        }
        params.update(overrides)
        return RateLimiter(RateLimitConfig(**params), clock=clock)

    return _make


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Unset limiter env vars and drop the cached Settings around a test."""
    for var in RATE_LIMIT_ENV_VARS + ("DEBUG", "LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def guards(clock: FakeClock, clean_env: None) -> RateLimitGuards:
    """Guards with the production login threshold and small submit quotas."""
    settings = Settings(_env_file=None, submit_max_per_ip=5, email_max_per_day=2)
    return RateLimitGuards.from_settings(settings, clock=clock)


# ---------------------------------------------------------------------------
# Stand-in consumer routes
# ---------------------------------------------------------------------------


class LoginBody(BaseModel):
    email: str
    password: str


consumer_router = APIRouter()


@consumer_router.post("/test/login")
def consumer_login(request: Request, body: LoginBody, ip: str = Depends(require_login_allowed)) -> JSONResponse:
    guards = get_guards(request)
    if body.password != GOOD_PASSWORD:
        guards.record_login_failure(ip)
        return JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
        )
    guards.record_login_success(ip)
    return JSONResponse(content={"ok": True})


@consumer_router.post("/test/submit", dependencies=[Depends(check_submit_rate_limit)])
async def consumer_submit() -> dict:
    return {"ok": True}


def _load_tenant(tenant_id: int, request: Request) -> None:
    request.state.tenant_id = tenant_id


@consumer_router.post(
    "/test/t/{tenant_id}/submit",
    dependencies=[Depends(_load_tenant), Depends(check_submit_rate_limit)],
)
async def consumer_tenant_submit(tenant_id: int) -> dict:
    return {"ok": True, "tenant_id": tenant_id}


class CouponBody(BaseModel):
    email: str


@consumer_router.post("/test/coupon", dependencies=[Depends(check_submit_rate_limit)])
async def consumer_coupon(body: CouponBody) -> dict:
    return {"ok": True, "email": body.email}


app.include_router(consumer_router)


# ---------------------------------------------------------------------------
# App client
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings):
    """Return a lifespan that builds guards from test settings instead of the environment."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.guards = RateLimitGuards.from_settings(settings)
        app.state.guards.start_cleanup_interval()
        yield
        app.state.guards.stop_cleanup_interval()

    return test_lifespan


@pytest.fixture
def api_client(clean_env: None) -> Generator[TestClient, None, None]:
    """Yield a TestClient with login max 3, submit max 5/IP, email max 2/day.

    Function-scoped so each test starts with empty counters.
    """
    settings = Settings(_env_file=None, login_max_attempts=3, submit_max_per_ip=5, email_max_per_day=2)
    original = app.router.lifespan_context
    app.router.lifespan_context = _patch_lifespan(settings)
    try:
        with TestClient(app, raise_server_exceptions=True) as client:
            yield client
    finally:
        app.router.lifespan_context = original
