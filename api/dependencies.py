"""
api/dependencies.py -- FastAPI Depends() helpers for rate limiting.

get_guards()              -- the RateLimitGuards built in lifespan.
require_login_allowed()   -- gate for login routes, keyed by client IP.
check_submit_rate_limit() -- gate for public submission routes, keyed by
                             client IP and then by (tenant, email).

Both gates raise HTTP 429 with a Retry-After header when denied. Recording
login outcomes is left to the login route, which knows whether the
credentials were good:

    @router.post("/login", dependencies=[Depends(require_login_allowed)])
    def login(request: Request, ...):
        guards = get_guards(request)
        ip = get_remote_address(request)
        if not ok:
            guards.record_login_failure(ip)
            ...
        guards.record_login_success(ip)

Client IP comes from slowapi's get_remote_address (request.client.host).
Behind a reverse proxy, run uvicorn with --proxy-headers so that is the real
client address and not the proxy's.

Layer rule: may import from core/ and fastapi; nothing imports api/ from core/.
"""

from __future__ import annotations

import logging
from email.message import Message

from fastapi import HTTPException, Request
from pydantic import ValidationError
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from api.models import SubmitIdentity
from core.config import Settings
from core.guards import RateLimitGuards

logger = logging.getLogger("couponguard.api")


def get_guards(request: Request) -> RateLimitGuards:
    return request.app.state.guards


def _too_many(code: str, message: str, retry_after_seconds: int | None) -> HTTPException:
    return HTTPException(
        status_code=429,
        detail={"code": code, "message": message},
        headers={"Retry-After": str(retry_after_seconds or 1)},
    )


def require_login_allowed(request: Request) -> str:
    """Reject the request with 429 if the client IP is locked out of login.

    Returns the client IP so the route can record the outcome against the
    same key it was checked under.
    """
    ip = get_remote_address(request)
    result = get_guards(request).check_login_rate_limit(ip)
    if not result.ok:
        logger.info("Login from %s throttled (retry in %d ms)", ip, result.retry_after_ms)
        raise _too_many(
            "login_rate_limited",
            "Too many login attempts. Try again later.",
            result.retry_after_seconds,
        )
    return ip


def get_app_settings(request: Request) -> Settings:
    """Settings the running app was built with (set in lifespan)."""
    return request.app.state.settings


def _is_json_content_type(content_type: str | None) -> bool:
    """Match FastAPI's own body dispatch: no content type, application/json, or application/*+json.

    Routes with a JSON body model accept all three, so the gate must read the
    same bodies or the email quota could be skipped by changing one header.
    """
    if not content_type:
        return True
    message = Message()
    message["content-type"] = content_type
    if message.get_content_maintype() != "application":
        return False
    subtype = message.get_content_subtype()
    return subtype == "json" or subtype.endswith("+json")


def _is_form_content_type(content_type: str | None) -> bool:
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    return media_type in ("application/x-www-form-urlencoded", "multipart/form-data")


async def _read_submit_identity(request: Request) -> SubmitIdentity:
    """Pull the email out of a JSON or form body without failing the request.

    A body the gate cannot parse (bad JSON, a multipart body with no boundary,
    ...) is treated as carrying no email: the IP window still applies, and the
    route's own validation reports the error.
    """
    content_type = request.headers.get("content-type")
    try:
        if _is_json_content_type(content_type):
            payload = await request.json()
        elif _is_form_content_type(content_type):
            payload = dict(await request.form())
        else:
            return SubmitIdentity()
        if not isinstance(payload, dict):
            return SubmitIdentity()
        return SubmitIdentity.model_validate(payload)
    except (ValueError, ValidationError, MultiPartException, StarletteHTTPException):
        # json.JSONDecodeError is a ValueError subclass; Starlette turns
        # multipart parse errors into HTTPException(400) inside an app.
        return SubmitIdentity()


async def check_submit_rate_limit(request: Request) -> None:
    """Gate a public form submission by IP window, then by daily email quota.

    Skipped entirely when the app was started with DISABLE_RATE_LIMIT set.
    The tenant id is read from request.state.tenant_id when an upstream
    tenant loader set one.
    """
    if get_app_settings(request).disable_rate_limit:
        return

    ip = get_remote_address(request)
    identity = await _read_submit_identity(request)
    tenant_id = getattr(request.state, "tenant_id", None)

    decision = get_guards(request).check_submit_rate_limit(ip, identity.email, tenant_id)
    if decision.ok:
        return
    if decision.reason == "ip":
        raise _too_many(
            "submit_rate_limited_ip",
            "Too many submissions from this IP. Try again later.",
            decision.retry_after_seconds,
        )
    raise _too_many(
        "submit_rate_limited_email",
        "This email has reached the maximum number of requests.",
        decision.retry_after_seconds,
    )
