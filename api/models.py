"""
API request and response models for CouponGuard.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py, which
own the internal limiter state. Dependencies map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SubmitIdentity(BaseModel):
    """The part of a public submission body the submit gate cares about.

    Everything else in the body (name, phone, consent flags, ...) belongs to
    the route handler and is ignored here.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    email: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def coerce_email(cls, value: object) -> Optional[str]:
        """Accept anything form-ish; a non-string email is treated as missing."""
        return value if isinstance(value, str) else None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
