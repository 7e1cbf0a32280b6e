from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Public configuration discovery
# ---------------------------------------------------------------------------

class CaptchaConfig(BaseModel):
    provider: str = Field(..., description="Challenge provider name.")
    enabled: bool = Field(..., description="Whether the challenge step is required.")
    siteKey: str = Field(default="", description="Public site key; empty when disabled.")


class PublicConfig(BaseModel):
    captcha: CaptchaConfig


# ---------------------------------------------------------------------------
# Human verification
# ---------------------------------------------------------------------------

class HumanVerifyRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    # Any JSON value; non-strings fail the challenge.
    token: Any = Field(
        default=None,
        description="Challenge response from the browser widget. Omitted when the challenge is disabled.",
    )


class HumanVerifyResponse(BaseModel):
    captchaEnabled: bool
    humanToken: str = Field(..., description="Signed human proof token for the X-Skillbun-Human header.")
    expiresAt: int = Field(..., description="Token expiry, epoch milliseconds.")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ErrorResponse(BaseModel):
    error: str
