"""
errors.py — Client-safe error taxonomy
======================================
Every rejection the gateway produces is a GatewayError. The exception
handler in main.py renders it as ``{"error": message}`` with its status;
``reason`` is a short tag for server-side logs only and never leaves the
process.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

GENERIC_INVALID = "Invalid request format."
PAYLOAD_TOO_LARGE = "Conversation payload too large."
CONVERSATION_TOO_LONG = "Conversation too long. Please start a new quiz."
BODY_TOO_LARGE = "Request body too large."
HUMAN_PROOF_REQUIRED = "Human verification required. Please verify and try again."
CAPTCHA_FAILED = "Captcha verification failed. Please try again."
TOO_MANY_REQUESTS = "Too many requests. Please slow down."
TOO_MANY_API_REQUESTS = "Too many API requests. Please wait a moment."
UPSTREAM_BUSY = "AI is busy. Please try again in a moment."
UPSTREAM_FAILED = "Something went wrong with our AI service. Please try again."
UPSTREAM_TIMED_OUT = "AI service timed out. Please try again."
API_KEY_MISSING = "API key not configured. Please contact the team."


@dataclass(eq=False)
class GatewayError(Exception):
    """Base gateway exception with a fixed status and client message."""

    status_code: int
    message: str
    reason: str = "error"

    def headers(self) -> Optional[Dict[str, str]]:
        return None

    def as_dict(self) -> Dict[str, str]:
        return {"error": self.message}

    def __str__(self) -> str:
        return f"{self.reason}: {self.message}"


class PayloadValidationError(GatewayError):
    def __init__(self, reason: str, message: str = GENERIC_INVALID) -> None:
        super().__init__(status_code=400, message=message, reason=reason)


class AuthError(GatewayError):
    def __init__(self, reason: str, message: str = HUMAN_PROOF_REQUIRED) -> None:
        super().__init__(status_code=403, message=message, reason=reason)


class AdmissionError(GatewayError):
    def __init__(self, tier: str, message: str, retry_after: int) -> None:
        super().__init__(status_code=429, message=message, reason=f"rate_limited:{tier}")
        self.retry_after = max(1, int(retry_after))

    def headers(self) -> Optional[Dict[str, str]]:
        return {"Retry-After": str(self.retry_after)}


class UpstreamError(GatewayError):
    pass


class ConfigError(GatewayError):
    def __init__(self, reason: str, message: str = API_KEY_MISSING) -> None:
        super().__init__(status_code=500, message=message, reason=reason)


class BodyTooLargeError(GatewayError):
    def __init__(self) -> None:
        super().__init__(status_code=413, message=BODY_TOO_LARGE, reason="body_too_large")
