"""
upstream.py — Generation API call supervision
==============================================
Sends one validated payload to the upstream generateContent endpoint
under a deadline and folds every outcome into a small vocabulary the
route layer can map to a client-safe response.

No retries happen here. A blind retry of a generation call can bill the
same work twice, so backoff is the caller's decision.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from .errors import (
    UPSTREAM_BUSY,
    UPSTREAM_FAILED,
    UPSTREAM_TIMED_OUT,
    UpstreamError,
)

log = logging.getLogger("gateway.upstream")

# Characters of upstream error body kept in server logs.
LOG_BODY_LIMIT = 500


class UpstreamOutcome(str, Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    BUSY = "busy"
    FAILURE = "failure"
    EMPTY = "empty"


@dataclass(frozen=True)
class UpstreamResult:
    outcome: UpstreamOutcome
    body: Optional[Dict[str, Any]] = None
    status_code: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.outcome is UpstreamOutcome.SUCCESS


# outcome -> (client status, client message)
_CLIENT_ERRORS = {
    UpstreamOutcome.TIMEOUT: (504, UPSTREAM_TIMED_OUT),
    UpstreamOutcome.BUSY: (429, UPSTREAM_BUSY),
    UpstreamOutcome.FAILURE: (502, UPSTREAM_FAILED),
    UpstreamOutcome.EMPTY: (502, UPSTREAM_FAILED),
}


def upstream_error(result: UpstreamResult) -> UpstreamError:
    status, message = _CLIENT_ERRORS[result.outcome]
    return UpstreamError(status_code=status, message=message, reason=f"upstream_{result.outcome.value}")


class UpstreamGateway:
    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str,
        client: httpx.AsyncClient,
        default_deadline: float = 20.0,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.default_deadline = default_deadline
        self._client = client

    @classmethod
    def from_settings(cls, settings, client: httpx.AsyncClient) -> "UpstreamGateway":
        deadline = settings.gemini_timeout_ms / 1000 if settings.gemini_timeout_ms > 0 else 20.0
        return cls(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            client=client,
            default_deadline=deadline,
        )

    @property
    def url(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    async def forward(self, payload: Dict[str, Any], deadline: Optional[float] = None) -> UpstreamResult:
        """Make exactly one upstream call, cancelled if ``deadline`` elapses."""
        deadline = self.default_deadline if deadline is None else deadline
        try:
            resp = await asyncio.wait_for(
                self._client.post(
                    self.url,
                    json=payload,
                    headers={"x-goog-api-key": self._api_key},
                    timeout=deadline,
                ),
                timeout=deadline,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            log.warning("Gemini API timed out after %.1fs", deadline)
            return UpstreamResult(UpstreamOutcome.TIMEOUT)
        except httpx.HTTPError as exc:
            log.error("Gemini API unreachable: %s", exc.__class__.__name__)
            return UpstreamResult(UpstreamOutcome.FAILURE)

        if not resp.is_success:
            log.error(
                "Gemini API error: %s -- %s",
                resp.status_code,
                resp.text[:LOG_BODY_LIMIT],
            )
            outcome = UpstreamOutcome.BUSY if resp.status_code == 429 else UpstreamOutcome.FAILURE
            return UpstreamResult(outcome, status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError:
            log.error("Gemini API returned an unparseable body (%d bytes)", len(resp.content))
            return UpstreamResult(UpstreamOutcome.EMPTY, status_code=resp.status_code)

        if not isinstance(data, dict) or not data:
            log.error("Gemini API returned an empty result")
            return UpstreamResult(UpstreamOutcome.EMPTY, status_code=resp.status_code)

        return UpstreamResult(UpstreamOutcome.SUCCESS, body=data, status_code=resp.status_code)
