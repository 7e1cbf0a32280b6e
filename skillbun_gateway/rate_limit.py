"""
rate_limit.py — Per-client admission control
=============================================
Two fixed-window tiers keyed by caller network address, counted with
the ``limits`` library that backs slowapi: a looser *general* tier applied
to every HTTP request and a tighter *upstream* tier applied only to the
generation proxy.

Windows live in process memory. A restart resets every counter; this is
abuse throttling, not quota accounting.
"""
from __future__ import annotations

import logging
import math
import time
from typing import Optional

from limits import RateLimitItem, parse
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from .errors import TOO_MANY_API_REQUESTS, TOO_MANY_REQUESTS, AdmissionError

log = logging.getLogger("gateway.admission")


def parse_rate_limit(spec: str) -> RateLimitItem:
    """Parse a limit like ``'60/minute'`` or ``'100 per hour'``."""
    item = parse((spec or "").strip())
    if item.amount <= 0:
        raise ValueError(f"rate limit {spec!r} must allow at least one request")
    return item


def client_address(request: Request, trust_proxy: bool = False) -> str:
    """Resolve the caller's network address.

    Behind a reverse proxy the first X-Forwarded-For hop is the client;
    otherwise the socket peer is used.
    """
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return get_remote_address(request) or "unknown"


class AdmissionLimiter:
    """General and upstream tiers for one process, sharing one storage."""

    def __init__(
        self,
        general: RateLimitItem,
        upstream: RateLimitItem,
        storage: Optional[Storage] = None,
    ) -> None:
        self.general = general
        self.upstream = upstream
        self.storage = storage or MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self.storage)

    @classmethod
    def from_limits(cls, general_limit: str, upstream_limit: str) -> "AdmissionLimiter":
        return cls(parse_rate_limit(general_limit), parse_rate_limit(upstream_limit))

    def admit_general(self, identity: str) -> None:
        self._admit(self.general, identity, "general", TOO_MANY_REQUESTS)

    def admit_upstream(self, identity: str) -> None:
        self._admit(self.upstream, identity, "upstream", TOO_MANY_API_REQUESTS)

    def reset(self) -> None:
        self.storage.reset()

    def _admit(self, item: RateLimitItem, identity: str, tier: str, message: str) -> None:
        identity = identity or "unknown"
        if self._strategy.hit(item, tier, identity):
            return
        stats = self._strategy.get_window_stats(item, tier, identity)
        log.info("Admission rejected", extra={"tier": tier})
        raise AdmissionError(tier, message, retry_after=math.ceil(stats.reset_time - time.time()))


def build_limiter(settings) -> Optional[AdmissionLimiter]:
    if not settings.rate_limit_enabled:
        return None
    return AdmissionLimiter.from_limits(settings.general_rate_limit, settings.gemini_rate_limit)


# ---------------------------------------------------------------------------
# General tier: every HTTP request
# ---------------------------------------------------------------------------

class GeneralAdmissionMiddleware:
    def __init__(self, app: ASGIApp, limiter: AdmissionLimiter, trust_proxy: bool = False) -> None:
        self.app = app
        self.limiter = limiter
        self.trust_proxy = trust_proxy

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        try:
            self.limiter.admit_general(client_address(Request(scope), self.trust_proxy))
        except AdmissionError as exc:
            response = JSONResponse(exc.as_dict(), status_code=exc.status_code, headers=exc.headers())
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)


# ---------------------------------------------------------------------------
# Upstream tier: route dependency
# ---------------------------------------------------------------------------

def enforce_upstream_admission(request: Request) -> None:
    limiter: Optional[AdmissionLimiter] = request.app.state.admission
    if limiter is not None:
        limiter.admit_upstream(client_address(request, trust_proxy=request.app.state.settings.behind_proxy))
