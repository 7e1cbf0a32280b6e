"""
security_headers.py — Response hardening headers
=================================================
Pure ASGI middleware that stamps a Content-Security-Policy and the usual
browser hardening headers onto every HTTP response. Installed by
create_app() only when security_headers_enabled is set.
"""
from __future__ import annotations

from typing import Dict, List, Tuple

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

CHALLENGE_ORIGIN = "https://challenges.cloudflare.com"

CSP_DIRECTIVES: Dict[str, List[str]] = {
    "default-src": ["'self'"],
    "script-src": ["'self'", CHALLENGE_ORIGIN],
    "script-src-attr": ["'none'"],
    "style-src": ["'self'", "'unsafe-inline'", "https://fonts.googleapis.com"],
    "font-src": ["'self'", "https://fonts.gstatic.com", "data:"],
    "img-src": ["'self'", "data:", "https:"],
    "connect-src": ["'self'", CHALLENGE_ORIGIN],
    "frame-src": ["'self'", CHALLENGE_ORIGIN],
    "object-src": ["'none'"],
    "base-uri": ["'self'"],
    "form-action": ["'self'"],
    "frame-ancestors": ["'none'"],
}


def build_csp(directives: Dict[str, List[str]] = CSP_DIRECTIVES) -> str:
    return "; ".join(f"{name} {' '.join(sources)}" for name, sources in directives.items())


def security_headers(hsts: bool) -> List[Tuple[str, str]]:
    headers = [
        ("Content-Security-Policy", build_csp()),
        ("X-Content-Type-Options", "nosniff"),
        ("X-Frame-Options", "SAMEORIGIN"),
        ("Referrer-Policy", "no-referrer"),
        ("Cross-Origin-Opener-Policy", "same-origin"),
        ("Cross-Origin-Resource-Policy", "same-origin"),
        ("X-DNS-Prefetch-Control", "off"),
    ]
    if hsts:
        headers.append(("Strict-Transport-Security", "max-age=31536000; includeSubDomains"))
    return headers


class SecurityHeadersMiddleware:
    def __init__(self, app: ASGIApp, hsts: bool = False) -> None:
        self.app = app
        self._headers = security_headers(hsts)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in self._headers:
                    headers.setdefault(name, value)
            await send(message)

        await self.app(scope, receive, send_with_headers)
