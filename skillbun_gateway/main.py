from __future__ import annotations

import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pythonjsonlogger import jsonlogger

from .api import routes_config, routes_gemini, routes_human
from .auth.challenge import ChallengeVerifier
from .auth.core import HumanProof
from .auth.dependencies import HUMAN_PROOF_HEADER
from .config import Settings, get_settings
from .errors import GENERIC_INVALID, GatewayError
from .rate_limit import GeneralAdmissionMiddleware, build_limiter
from .security_headers import SecurityHeadersMiddleware
from .upstream import UpstreamGateway

log = logging.getLogger("gateway.app")

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Structured logging
# ---------------------------------------------------------------------------

_log_handler: Optional[logging.Handler] = None


def _configure_logging(settings: Settings) -> None:
    """Configure structured JSON logging when log_format=json (default)."""
    global _log_handler
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format == "json":
        handler.setFormatter(jsonlogger.JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        ))
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))

    # Replace only our own handler so repeated create_app() calls don't stack output.
    if _log_handler is not None:
        root.removeHandler(_log_handler)
    root.addHandler(handler)
    _log_handler = handler


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

async def _gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("Request failed: %s %s -> %s", request.method, request.url.path, exc.reason)
    return JSONResponse(exc.as_dict(), status_code=exc.status_code, headers=exc.headers())


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse({"error": GENERIC_INVALID}, status_code=400)


# ---------------------------------------------------------------------------
# Optional protections
# ---------------------------------------------------------------------------

def _install_cors(app: FastAPI, settings: Settings) -> None:
    if not settings.is_production:
        # Local development: any origin, for LAN/mobile testing.
        app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    elif settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", HUMAN_PROOF_HEADER],
            max_age=86400,
        )
    else:
        log.info("No ALLOWED_ORIGINS set; cross-origin requests are not permitted")


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Optional[Settings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the gateway. ``transport`` replaces the network for outbound calls."""
    settings = settings or get_settings()
    _configure_logging(settings)

    if settings.captcha_partially_configured:
        log.warning(
            "Turnstile is partially configured. Set both TURNSTILE_SITE_KEY "
            "and TURNSTILE_SECRET_KEY; challenge verification is disabled."
        )
    if not settings.upstream_configured:
        log.warning("GEMINI_API_KEY is not set; /api/gemini will answer 500")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with httpx.AsyncClient(transport=transport) as client:
            app.state.challenge = ChallengeVerifier.from_settings(settings, client)
            app.state.upstream = UpstreamGateway.from_settings(settings, client)
            log.info(
                "Gateway started",
                extra={
                    "environment": settings.environment,
                    "captcha_enabled": settings.captcha_enabled,
                    "rate_limit_enabled": settings.rate_limit_enabled,
                },
            )
            yield

    app = FastAPI(
        title="SkillBun Gateway",
        version=VERSION,
        description=(
            "Admission-control gateway in front of the Gemini generation API: "
            "human proof tokens, optional Turnstile challenge, payload bounds "
            "and per-client rate limits."
        ),
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.human_proof = HumanProof(settings.proof_secret, settings.proof_ttl_ms)
    app.state.admission = build_limiter(settings)

    app.add_exception_handler(GatewayError, _gateway_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)

    # Innermost middleware; 429s still carry CORS and security headers.
    if app.state.admission is not None:
        app.add_middleware(
            GeneralAdmissionMiddleware,
            limiter=app.state.admission,
            trust_proxy=settings.behind_proxy,
        )
    if settings.cors_enabled:
        _install_cors(app, settings)
    if settings.security_headers_enabled:
        app.add_middleware(SecurityHeadersMiddleware, hsts=settings.is_production)

    app.include_router(routes_config.router)
    app.include_router(routes_human.router)
    app.include_router(routes_gemini.router)

    @app.get("/health", tags=["meta"])
    def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()


def run() -> None:
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "3000"))
    uvicorn.run("skillbun_gateway.main:app", host=host, port=port, log_config=None)


if __name__ == "__main__":
    run()
