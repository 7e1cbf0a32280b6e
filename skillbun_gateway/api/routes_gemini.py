"""
routes_gemini.py — Generation proxy
====================================
POST /api/gemini is the only route that spends upstream quota, so it
runs every gate in order before a byte leaves the process:

1. general + upstream admission tiers
2. upstream credential present
3. human proof header (only when the challenge is configured)
4. body size and conversation bounds
5. one supervised upstream call
"""
from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..auth.dependencies import get_app_settings, require_human_proof
from ..config import Settings
from ..errors import BodyTooLargeError, ConfigError, PayloadValidationError
from ..payload import validate_payload
from ..rate_limit import enforce_upstream_admission
from ..schemas import ErrorResponse
from ..upstream import UpstreamGateway, upstream_error

log = logging.getLogger("gateway.upstream")

router = APIRouter(
    prefix="/api",
    tags=["generation"],
)


def get_upstream(request: Request) -> UpstreamGateway:
    return request.app.state.upstream


def require_upstream_configured(settings: Settings = Depends(get_app_settings)) -> None:
    if not settings.upstream_configured:
        log.error("GEMINI_API_KEY is not configured; refusing generation request")
        raise ConfigError("api_key_missing")


async def read_json_body(request: Request, max_bytes: int) -> Any:
    """Read at most ``max_bytes`` of body and decode it as JSON."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise BodyTooLargeError()

    chunks = bytearray()
    async for chunk in request.stream():
        chunks.extend(chunk)
        if len(chunks) > max_bytes:
            raise BodyTooLargeError()

    if not chunks:
        raise PayloadValidationError("body_missing")
    try:
        return json.loads(chunks)
    except (ValueError, RecursionError):
        raise PayloadValidationError("body_malformed") from None


@router.post(
    "/gemini",
    dependencies=[
        Depends(enforce_upstream_admission),
        Depends(require_upstream_configured),
        Depends(require_human_proof),
    ],
    responses={
        code: {"model": ErrorResponse}
        for code in (400, 403, 413, 429, 500, 502, 504)
    },
)
async def generate(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    upstream: UpstreamGateway = Depends(get_upstream),
) -> JSONResponse:
    body = await read_json_body(request, settings.max_body_bytes)
    validate_payload(body)

    result = await upstream.forward(body)
    if not result.ok:
        raise upstream_error(result)
    return JSONResponse(result.body)
