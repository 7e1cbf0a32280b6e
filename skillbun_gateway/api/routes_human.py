"""
routes_human.py — Human proof issuance
=======================================
POST /api/human/verify runs the optional challenge check and, on
success, hands back a short-lived signed token the browser presents on
every generation call. Nothing is stored server-side.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends

from ..auth.challenge import ChallengeVerifier
from ..auth.core import HumanProof, hash_address
from ..auth.dependencies import caller_address, get_challenge_verifier, get_human_proof
from ..errors import CAPTCHA_FAILED, AuthError
from ..schemas import ErrorResponse, HumanVerifyRequest, HumanVerifyResponse

log = logging.getLogger("gateway.human")

router = APIRouter(
    prefix="/api/human",
    tags=["human"],
)


@router.post(
    "/verify",
    response_model=HumanVerifyResponse,
    responses={403: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
async def verify_human(
    body: Optional[HumanVerifyRequest] = Body(default=None),
    address: str = Depends(caller_address),
    verifier: ChallengeVerifier = Depends(get_challenge_verifier),
    proof: HumanProof = Depends(get_human_proof),
) -> HumanVerifyResponse:
    captcha_enabled = verifier.is_enabled()
    address_hash = hash_address(address)

    if captcha_enabled:
        passed = await verifier.verify(body.token if body else None, address)
        if not passed:
            log.info("Challenge failed", extra={"address_hash": address_hash})
            raise AuthError("challenge_failed", CAPTCHA_FAILED)

    issued = proof.issue(address_hash)
    log.info(
        "Human proof issued",
        extra={"address_hash": address_hash, "captcha_enabled": captcha_enabled},
    )
    return HumanVerifyResponse(
        captchaEnabled=captcha_enabled,
        humanToken=issued.token,
        expiresAt=issued.expires_at,
    )
