from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Header, Request

from .challenge import ChallengeVerifier
from .core import HumanProof, hash_address
from ..config import Settings
from ..errors import AuthError
from ..rate_limit import client_address

log = logging.getLogger("gateway.human")

HUMAN_PROOF_HEADER = "X-Skillbun-Human"


# ---------------------------------------------------------------------------
# Components built by create_app()
# ---------------------------------------------------------------------------

def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_human_proof(request: Request) -> HumanProof:
    return request.app.state.human_proof


def get_challenge_verifier(request: Request) -> ChallengeVerifier:
    return request.app.state.challenge


def caller_address(request: Request, settings: Settings = Depends(get_app_settings)) -> str:
    return client_address(request, trust_proxy=settings.behind_proxy)


# ---------------------------------------------------------------------------
# Human proof guard
# ---------------------------------------------------------------------------

def require_human_proof(
    settings: Settings = Depends(get_app_settings),
    proof: HumanProof = Depends(get_human_proof),
    address: str = Depends(caller_address),
    human_token: Optional[str] = Header(None, alias=HUMAN_PROOF_HEADER),
) -> None:
    """
    Gate a route on a valid X-Skillbun-Human token bound to the caller's
    address hash. A no-op when the challenge mechanism is not configured.
    """
    if not settings.captcha_enabled:
        return
    if not human_token:
        raise AuthError("proof_missing")
    if not proof.verify(human_token, hash_address(address)):
        log.info("Human proof rejected", extra={"address_hash": hash_address(address)})
        raise AuthError("proof_invalid")
