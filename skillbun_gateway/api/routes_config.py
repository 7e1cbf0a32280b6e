from __future__ import annotations

from fastapi import APIRouter, Depends

from ..auth.challenge import PROVIDER, ChallengeVerifier
from ..auth.dependencies import get_challenge_verifier
from ..schemas import CaptchaConfig, PublicConfig

router = APIRouter(
    prefix="/api",
    tags=["config"],
)


@router.get("/config", response_model=PublicConfig)
def public_config(verifier: ChallengeVerifier = Depends(get_challenge_verifier)) -> PublicConfig:
    """Public configuration the frontend needs before rendering a challenge."""
    return PublicConfig(
        captcha=CaptchaConfig(
            provider=PROVIDER,
            enabled=verifier.is_enabled(),
            siteKey=verifier.public_site_key,
        )
    )
