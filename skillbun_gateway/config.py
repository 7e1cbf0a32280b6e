from __future__ import annotations

import sys
from functools import lru_cache
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

from .rate_limit import parse_rate_limit


_DEV_PROOF_SECRET = "development-human-proof-secret"
_DEFAULT_PROOF_TTL_MS = 1_800_000  # 30 min
_MIN_PROOF_TTL_MS = 60_000
_PLACEHOLDER_API_KEY = "your_api_key_here"


class Settings(BaseSettings):
    # Server
    environment: str = "development"
    log_level: str = "info"
    log_format: str = "json"
    allowed_origins: str = ""
    trust_proxy: Optional[bool] = None
    max_body_bytes: int = 100_000

    # Turnstile challenge (both keys required to enable)
    turnstile_site_key: str = ""
    turnstile_secret_key: str = ""
    turnstile_verify_url: str = "https://challenges.cloudflare.com/turnstile/v0/siteverify"
    challenge_timeout_ms: int = 8_000

    # Human proof tokens
    human_proof_secret: str = ""
    human_proof_ttl_ms: int = _DEFAULT_PROOF_TTL_MS

    # Upstream generation service
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_timeout_ms: int = 20_000

    # Optional protections
    rate_limit_enabled: bool = True
    general_rate_limit: str = "60/minute"
    gemini_rate_limit: str = "25/minute"
    security_headers_enabled: bool = True
    cors_enabled: bool = True

    @field_validator("turnstile_site_key", "turnstile_secret_key", "gemini_api_key")
    @classmethod
    def strip_keys(cls, v: str) -> str:
        return v.strip()

    @field_validator("general_rate_limit", "gemini_rate_limit")
    @classmethod
    def validate_rate_limit(cls, v: str) -> str:
        parse_rate_limit(v)
        return v

    @field_validator("human_proof_secret")
    @classmethod
    def validate_proof_secret(cls, v: str, info) -> str:
        """Refuse to start outside development without a signing secret."""
        env = info.data.get("environment", "development")
        if env != "development" and not v:
            print(
                "\nFATAL: HUMAN_PROOF_SECRET is not set.\n"
                "   Set HUMAN_PROOF_SECRET to a strong random string before "
                "running in production.\n"
                "   Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(48))\"\n",
                file=sys.stderr,
            )
            raise ValueError(
                "Human proof secret is required in non-development environments. "
                "Set HUMAN_PROOF_SECRET env var."
            )
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def captcha_enabled(self) -> bool:
        return bool(self.turnstile_site_key and self.turnstile_secret_key)

    @property
    def captcha_partially_configured(self) -> bool:
        return bool(self.turnstile_site_key or self.turnstile_secret_key) and not self.captcha_enabled

    @property
    def proof_secret(self) -> str:
        return self.human_proof_secret or _DEV_PROOF_SECRET

    @property
    def proof_ttl_ms(self) -> int:
        if self.human_proof_ttl_ms <= 0:
            return _DEFAULT_PROOF_TTL_MS
        return max(self.human_proof_ttl_ms, _MIN_PROOF_TTL_MS)

    @property
    def upstream_configured(self) -> bool:
        return bool(self.gemini_api_key) and self.gemini_api_key != _PLACEHOLDER_API_KEY

    @property
    def behind_proxy(self) -> bool:
        if self.trust_proxy is None:
            return self.is_production
        return self.trust_proxy

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    class Config:
        env_file = ".env"
        extra = "ignore"
        frozen = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
