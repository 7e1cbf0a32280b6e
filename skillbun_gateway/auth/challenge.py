"""
challenge.py — Turnstile challenge verification
================================================
Validates a browser's challenge response against the provider's
siteverify endpoint. Fails closed: network errors, non-2xx replies,
unparseable bodies and timeouts all count as a failed challenge.

When the site/secret key pair is not configured the verifier is
disabled and every call succeeds.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

log = logging.getLogger("gateway.challenge")

PROVIDER = "turnstile"
MIN_RESPONSE_LENGTH = 10
MAX_RESPONSE_LENGTH = 2048


class ChallengeVerifier:
    def __init__(
        self,
        site_key: str,
        secret_key: str,
        verify_url: str,
        client: httpx.AsyncClient,
        timeout: float = 8.0,
    ) -> None:
        self.site_key = site_key
        self._secret_key = secret_key
        self.verify_url = verify_url
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings, client: httpx.AsyncClient) -> "ChallengeVerifier":
        return cls(
            site_key=settings.turnstile_site_key,
            secret_key=settings.turnstile_secret_key,
            verify_url=settings.turnstile_verify_url,
            client=client,
            timeout=settings.challenge_timeout_ms / 1000,
        )

    def is_enabled(self) -> bool:
        return bool(self.site_key and self._secret_key)

    @property
    def public_site_key(self) -> str:
        return self.site_key if self.is_enabled() else ""

    async def verify(self, response_token: Any, remote_ip: Optional[str] = None) -> bool:
        if not self.is_enabled():
            return True

        if (
            not isinstance(response_token, str)
            or not MIN_RESPONSE_LENGTH <= len(response_token) <= MAX_RESPONSE_LENGTH
        ):
            log.info("Challenge response rejected locally")
            return False

        form = {"secret": self._secret_key, "response": response_token}
        if remote_ip:
            form["remoteip"] = remote_ip

        try:
            resp = await asyncio.wait_for(
                self._client.post(self.verify_url, data=form, timeout=self.timeout),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            log.warning("Challenge verification timed out after %.1fs", self.timeout)
            return False
        except httpx.HTTPError as exc:
            log.warning("Challenge verification failed: %s", exc.__class__.__name__)
            return False

        if not resp.is_success:
            log.warning("Challenge service returned HTTP %s", resp.status_code)
            return False

        try:
            data = resp.json()
        except ValueError:
            log.warning("Challenge service returned a non-JSON body")
            return False

        if not isinstance(data, dict) or data.get("success") is not True:
            codes = data.get("error-codes") if isinstance(data, dict) else None
            log.info("Challenge rejected by provider", extra={"error_codes": codes})
            return False
        return True
