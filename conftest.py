"""
pytest configuration – settings factory, fake outbound services and an
app client whose lifespan runs for the duration of each test.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List
from urllib.parse import parse_qs

import httpx
import pytest
from fastapi.testclient import TestClient

from skillbun_gateway.config import Settings
from skillbun_gateway.main import create_app

TEST_PROOF_SECRET = "test-human-proof-secret-0123456789"
TEST_SITE_KEY = "0x4AAAAAAAtestsitekey"
TEST_TURNSTILE_SECRET = "0x4AAAAAAAtestsecretkey"
VALID_CHALLENGE = "valid-challenge-response-token"

GEMINI_OK_BODY: Dict[str, Any] = {
    "candidates": [
        {"content": {"role": "model", "parts": [{"text": "Hello from the model."}]}}
    ]
}


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "environment": "development",
        "log_format": "text",
        "human_proof_secret": TEST_PROOF_SECRET,
        "gemini_api_key": "test-gemini-key",
        "turnstile_site_key": "",
        "turnstile_secret_key": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def conversation(turns: int = 2, text: str = "What is a closure?") -> Dict[str, Any]:
    return {
        "contents": [
            {"role": "user" if i % 2 == 0 else "model", "parts": [{"text": text}]}
            for i in range(turns)
        ],
        "generationConfig": {"temperature": 0.7},
    }


class FakeServices:
    """Stands in for Turnstile siteverify and the Gemini API."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.gemini_status = 200
        self.gemini_body: Any = GEMINI_OK_BODY
        self.gemini_delay = 0.0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "challenges.cloudflare.com":
            form = parse_qs(request.content.decode())
            success = form.get("response") == [VALID_CHALLENGE]
            return httpx.Response(200, json={"success": success})
        if self.gemini_delay:
            await asyncio.sleep(self.gemini_delay)
        return httpx.Response(self.gemini_status, json=self.gemini_body)

    @property
    def challenge_calls(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.host == "challenges.cloudflare.com"]

    @property
    def gemini_calls(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.host == "generativelanguage.googleapis.com"]


@pytest.fixture
def fake_services() -> FakeServices:
    return FakeServices()


@pytest.fixture
def make_client(fake_services: FakeServices):
    """Factory: build an app from settings overrides and enter its lifespan."""
    opened: List[TestClient] = []

    def _make(**overrides: Any) -> TestClient:
        app = create_app(make_settings(**overrides), transport=httpx.MockTransport(fake_services.handler))
        client = TestClient(app)
        client.__enter__()
        opened.append(client)
        return client

    yield _make
    for client in opened:
        client.__exit__(None, None, None)


@pytest.fixture
def captcha_settings() -> Dict[str, str]:
    return {"turnstile_site_key": TEST_SITE_KEY, "turnstile_secret_key": TEST_TURNSTILE_SECRET}
