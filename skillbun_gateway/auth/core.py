from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import math
import time
from dataclasses import dataclass
from typing import Optional

# ---------------------------------------------------------------------------
# Address hashing
# ---------------------------------------------------------------------------

def hash_address(address: str) -> str:
    """One-way digest of a client address; the raw address is never stored."""
    return hashlib.sha256(str(address).encode()).hexdigest()[:32]


# ---------------------------------------------------------------------------
# base64url without padding
# ---------------------------------------------------------------------------

def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(segment: str) -> bytes:
    padded = segment + "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Human proof tokens
#
# <base64url(json payload)>.<base64url(HMAC-SHA256(secret, first segment))>
# ---------------------------------------------------------------------------

MIN_TOKEN_LENGTH = 20
MAX_TOKEN_LENGTH = 2048


@dataclass(frozen=True)
class ProofToken:
    expires_at: int  # epoch ms
    address_hash: str

    def to_payload(self) -> dict:
        return {"exp": self.expires_at, "ip": self.address_hash}

    @classmethod
    def from_payload(cls, payload: object) -> Optional["ProofToken"]:
        if not isinstance(payload, dict):
            return None
        exp = payload.get("exp")
        ip = payload.get("ip")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)) or not isinstance(ip, str):
            return None
        if not math.isfinite(exp):
            return None
        return cls(expires_at=int(exp), address_hash=ip)


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: int


def _sign(secret: str, payload_b64: str) -> str:
    digest = hmac.new(secret.encode(), payload_b64.encode("ascii"), hashlib.sha256).digest()
    return _b64url_encode(digest)


def sign_proof_token(proof: ProofToken, secret: str) -> str:
    body = json.dumps(proof.to_payload(), separators=(",", ":"))
    payload_b64 = _b64url_encode(body.encode())
    return f"{payload_b64}.{_sign(secret, payload_b64)}"


def issue_proof_token(
    address_hash: str,
    secret: str,
    ttl_ms: int,
    now: Optional[int] = None,
) -> IssuedToken:
    now = _now_ms() if now is None else now
    expires_at = now + ttl_ms
    token = sign_proof_token(ProofToken(expires_at=expires_at, address_hash=address_hash), secret)
    return IssuedToken(token=token, expires_at=expires_at)


def decode_proof_token(token: object, secret: str) -> Optional[ProofToken]:
    """Return the signed claims, or None if the token is malformed or forged.

    Expiry and address binding are not checked here.
    """
    if not isinstance(token, str) or not MIN_TOKEN_LENGTH <= len(token) <= MAX_TOKEN_LENGTH:
        return None
    segments = token.split(".")
    if len(segments) != 2:
        return None
    payload_b64, signature = segments
    if not payload_b64 or not signature:
        return None

    try:
        expected = _sign(secret, payload_b64)
        if not hmac.compare_digest(signature.encode("ascii"), expected.encode("ascii")):
            return None
        payload = json.loads(_b64url_decode(payload_b64))
    except (UnicodeError, binascii.Error, ValueError):
        return None

    return ProofToken.from_payload(payload)


def verify_proof_token(
    token: object,
    address_hash: str,
    secret: str,
    now: Optional[int] = None,
) -> bool:
    claims = decode_proof_token(token, secret)
    if claims is None:
        return False
    now = _now_ms() if now is None else now
    if claims.expires_at <= now:
        return False
    return claims.address_hash == address_hash


class HumanProof:
    """Process-wide signer bound to one secret and TTL."""

    def __init__(self, secret: str, ttl_ms: int) -> None:
        if not secret:
            raise ValueError("human proof secret must not be empty")
        self._secret = secret
        self.ttl_ms = ttl_ms

    def issue(self, address_hash: str, now: Optional[int] = None) -> IssuedToken:
        return issue_proof_token(address_hash, self._secret, self.ttl_ms, now=now)

    def verify(self, token: object, address_hash: str, now: Optional[int] = None) -> bool:
        return verify_proof_token(token, address_hash, self._secret, now=now)
