"""
Tests for human proof token signing, verification, expiry and address
binding.

Run with: pytest tests/test_proof_token.py -v
"""
from __future__ import annotations

import base64
import json

import pytest

from skillbun_gateway.auth.core import (
    HumanProof,
    ProofToken,
    _sign,
    decode_proof_token,
    hash_address,
    issue_proof_token,
    sign_proof_token,
    verify_proof_token,
)

SECRET = "unit-test-secret"
TTL_MS = 60_000
NOW = 1_700_000_000_000
ADDR = hash_address("203.0.113.7")


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _unb64(segment: str) -> bytes:
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


# ---------------------------------------------------------------------------
# Address hashing
# ---------------------------------------------------------------------------

def test_hash_address_is_stable_and_truncated():
    h = hash_address("203.0.113.7")
    assert h == hash_address("203.0.113.7")
    assert len(h) == 32
    assert "203" not in h


def test_hash_address_differs_per_address():
    assert hash_address("10.0.0.1") != hash_address("10.0.0.2")


# ---------------------------------------------------------------------------
# Issue / verify
# ---------------------------------------------------------------------------

def test_issue_sets_expiry_from_ttl():
    issued = issue_proof_token(ADDR, SECRET, TTL_MS, now=NOW)
    assert issued.expires_at == NOW + TTL_MS
    assert issued.token.count(".") == 1


def test_token_payload_carries_expiry_and_hash_only():
    issued = issue_proof_token(ADDR, SECRET, TTL_MS, now=NOW)
    payload = json.loads(_unb64(issued.token.split(".")[0]))
    assert payload == {"exp": NOW + TTL_MS, "ip": ADDR}


@pytest.mark.parametrize("offset", [0, 1, TTL_MS // 2, TTL_MS - 1])
def test_verify_accepts_before_expiry(offset):
    issued = issue_proof_token(ADDR, SECRET, TTL_MS, now=NOW)
    assert verify_proof_token(issued.token, ADDR, SECRET, now=NOW + offset) is True


@pytest.mark.parametrize("offset", [TTL_MS, TTL_MS + 1, 10 * TTL_MS])
def test_verify_rejects_at_or_after_expiry(offset):
    issued = issue_proof_token(ADDR, SECRET, TTL_MS, now=NOW)
    assert verify_proof_token(issued.token, ADDR, SECRET, now=NOW + offset) is False


def test_verify_rejects_other_address():
    issued = issue_proof_token(ADDR, SECRET, TTL_MS, now=NOW)
    other = hash_address("198.51.100.9")
    assert verify_proof_token(issued.token, other, SECRET, now=NOW) is False


def test_verify_rejects_other_secret():
    issued = issue_proof_token(ADDR, SECRET, TTL_MS, now=NOW)
    assert verify_proof_token(issued.token, ADDR, "another-secret", now=NOW) is False


# ---------------------------------------------------------------------------
# Signature integrity
# ---------------------------------------------------------------------------

def test_any_single_bit_flip_in_signature_is_rejected():
    issued = issue_proof_token(ADDR, SECRET, TTL_MS, now=NOW)
    payload_b64, sig_b64 = issued.token.split(".")
    sig = _unb64(sig_b64)
    for byte_index in range(len(sig)):
        for bit in range(8):
            tampered = bytearray(sig)
            tampered[byte_index] ^= 1 << bit
            token = f"{payload_b64}.{_b64(bytes(tampered))}"
            assert verify_proof_token(token, ADDR, SECRET, now=NOW) is False


def test_forged_payload_with_reused_signature_is_rejected():
    issued = issue_proof_token(ADDR, SECRET, TTL_MS, now=NOW)
    _, sig_b64 = issued.token.split(".")
    forged = _b64(json.dumps({"exp": NOW + 10 * TTL_MS, "ip": ADDR}).encode())
    assert verify_proof_token(f"{forged}.{sig_b64}", ADDR, SECRET, now=NOW) is False


# ---------------------------------------------------------------------------
# Malformed tokens never raise
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "token",
    [
        None,
        12345,
        "",
        "short.token",
        "no-delimiter-anywhere-in-this-token",
        ".missingpayloadsegmentxxxxxxxx",
        "missingsignaturesegmentxxxxxxx.",
        "a.b.c.d.e.f.g.h.i.j.k.l.m.n.o",
        "x" * 5000 + "." + "y",
        "ünïcødé-payload-segment.ünïcødé-signature",
    ],
)
def test_malformed_tokens_rejected(token):
    assert verify_proof_token(token, ADDR, SECRET, now=NOW) is False


def _signed(payload_bytes: bytes) -> str:
    payload_b64 = _b64(payload_bytes)
    return f"{payload_b64}.{_sign(SECRET, payload_b64)}"


@pytest.mark.parametrize(
    "payload_bytes",
    [
        b"not json at all",
        b"\xff\xfe\xfd",
        b"[1, 2, 3]",
        json.dumps({"exp": NOW + TTL_MS}).encode(),
        json.dumps({"ip": ADDR}).encode(),
        json.dumps({"exp": str(NOW + TTL_MS), "ip": ADDR}).encode(),
        json.dumps({"exp": True, "ip": ADDR}).encode(),
        json.dumps({"exp": NOW + TTL_MS, "ip": 42}).encode(),
        b'{"exp": Infinity, "ip": "abc"}',
        b'{"exp": NaN, "ip": "abc"}',
    ],
)
def test_signed_but_invalid_payload_rejected(payload_bytes):
    assert verify_proof_token(_signed(payload_bytes), ADDR, SECRET, now=NOW) is False


def test_decode_returns_claims_for_valid_token():
    token = sign_proof_token(ProofToken(expires_at=NOW, address_hash=ADDR), SECRET)
    claims = decode_proof_token(token, SECRET)
    assert claims == ProofToken(expires_at=NOW, address_hash=ADDR)


# ---------------------------------------------------------------------------
# HumanProof signer
# ---------------------------------------------------------------------------

class TestHumanProof:
    def test_round_trip(self):
        proof = HumanProof(SECRET, TTL_MS)
        issued = proof.issue(ADDR, now=NOW)
        assert proof.verify(issued.token, ADDR, now=NOW + 1)
        assert not proof.verify(issued.token, ADDR, now=issued.expires_at)

    def test_uses_wall_clock_by_default(self):
        proof = HumanProof(SECRET, TTL_MS)
        issued = proof.issue(ADDR)
        assert proof.verify(issued.token, ADDR)

    def test_empty_secret_refused(self):
        with pytest.raises(ValueError):
            HumanProof("", TTL_MS)
