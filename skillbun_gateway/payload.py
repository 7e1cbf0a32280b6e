"""
payload.py — Conversation payload bounds
=========================================
Checks run in a fixed order and stop at the first failure. Fragment
lengths are summed as they are visited so an oversized conversation is
rejected as soon as the running total crosses the limit.

Rejections carry a reason tag for logs; the client only ever sees one
of three fixed messages and never its own content echoed back.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, FrozenSet

from .errors import (
    CONVERSATION_TOO_LONG,
    PAYLOAD_TOO_LARGE,
    PayloadValidationError,
)

log = logging.getLogger("gateway.payload")

# Solicitor / respondent, as the upstream API names them.
ROLES: FrozenSet[str] = frozenset({"user", "model"})


@dataclass(frozen=True)
class PayloadLimits:
    max_turns: int = 60
    max_fragments_per_turn: int = 8
    max_fragment_chars: int = 4000
    max_total_chars: int = 30000


DEFAULT_LIMITS = PayloadLimits()


def _reject(reason: str, **kwargs: Any) -> PayloadValidationError:
    log.info("Payload rejected", extra={"reason": reason})
    return PayloadValidationError(reason, **kwargs)


def validate_payload(body: Any, limits: PayloadLimits = DEFAULT_LIMITS) -> int:
    """Validate a generation request body in place.

    Returns the total trimmed character count on success; raises
    PayloadValidationError otherwise.
    """
    if not isinstance(body, dict):
        raise _reject("shape")
    turns = body.get("contents")
    if not isinstance(turns, list) or not turns:
        raise _reject("shape")

    total = 0
    for turn in turns:
        role = turn.get("role") if isinstance(turn, dict) else None
        if not isinstance(role, str) or role not in ROLES:
            raise _reject("role")

        fragments = turn.get("parts")
        if not isinstance(fragments, list) or not fragments:
            raise _reject("fragments")
        if len(fragments) > limits.max_fragments_per_turn:
            raise _reject("fragment_count")

        for fragment in fragments:
            text = fragment.get("text") if isinstance(fragment, dict) else None
            if not isinstance(text, str):
                raise _reject("fragment_type")
            text = text.strip()
            if not text:
                raise _reject("fragment_empty")
            if len(text) > limits.max_fragment_chars:
                raise _reject("fragment_length")

            total += len(text)
            if total > limits.max_total_chars:
                raise _reject("total_length", message=PAYLOAD_TOO_LARGE)

    if len(turns) > limits.max_turns:
        raise _reject("turn_count", message=CONVERSATION_TOO_LONG)

    return total
