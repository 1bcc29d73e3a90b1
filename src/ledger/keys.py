# src/ledger/keys.py - v1
"""Idempotency key derivation.

The derivation must stay stable across releases so that ledger entries
recorded by an earlier version keep deduplicating:

    key        = sha256_hex(f"{item_id}:{step_name}:{input_hash}")
    input_hash = sha256_hex(canonical_json(step_input))[:16]

Canonical JSON sorts keys at every depth, so semantically identical inputs
hash identically regardless of field order.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

INPUT_HASH_LENGTH = 16


def canonical_json(value: Any) -> str:
    """Serialize with sorted keys and no insignificant whitespace."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def hash_input(value: Any) -> str:
    """Truncated sha256 of the canonical JSON form of a step input."""
    digest = hashlib.sha256(canonical_json(value).encode("utf-8")).hexdigest()
    return digest[:INPUT_HASH_LENGTH]


def make_key(item_id: str, step_name: str, input_hash: str) -> str:
    """Deterministic idempotency key for one step of one item with one input."""
    raw = f"{item_id}:{step_name}:{input_hash}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
