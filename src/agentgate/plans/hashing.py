"""Canonical serialization and content hashing for plans."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping

from .base import PlanBase

HASH_PREFIX = "sha256:"


def canonical_json(payload: Mapping[str, Any]) -> str:
    """Serialize ``payload`` with sorted keys and no insignificant whitespace."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def hash_payload(payload: Mapping[str, Any]) -> str:
    digest = hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()
    return f"{HASH_PREFIX}{digest}"


def plan_hash(plan: PlanBase) -> str:
    """Content hash of ``plan``.

    Key order never affects the result; any value change does. The hash a
    generator may have put in ``planHash`` is excluded from the input.
    """
    return hash_payload(plan.canonical_payload())


__all__ = ["HASH_PREFIX", "canonical_json", "hash_payload", "plan_hash"]
