"""Deterministic identity helpers shared by every layer of llm_agent.

Centralizes:
- canonical JSON for tool parameters
- the tool-call fingerprint used by dedup and loop detection
- turn/node/event ids and UTC timestamps
"""

from __future__ import annotations

import hashlib
import json
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return str(value)


def canonical_json(payload: Any) -> str:
    """Serialize ``payload`` with sorted object keys and no insignificant whitespace.

    Arrays keep their order. Integers and floats use Python's shortest
    round-trip form, so ``{"b": 2, "a": 1.50}`` and ``{"a": 1.5, "b": 2}``
    serialize identically while ``1`` and ``1.0`` stay distinct.
    """
    return json.dumps(
        payload,
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        default=_json_default,
    )


def sha256_text(text: str) -> str:
    return "sha256:" + hashlib.sha256(text.encode("utf-8")).hexdigest()


def sha256_json(payload: Any) -> str:
    return sha256_text(canonical_json(payload))


def hash_tool_call(tool: str, params: Mapping[str, Any] | None) -> str:
    """Fingerprint of one tool invocation: ``sha256(tool|canonical_json(params))``.

    Used as the dedup key and as ``ToolExecutionResult.turn_id``. Result
    content never participates.
    """
    return sha256_text(f"{tool}|{canonical_json(dict(params or {}))}")


def new_turn_id(turn_index: int) -> str:
    return f"turn_{turn_index}_{int(time.time() * 1000)}"


def new_node_id() -> str:
    return f"node_{uuid.uuid4().hex}"


def new_event_id() -> str:
    return f"evt_{uuid.uuid4().hex}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return utc_now().isoformat()


__all__ = [
    "canonical_json",
    "hash_tool_call",
    "new_event_id",
    "new_node_id",
    "new_turn_id",
    "now_iso",
    "sha256_json",
    "sha256_text",
    "utc_now",
]
