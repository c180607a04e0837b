"""Shared result type and helpers for the reasoning engines."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, runtime_checkable

from llm_agent.json_repair import loads_lenient
from llm_agent.models import ReasoningChain, ReasoningTree, clamp01
from llm_agent.tools import Tool

logger = logging.getLogger(__name__)

METRICS_AGENT_ID = "agent"
"""Agent id reasoning metrics are recorded under; engines are not bound to one agent."""

STATUS_AGENT_ID = "reasoning"
"""Agent id on status updates emitted while reasoning."""


@dataclass
class ReasoningResult:
    """Outcome of one reasoning pass.

    A failed result may still carry the partial ``chain`` or ``tree`` that
    was built before the failure.
    """

    success: bool
    conclusion: str = ""
    confidence: float = 0.0
    chain: ReasoningChain | None = None
    tree: ReasoningTree | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    execution_time_ms: float = 0.0


@runtime_checkable
class ReasoningEngine(Protocol):
    reasoning_type: str

    async def reason(self, goal: str, context: str, tools: Mapping[str, Tool]) -> ReasoningResult: ...


def parse_reasoning_payload(content: str) -> dict[str, Any]:
    """Decode a reasoning response into a JSON object.

    Raises:
        ValueError: the text holds no recoverable JSON object.
    """
    payload = loads_lenient(content, expect_object=True)
    if not isinstance(payload, dict):
        raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
    return payload


def as_score(value: Any, default: float = 0.5) -> float:
    """Numeric confidence/score clamped to [0, 1]; anything else gives ``default``."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return clamp01(value)


def as_str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None and str(item).strip()]


def tool_names(tools: Mapping[str, Tool]) -> list[str]:
    return [t.name for t in tools.values()]


__all__ = [
    "METRICS_AGENT_ID",
    "STATUS_AGENT_ID",
    "ReasoningEngine",
    "ReasoningResult",
    "as_score",
    "as_str_list",
    "parse_reasoning_payload",
    "tool_names",
]
