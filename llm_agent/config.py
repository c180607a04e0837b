"""Typed runtime configuration for llm_agent."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Callable, Literal, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

ReasoningType = Literal["none", "chain_of_thought", "tree_of_thoughts", "hybrid"]
ExplorationStrategy = Literal["breadth_first", "depth_first", "best_first", "beam_search", "monte_carlo"]

REASONING_TYPES: tuple[str, ...] = ("none", "chain_of_thought", "tree_of_thoughts", "hybrid")
EXPLORATION_STRATEGIES: tuple[str, ...] = (
    "breadth_first",
    "depth_first",
    "best_first",
    "beam_search",
    "monte_carlo",
)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class AgentConfig:
    """Run-time policy resolved once and passed explicitly to every component."""

    max_turns: int = 100
    max_recent_turns: int = 10
    enable_history_summarization: bool = True
    max_tool_output_size: int = 2000

    max_thoughts_length: int = 20_000
    max_summary_length: int = 40_000
    max_final_length: int = 50_000

    max_tool_call_history: int = 20
    consecutive_failure_threshold: int = 3
    dedupe_staleness_seconds: float = 300.0

    llm_timeout_seconds: float = 300.0
    tool_timeout_seconds: float = 120.0

    use_function_calling: bool = True
    emit_public_status: bool = True

    reasoning_type: ReasoningType = "none"
    max_tree_depth: int = 5
    max_tree_nodes: int = 50
    tree_exploration_strategy: ExplorationStrategy = "best_first"
    enable_reasoning_validation: bool = True
    min_reasoning_confidence: float = 0.7

    additional_messages: tuple[dict[str, str], ...] = ()

    def __post_init__(self) -> None:
        if self.max_turns < 1:
            raise ValueError(f"max_turns must be >= 1, got {self.max_turns}")
        if self.consecutive_failure_threshold < 1:
            raise ValueError(
                f"consecutive_failure_threshold must be >= 1, got {self.consecutive_failure_threshold}"
            )
        if self.reasoning_type not in REASONING_TYPES:
            raise ValueError(f"Unknown reasoning_type {self.reasoning_type!r}")
        if self.tree_exploration_strategy not in EXPLORATION_STRATEGIES:
            raise ValueError(f"Unknown tree_exploration_strategy {self.tree_exploration_strategy!r}")
        if not 0.0 <= self.min_reasoning_confidence <= 1.0:
            raise ValueError("min_reasoning_confidence must be within [0, 1]")

    @classmethod
    def from_env(cls, **overrides: Any) -> "AgentConfig":
        """Build typed config from ``LLM_AGENT_*`` environment variables.

        Invalid values are logged and replaced by the field default.
        Keyword overrides win over the environment.
        """
        defaults = {f.name: f.default for f in fields(cls)}
        values: dict[str, Any] = {}

        def _read(env: str, name: str, parse: Callable[[str], T], expected: str) -> None:
            raw = os.environ.get(env)
            if raw is None or not raw.strip():
                return
            try:
                values[name] = parse(raw.strip())
            except ValueError:
                logger.warning(
                    "Invalid %s=%r; expected %s. Defaulting to %r.",
                    env,
                    raw,
                    expected,
                    defaults[name],
                )

        _read("LLM_AGENT_MAX_TURNS", "max_turns", _positive_int, "positive integer")
        _read("LLM_AGENT_MAX_RECENT_TURNS", "max_recent_turns", _positive_int, "positive integer")
        _read("LLM_AGENT_HISTORY_SUMMARIZATION", "enable_history_summarization", _bool, "on/off boolean")
        _read("LLM_AGENT_MAX_TOOL_OUTPUT_SIZE", "max_tool_output_size", _positive_int, "positive integer")
        _read("LLM_AGENT_MAX_TOOL_CALL_HISTORY", "max_tool_call_history", _positive_int, "positive integer")
        _read(
            "LLM_AGENT_CONSECUTIVE_FAILURE_THRESHOLD",
            "consecutive_failure_threshold",
            _positive_int,
            "positive integer",
        )
        _read("LLM_AGENT_DEDUPE_STALENESS_SECONDS", "dedupe_staleness_seconds", _non_negative_float, "seconds")
        _read("LLM_AGENT_LLM_TIMEOUT", "llm_timeout_seconds", _positive_float, "seconds")
        _read("LLM_AGENT_TOOL_TIMEOUT", "tool_timeout_seconds", _positive_float, "seconds")
        _read("LLM_AGENT_FUNCTION_CALLING", "use_function_calling", _bool, "on/off boolean")
        _read("LLM_AGENT_PUBLIC_STATUS", "emit_public_status", _bool, "on/off boolean")
        _read("LLM_AGENT_REASONING", "reasoning_type", _choice(REASONING_TYPES), "/".join(REASONING_TYPES))
        _read("LLM_AGENT_MAX_TREE_DEPTH", "max_tree_depth", _positive_int, "positive integer")
        _read("LLM_AGENT_MAX_TREE_NODES", "max_tree_nodes", _positive_int, "positive integer")
        _read(
            "LLM_AGENT_TREE_STRATEGY",
            "tree_exploration_strategy",
            _choice(EXPLORATION_STRATEGIES),
            "/".join(EXPLORATION_STRATEGIES),
        )

        values.update(overrides)
        return cls(**values)


def _bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(raw)


def _positive_int(raw: str) -> int:
    value = int(raw)
    if value < 1:
        raise ValueError(raw)
    return value


def _positive_float(raw: str) -> float:
    value = float(raw)
    if value <= 0:
        raise ValueError(raw)
    return value


def _non_negative_float(raw: str) -> float:
    value = float(raw)
    if value < 0:
        raise ValueError(raw)
    return value


def _choice(options: tuple[str, ...]) -> Callable[[str], str]:
    def parse(raw: str) -> str:
        lowered = raw.lower()
        if lowered not in options:
            raise ValueError(raw)
        return lowered

    return parse
