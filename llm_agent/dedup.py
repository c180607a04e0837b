"""Reuse of prior successful tool results for identical calls.

Identity is ``hash_tool_call(tool, params)``; result content never
participates, so tools whose output legitimately changes between identical
calls (clocks, random sources) should set ``allow_dedupe = False``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Mapping

from llm_agent.config import AgentConfig
from llm_agent.foundation import utc_now
from llm_agent.models import AgentTurn, ToolExecutionResult
from llm_agent.tools import Tool, allows_dedupe, dedupe_ttl

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DedupPolicy:
    allowed: bool
    ttl_seconds: float


def policy_for(tool_name: str, tools: Mapping[str, Tool], config: AgentConfig) -> DedupPolicy:
    """Per-tool opt-out and staleness window; unknown tools get the config default."""
    target = tools.get(tool_name)
    if target is None:
        return DedupPolicy(True, config.dedupe_staleness_seconds)
    return DedupPolicy(allows_dedupe(target), dedupe_ttl(target, config.dedupe_staleness_seconds))


def _fresh(result: ToolExecutionResult, call_hash: str, ttl: timedelta, now: datetime) -> bool:
    return result.success and result.turn_id == call_hash and now - result.created_at <= ttl


def find_reusable_result(
    turns: Iterable[AgentTurn],
    call_hash: str,
    ttl_seconds: float,
    *,
    now: datetime | None = None,
) -> ToolExecutionResult | None:
    """Most recent successful result with ``call_hash`` younger than ``ttl_seconds``.

    Single-call and multi-call turns are searched together, newest turn first.
    """
    now = now or utc_now()
    ttl = timedelta(seconds=ttl_seconds)
    for turn in reversed(list(turns)):
        if turn.tool_result is not None and _fresh(turn.tool_result, call_hash, ttl, now):
            return turn.tool_result
        for result in turn.tool_results or ():
            if _fresh(result, call_hash, ttl, now):
                return result
    return None


__all__ = ["DedupPolicy", "find_reusable_result", "policy_for"]
