"""Rolling per-agent history of tool calls used to spot runaway failure loops.

In-memory and scoped to one orchestrator; it is lost on restart and is a
safety net, not authoritative state.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Any, Mapping

from llm_agent.config import AgentConfig
from llm_agent.foundation import hash_tool_call

logger = logging.getLogger(__name__)

MAX_TRACKED_AGENTS = 100
"""Agents beyond this count are evicted oldest-activity first."""

AGENT_HISTORY_TTL_SECONDS = 24 * 3600
"""History of agents idle for longer than this is dropped."""


@dataclass(frozen=True)
class ToolCallRecord:
    tool: str
    call_hash: str
    success: bool
    timestamp: float = field(default_factory=time.time)


class LoopDetector:
    """Thread-safe bounded history of ``(tool, params hash, success)`` per agent."""

    def __init__(self, config: AgentConfig) -> None:
        self._config = config
        self._lock = threading.Lock()
        self._history: OrderedDict[str, deque[ToolCallRecord]] = OrderedDict()
        self._last_activity: dict[str, float] = {}

    def record_tool_call(
        self,
        agent_id: str,
        tool: str,
        params: Mapping[str, Any] | None,
        success: bool,
    ) -> None:
        with self._lock:
            self._evict(keep=agent_id)
            history = self._history.get(agent_id)
            if history is None:
                history = deque(maxlen=self._config.max_tool_call_history)
                self._history[agent_id] = history
            history.append(ToolCallRecord(tool, hash_tool_call(tool, params), success))
            self._history.move_to_end(agent_id)
            self._last_activity[agent_id] = time.time()

    def detect_repeated_failures(self, agent_id: str, tool: str, params: Mapping[str, Any] | None) -> bool:
        """True when the same (tool, params) failed ``consecutive_failure_threshold`` times.

        Scans newest first. A success of the same call, or of the same tool
        with other params, ends the streak; calls to other tools are skipped
        so interleaved failures still count.
        """
        current = hash_tool_call(tool, params)
        threshold = self._config.consecutive_failure_threshold
        with self._lock:
            history = list(self._history.get(agent_id, ()))
        failures = 0
        for record in reversed(history):
            if record.tool != tool:
                continue
            if record.call_hash == current:
                if record.success:
                    break
                failures += 1
                if failures >= threshold:
                    return True
            elif record.success:
                break
        return False

    def consecutive_tool_failures(self, agent_id: str, tool: str) -> int:
        """Trailing failures of ``tool`` regardless of params, stopping at its last success."""
        with self._lock:
            history = list(self._history.get(agent_id, ()))
        count = 0
        for record in reversed(history):
            if record.tool != tool:
                continue
            if record.success:
                break
            count += 1
        return count

    def history(self, agent_id: str) -> list[ToolCallRecord]:
        with self._lock:
            return list(self._history.get(agent_id, ()))

    def clear(self, agent_id: str | None = None) -> None:
        with self._lock:
            if agent_id is None:
                self._history.clear()
                self._last_activity.clear()
            else:
                self._history.pop(agent_id, None)
                self._last_activity.pop(agent_id, None)

    def _evict(self, keep: str) -> None:
        cutoff = time.time() - AGENT_HISTORY_TTL_SECONDS
        for agent_id in [a for a, ts in self._last_activity.items() if ts < cutoff]:
            self._history.pop(agent_id, None)
            self._last_activity.pop(agent_id, None)
        while keep not in self._history and len(self._history) >= MAX_TRACKED_AGENTS:
            oldest, _ = self._history.popitem(last=False)
            self._last_activity.pop(oldest, None)
            logger.debug("Evicted loop history for %s", oldest)


__all__ = [
    "AGENT_HISTORY_TTL_SECONDS",
    "LoopDetector",
    "MAX_TRACKED_AGENTS",
    "ToolCallRecord",
]
