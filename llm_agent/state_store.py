"""Agent-state persistence protocol and the in-memory default."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

from llm_agent.models import AgentState

logger = logging.getLogger(__name__)


@runtime_checkable
class StateStore(Protocol):
    async def load(self, agent_id: str) -> AgentState | None: ...
    async def save(self, agent_id: str, state: AgentState) -> None: ...


class MemoryStateStore:
    """Process-local store. Saves and loads deep copies so callers never share state."""

    def __init__(self) -> None:
        self._states: dict[str, AgentState] = {}
        self._lock = asyncio.Lock()

    async def load(self, agent_id: str) -> AgentState | None:
        async with self._lock:
            state = self._states.get(agent_id)
            return state.model_copy(deep=True) if state is not None else None

    async def save(self, agent_id: str, state: AgentState) -> None:
        async with self._lock:
            self._states[agent_id] = state.model_copy(deep=True)
        logger.debug("Saved state for %s (%d turns)", agent_id, len(state.turns))

    async def delete(self, agent_id: str) -> None:
        async with self._lock:
            self._states.pop(agent_id, None)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._states


__all__ = ["MemoryStateStore", "StateStore"]
