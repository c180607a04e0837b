"""Dispatch to the reasoning engine selected by configuration."""

from __future__ import annotations

import logging
import random
from typing import Mapping

from llm_agent.communicator import LLMCommunicator
from llm_agent.config import AgentConfig
from llm_agent.metrics import SafeMetrics, ensure_safe
from llm_agent.reasoning.base import ReasoningEngine, ReasoningResult
from llm_agent.reasoning.chain import ChainOfThoughtEngine
from llm_agent.reasoning.hybrid import HybridEngine
from llm_agent.reasoning.tree import TreeOfThoughtsEngine
from llm_agent.status import StatusManager
from llm_agent.tools import Tool

logger = logging.getLogger(__name__)


class ReasoningManager:
    def __init__(
        self,
        communicator: LLMCommunicator,
        config: AgentConfig,
        status: StatusManager,
        metrics: SafeMetrics | None = None,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config
        metrics = ensure_safe(metrics)
        self.engines: dict[str, ReasoningEngine] = {
            "chain_of_thought": ChainOfThoughtEngine(communicator, config, status, metrics),
            "tree_of_thoughts": TreeOfThoughtsEngine(communicator, config, status, metrics, rng=rng),
            "hybrid": HybridEngine(communicator, config, status, metrics, rng=rng),
        }

    async def reason(self, goal: str, context: str, tools: Mapping[str, Tool]) -> ReasoningResult:
        return await self.reason_with(self._config.reasoning_type, goal, context, tools)

    async def reason_with(
        self,
        reasoning_type: str,
        goal: str,
        context: str,
        tools: Mapping[str, Tool],
    ) -> ReasoningResult:
        """Run one engine by name.

        Raises:
            ValueError: blank goal, or no engine for ``reasoning_type``.
        """
        if not goal or not goal.strip():
            raise ValueError("goal must be a non-empty string")
        if reasoning_type == "none":
            return ReasoningResult(success=False, error="Reasoning disabled")
        engine = self.engines.get(reasoning_type)
        if engine is None:
            raise ValueError(f"No reasoning engine available for type: {reasoning_type}")
        logger.info("Starting reasoning with type: %s", reasoning_type)
        return await engine.reason(goal, context or "", tools)


__all__ = ["ReasoningManager"]
