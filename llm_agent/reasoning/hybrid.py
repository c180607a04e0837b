"""Hybrid reasoning: Chain-of-Thought first, then Tree-of-Thoughts seeded with its results.

A failed chain phase falls back to a plain tree run. Otherwise both phases
are merged whatever their individual outcome.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Mapping

from llm_agent.communicator import LLMCommunicator
from llm_agent.config import AgentConfig
from llm_agent.metrics import SafeMetrics, ensure_safe
from llm_agent.reasoning.base import METRICS_AGENT_ID, STATUS_AGENT_ID, ReasoningResult
from llm_agent.reasoning.chain import ChainOfThoughtEngine
from llm_agent.reasoning.tree import TreeOfThoughtsEngine
from llm_agent.status import StatusManager
from llm_agent.tools import Tool

logger = logging.getLogger(__name__)

REASONING_TYPE = "hybrid"
CHAIN_WEIGHT = 0.6
TREE_WEIGHT = 0.4
KEY_INSIGHT_MIN_CONFIDENCE = 0.7
MAX_KEY_INSIGHTS = 3
EMPTY_CONCLUSION = "Hybrid reasoning completed but no specific conclusions were reached."


def combine_confidence(chain_confidence: float, tree_confidence: float) -> float:
    return chain_confidence * CHAIN_WEIGHT + tree_confidence * TREE_WEIGHT


def combine_conclusions(chain_conclusion: str, tree_conclusion: str) -> str:
    parts = []
    if chain_conclusion:
        parts.append(f"Analysis: {chain_conclusion}")
    if tree_conclusion:
        parts.append(f"Exploration: {tree_conclusion}")
    return "\n\n".join(parts) if parts else EMPTY_CONCLUSION


def enhance_context(context: str, chain_result: ReasoningResult) -> str:
    """Original context plus the chain conclusion and its high-confidence step reasoning."""
    parts = [context] if context else []
    if chain_result.conclusion:
        parts.append(f"Chain of Thought Analysis: {chain_result.conclusion}")
    if chain_result.chain is not None:
        key = [s.reasoning for s in chain_result.chain.steps if s.confidence > KEY_INSIGHT_MIN_CONFIDENCE]
        if key:
            parts.append("Key Insights from Analysis:\n" + "\n".join(key[:MAX_KEY_INSIGHTS]))
    return "\n\n".join(parts)


class HybridEngine:
    reasoning_type = REASONING_TYPE

    def __init__(
        self,
        communicator: LLMCommunicator,
        config: AgentConfig,
        status: StatusManager,
        metrics: SafeMetrics | None = None,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._status = status
        self._metrics = ensure_safe(metrics)
        self.chain_engine = ChainOfThoughtEngine(communicator, config, status, self._metrics)
        self.tree_engine = TreeOfThoughtsEngine(communicator, config, status, self._metrics, rng=rng)

    async def reason(self, goal: str, context: str, tools: Mapping[str, Tool]) -> ReasoningResult:
        logger.info("Starting Hybrid reasoning for goal: %s", goal)
        t0 = time.monotonic()
        self._status.emit_status(
            STATUS_AGENT_ID,
            "Initializing hybrid reasoning",
            "Setting up combined reasoning approach",
            "Preparing to analyze goal",
        )

        self._status.emit_status(
            STATUS_AGENT_ID,
            "Chain of Thought Analysis",
            "Performing structured step-by-step analysis",
            "Breaking down problem components",
        )
        chain_result = await self.chain_engine.reason(goal, context, tools)
        if not chain_result.success:
            logger.warning("Chain of Thought phase failed, falling back to Tree of Thoughts only")
            self._status.emit_status(
                STATUS_AGENT_ID,
                "Tree of Thoughts Fallback",
                "Using Tree of Thoughts as fallback",
                "Exploring solution space",
            )
            fallback = await self.tree_engine.reason(goal, context, tools)
            fallback.metadata.setdefault("chain_error", chain_result.error)
            return fallback

        self._status.emit_status(
            STATUS_AGENT_ID,
            "Tree of Thoughts Exploration",
            "Exploring multiple solution paths",
            "Evaluating alternatives",
        )
        tree_result = await self.tree_engine.reason(goal, enhance_context(context, chain_result), tools)

        combined = combine_confidence(chain_result.confidence, tree_result.confidence)
        result = ReasoningResult(
            success=chain_result.success and tree_result.success,
            conclusion=combine_conclusions(chain_result.conclusion, tree_result.conclusion),
            confidence=combined,
            chain=chain_result.chain,
            tree=tree_result.tree,
            error=tree_result.error,
            metadata={
                "method": REASONING_TYPE,
                "reasoning_type": REASONING_TYPE,
                "chain_confidence": chain_result.confidence,
                "tree_confidence": tree_result.confidence,
                "combined_confidence": combined,
                "chain_success": chain_result.success,
                "tree_success": tree_result.success,
            },
            execution_time_ms=(time.monotonic() - t0) * 1000,
        )
        self._metrics.record_reasoning_duration(METRICS_AGENT_ID, REASONING_TYPE, result.execution_time_ms)
        self._metrics.record_reasoning_confidence(METRICS_AGENT_ID, REASONING_TYPE, combined)
        logger.info(
            "Hybrid reasoning completed in %.0fms. Success: %s",
            result.execution_time_ms,
            result.success,
        )
        return result


__all__ = [
    "CHAIN_WEIGHT",
    "HybridEngine",
    "REASONING_TYPE",
    "TREE_WEIGHT",
    "combine_conclusions",
    "combine_confidence",
    "enhance_context",
]
