"""Tree-of-Thoughts: root hypothesis, strategy-driven exploration, conclusion from the best path."""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Mapping

from llm_agent.communicator import LLMCommunicator
from llm_agent.config import AgentConfig
from llm_agent.errors import ReasoningError
from llm_agent.metrics import SafeMetrics, ensure_safe
from llm_agent.models import THOUGHT_TYPES, ReasoningTree, ThoughtNode, ThoughtType
from llm_agent.prompts import render_prompt
from llm_agent.reasoning.base import (
    METRICS_AGENT_ID,
    STATUS_AGENT_ID,
    ReasoningResult,
    as_score,
    parse_reasoning_payload,
    tool_names,
)
from llm_agent.reasoning.strategies import ChildThought, strategy_for
from llm_agent.status import StatusManager
from llm_agent.tools import Tool

logger = logging.getLogger(__name__)

REASONING_TYPE = "tree_of_thoughts"
NO_PATH_CONCLUSION = "No viable solution path found."
FAILED_CONCLUSION = "Failed to generate conclusion from best path."


def _thought_type(raw: Any) -> ThoughtType:
    lowered = raw.strip().lower() if isinstance(raw, str) else ""
    return lowered if lowered in THOUGHT_TYPES else "hypothesis"  # type: ignore[return-value]


class TreeThinker:
    """Model calls behind tree growth. Unparseable responses degrade to defaults."""

    def __init__(self, communicator: LLMCommunicator) -> None:
        self._communicator = communicator

    async def _ask(self, template: str, **variables: Any) -> dict[str, Any] | None:
        content = await self._communicator.call_with_streaming(
            render_prompt(template, **variables), "tree-of-thoughts", 0
        )
        if not content or not content.strip():
            return None
        try:
            return parse_reasoning_payload(content)
        except ValueError as exc:
            logger.warning("Failed to parse Tree of Thoughts response: %s", exc)
            return None

    async def root_thought(self, goal: str, context: str, tools: Mapping[str, Tool]) -> str:
        payload = await self._ask("tree_root", goal=goal, context=context, tool_names=tool_names(tools))
        thought = payload.get("thought") if payload else None
        if not isinstance(thought, str) or not thought.strip():
            raise ReasoningError("Failed to generate root thought from LLM response")
        return thought

    async def child_thoughts(self, node: ThoughtNode) -> list[ChildThought]:
        payload = await self._ask(
            "tree_children",
            thought=node.thought,
            depth=node.depth,
            score=node.score,
            thought_types=list(THOUGHT_TYPES),
        )
        raw_children = payload.get("children") if payload else None
        if not isinstance(raw_children, list):
            return []
        children: list[ChildThought] = []
        for item in raw_children:
            if not isinstance(item, dict):
                continue
            thought = item.get("thought")
            if not isinstance(thought, str) or not thought.strip():
                continue
            children.append(
                ChildThought(
                    thought=thought,
                    thought_type=_thought_type(item.get("thought_type")),
                    estimated_score=as_score(item.get("estimated_score")),
                )
            )
        return children

    async def evaluate(self, node: ThoughtNode) -> float:
        payload = await self._ask(
            "tree_evaluate", thought=node.thought, thought_type=node.thought_type, depth=node.depth
        )
        return as_score(payload.get("score")) if payload else 0.5

    async def conclusion(
        self,
        best_path: list[str],
        goal: str,
        context: str,
        tools: Mapping[str, Tool],
        tree: ReasoningTree,
    ) -> str:
        if not best_path:
            return NO_PATH_CONCLUSION
        payload = await self._ask(
            "tree_conclusion",
            goal=goal,
            context=context,
            path_thoughts=[tree.get_node(node_id).thought for node_id in best_path],
            tool_names=tool_names(tools),
        )
        conclusion = payload.get("conclusion") if payload else None
        if not isinstance(conclusion, str) or not conclusion.strip():
            return FAILED_CONCLUSION
        return conclusion


class TreeOfThoughtsEngine:
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
        self._config = config
        self._status = status
        self._metrics = ensure_safe(metrics)
        self._rng = rng
        self.thinker = TreeThinker(communicator)
        self.current_tree: ReasoningTree | None = None

    async def reason(self, goal: str, context: str, tools: Mapping[str, Tool]) -> ReasoningResult:
        logger.info("Starting Tree of Thoughts reasoning for goal: %s", goal)
        t0 = time.monotonic()
        tree = ReasoningTree(
            goal=goal,
            exploration_strategy=self._config.tree_exploration_strategy,
            max_depth=self._config.max_tree_depth,
            max_nodes=self._config.max_tree_nodes,
        )
        self.current_tree = tree
        self._status.emit_status(
            STATUS_AGENT_ID,
            "Initializing tree exploration",
            "Setting up branching reasoning structure",
            "Preparing to explore solution space",
        )
        try:
            tree.create_root(await self.thinker.root_thought(goal, context, tools), "hypothesis")
            strategy = strategy_for(self._config.tree_exploration_strategy, rng=self._rng)
            exploration = await strategy.explore(tree, self._config, self.thinker, self._status)
            if not exploration.success:
                return ReasoningResult(
                    success=False,
                    error=exploration.error,
                    tree=tree,
                    execution_time_ms=(time.monotonic() - t0) * 1000,
                )
            conclusion = await self.thinker.conclusion(exploration.best_path, goal, context, tools, tree)
            tree.complete(exploration.best_path)
        except Exception as exc:
            logger.error("Tree of Thoughts reasoning failed: %s", exc)
            return ReasoningResult(
                success=False,
                error=str(exc),
                tree=tree,
                execution_time_ms=(time.monotonic() - t0) * 1000,
            )

        elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "Tree of Thoughts reasoning completed in %.0fms. Nodes explored: %d",
            elapsed_ms,
            exploration.nodes_explored,
        )
        self._metrics.record_reasoning_duration(METRICS_AGENT_ID, REASONING_TYPE, elapsed_ms)
        self._metrics.record_reasoning_confidence(METRICS_AGENT_ID, REASONING_TYPE, exploration.best_score)
        return ReasoningResult(
            success=True,
            conclusion=conclusion,
            confidence=exploration.best_score,
            tree=tree,
            execution_time_ms=elapsed_ms,
            metadata={
                "nodes_explored": exploration.nodes_explored,
                "max_depth_reached": exploration.max_depth_reached,
                "best_path_score": exploration.best_score,
                "reasoning_type": REASONING_TYPE,
            },
        )


__all__ = ["REASONING_TYPE", "TreeOfThoughtsEngine", "TreeThinker"]
