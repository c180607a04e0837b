"""Tree exploration strategies.

All strategies share one visit rule: skip pruned nodes, score the node,
adopt its path as the best path when it is a leaf scoring higher than
anything seen, and expand it while below maximum depth and node capacity.
They differ only in which node is visited next.

    strategy = strategy_for("best_first")
    result = await strategy.explore(tree, config, thinker, status)
"""

from __future__ import annotations

import heapq
import itertools
import logging
import random
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Protocol

from llm_agent.config import AgentConfig
from llm_agent.models import ReasoningTree, ThoughtNode, ThoughtType
from llm_agent.reasoning.base import STATUS_AGENT_ID
from llm_agent.status import StatusManager

logger = logging.getLogger(__name__)

BEAM_WIDTH = 3
MONTE_CARLO_WALKS = 10
MONTE_CARLO_STOP_PROBABILITY = 0.3
"""Chance that a random walk stops at the current node instead of descending."""

BEST_FIRST_EXCELLENT_SCORE = 0.8
BEST_FIRST_GOOD_SCORE = 0.6
BEST_FIRST_GOOD_ENOUGH_AFTER = 15
"""Best-first stops once this many nodes were explored and a good leaf exists."""


@dataclass(frozen=True)
class ChildThought:
    thought: str
    thought_type: ThoughtType = "hypothesis"
    estimated_score: float = 0.5


class Thinker(Protocol):
    """Model-backed node operations a strategy needs."""

    async def child_thoughts(self, node: ThoughtNode) -> list[ChildThought]: ...

    async def evaluate(self, node: ThoughtNode) -> float: ...


@dataclass
class ExplorationResult:
    success: bool = True
    best_path: list[str] = field(default_factory=list)
    best_score: float = 0.0
    nodes_explored: int = 0
    max_depth_reached: int = 0
    execution_time_ms: float = 0.0
    error: str | None = None


class _Search:
    """Counters and the shared visit/expand rule for one exploration."""

    def __init__(
        self,
        tree: ReasoningTree,
        config: AgentConfig,
        thinker: Thinker,
        status: StatusManager,
    ) -> None:
        self.tree = tree
        self.config = config
        self.thinker = thinker
        self.status = status
        self.nodes_explored = 0
        self.max_depth_reached = 0
        self.best_path: list[str] = []
        self.best_score = 0.0
        self._t0 = time.monotonic()

    @property
    def exhausted(self) -> bool:
        return self.nodes_explored >= self.config.max_tree_nodes

    async def visit(self, node_id: str, details: str | None = None) -> ThoughtNode | None:
        """Score one node; ``None`` when it is pruned."""
        node = self.tree.get_node(node_id)
        if node.state == "pruned":
            return None
        self.nodes_explored += 1
        self.max_depth_reached = max(self.max_depth_reached, node.depth)
        self.status.emit_status(
            STATUS_AGENT_ID,
            "Exploring thoughts",
            details or f"Evaluating node at depth {node.depth}",
            f"Nodes explored: {self.nodes_explored}",
        )
        self.tree.evaluate(node_id, await self.thinker.evaluate(node))
        if node.is_leaf and node.score > self.best_score:
            self.best_score = node.score
            self.best_path = self.tree.path_to_node(node_id)
        return node

    def can_expand(self, node: ThoughtNode) -> bool:
        return node.depth < min(self.config.max_tree_depth, self.tree.max_depth) and not self.tree.is_at_capacity

    async def expand(self, node: ThoughtNode) -> list[tuple[ThoughtNode, ChildThought]]:
        """Generate and attach children, stopping quietly when the tree fills up."""
        added: list[tuple[ThoughtNode, ChildThought]] = []
        for child in await self.thinker.child_thoughts(node):
            if self.tree.is_at_capacity:
                logger.debug("Tree full at %d nodes; dropping remaining children", self.tree.node_count)
                break
            added.append((self.tree.add_child(node.node_id, child.thought, child.thought_type), child))
        return added

    def result(self) -> ExplorationResult:
        return ExplorationResult(
            best_path=list(self.best_path),
            best_score=self.best_score,
            nodes_explored=self.nodes_explored,
            max_depth_reached=self.max_depth_reached,
            execution_time_ms=(time.monotonic() - self._t0) * 1000,
        )


class ExplorationStrategy(Protocol):
    name: str

    async def explore(
        self,
        tree: ReasoningTree,
        config: AgentConfig,
        thinker: Thinker,
        status: StatusManager,
    ) -> ExplorationResult: ...


def _root(tree: ReasoningTree) -> str:
    if tree.root_id is None:
        raise ValueError("Tree has no root node to explore from.")
    return tree.root_id


class BreadthFirstStrategy:
    name = "breadth_first"

    async def explore(
        self, tree: ReasoningTree, config: AgentConfig, thinker: Thinker, status: StatusManager
    ) -> ExplorationResult:
        search = _Search(tree, config, thinker, status)
        queue: deque[str] = deque([_root(tree)])
        while queue and not search.exhausted:
            node = await search.visit(queue.popleft())
            if node is None:
                continue
            if search.can_expand(node):
                queue.extend(child.node_id for child, _ in await search.expand(node))
        return search.result()


class DepthFirstStrategy:
    name = "depth_first"

    async def explore(
        self, tree: ReasoningTree, config: AgentConfig, thinker: Thinker, status: StatusManager
    ) -> ExplorationResult:
        search = _Search(tree, config, thinker, status)
        stack = [_root(tree)]
        while stack and not search.exhausted:
            node = await search.visit(stack.pop())
            if node is None:
                continue
            if search.can_expand(node):
                children = await search.expand(node)
                # Reversed so the first generated child is explored first.
                stack.extend(child.node_id for child, _ in reversed(children))
        return search.result()


class BestFirstStrategy:
    """Highest estimated score first; stops early on an excellent or good-enough leaf."""

    name = "best_first"

    async def explore(
        self, tree: ReasoningTree, config: AgentConfig, thinker: Thinker, status: StatusManager
    ) -> ExplorationResult:
        search = _Search(tree, config, thinker, status)
        order = itertools.count()
        heap: list[tuple[float, int, str]] = [(-0.5, next(order), _root(tree))]
        while heap and not search.exhausted:
            _, _, node_id = heapq.heappop(heap)
            node = await search.visit(node_id)
            if node is None:
                continue
            if search.best_score > BEST_FIRST_EXCELLENT_SCORE:
                status.emit_status(
                    STATUS_AGENT_ID,
                    "Found excellent solution",
                    f"Score: {search.best_score:.2f}",
                    "Terminating exploration early",
                )
                break
            if search.can_expand(node):
                for child, thought in await search.expand(node):
                    heapq.heappush(heap, (-thought.estimated_score, next(order), child.node_id))
            if search.nodes_explored >= BEST_FIRST_GOOD_ENOUGH_AFTER and search.best_score > BEST_FIRST_GOOD_SCORE:
                status.emit_status(
                    STATUS_AGENT_ID,
                    "Found good solution",
                    f"Score: {search.best_score:.2f}",
                    "Terminating exploration",
                )
                break
        return search.result()


class BeamSearchStrategy:
    """Level by level, keeping the ``width`` best-estimated children of each level."""

    name = "beam_search"

    def __init__(self, width: int = BEAM_WIDTH) -> None:
        self.width = width

    async def explore(
        self, tree: ReasoningTree, config: AgentConfig, thinker: Thinker, status: StatusManager
    ) -> ExplorationResult:
        search = _Search(tree, config, thinker, status)
        level = [_root(tree)]
        while level and not search.exhausted:
            candidates: list[tuple[float, int, str]] = []
            for node_id in level:
                if search.exhausted:
                    break
                node = await search.visit(node_id)
                if node is None or not search.can_expand(node):
                    continue
                for child, thought in await search.expand(node):
                    candidates.append((thought.estimated_score, len(candidates), child.node_id))
            candidates.sort(key=lambda c: (-c[0], c[1]))
            level = [node_id for _, _, node_id in candidates[: self.width]]
        return search.result()


class MonteCarloStrategy:
    """Repeated random walks from the root, each descending into one random child."""

    name = "monte_carlo"

    def __init__(self, walks: int = MONTE_CARLO_WALKS, rng: random.Random | None = None) -> None:
        self.walks = walks
        self._rng = rng or random.Random()

    async def explore(
        self, tree: ReasoningTree, config: AgentConfig, thinker: Thinker, status: StatusManager
    ) -> ExplorationResult:
        search = _Search(tree, config, thinker, status)
        root_id = _root(tree)
        for walk in range(self.walks):
            if search.exhausted:
                break
            current: str | None = root_id
            while current is not None and not search.exhausted:
                depth = tree.get_node(current).depth
                node = await search.visit(current, f"Random walk {walk + 1}, depth {depth}")
                if node is None:
                    break
                current = None
                if search.can_expand(node) and self._rng.random() > MONTE_CARLO_STOP_PROBABILITY:
                    children = await thinker.child_thoughts(node)
                    if children:
                        pick = self._rng.choice(children)
                        current = tree.add_child(node.node_id, pick.thought, pick.thought_type).node_id
        return search.result()


_STRATEGIES: dict[str, type[ExplorationStrategy]] = {
    "breadth_first": BreadthFirstStrategy,
    "depth_first": DepthFirstStrategy,
    "best_first": BestFirstStrategy,
    "beam_search": BeamSearchStrategy,
    "monte_carlo": MonteCarloStrategy,
}


def strategy_for(name: str, *, rng: random.Random | None = None) -> ExplorationStrategy:
    """Strategy instance for a configured name.

    Raises:
        ValueError: unknown strategy name.
    """
    if name == "monte_carlo":
        return MonteCarloStrategy(rng=rng)
    try:
        return _STRATEGIES[name]()
    except KeyError:
        raise ValueError(f"Unknown exploration strategy {name!r}") from None


__all__ = [
    "BEAM_WIDTH",
    "BeamSearchStrategy",
    "BestFirstStrategy",
    "BreadthFirstStrategy",
    "ChildThought",
    "DepthFirstStrategy",
    "ExplorationResult",
    "ExplorationStrategy",
    "MonteCarloStrategy",
    "Thinker",
    "strategy_for",
]
