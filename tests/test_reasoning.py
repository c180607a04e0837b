"""Tests for the reasoning engines and tree exploration strategies."""

from __future__ import annotations

import json
import random
from typing import Any

import pytest

from conftest import EventRecorder, ScriptedModelClient, route_by_prompt

from llm_agent.communicator import LLMCommunicator
from llm_agent.config import AgentConfig
from llm_agent.events import EventManager
from llm_agent.metrics import InMemoryMetrics, SafeMetrics
from llm_agent.models import ReasoningChain, ReasoningTree, ThoughtNode
from llm_agent.reasoning import (
    ChainOfThoughtEngine,
    HybridEngine,
    ReasoningManager,
    ReasoningResult,
    TreeOfThoughtsEngine,
    strategy_for,
)
from llm_agent.reasoning.base import parse_reasoning_payload
from llm_agent.reasoning.hybrid import combine_conclusions, combine_confidence, enhance_context
from llm_agent.reasoning.strategies import (
    BeamSearchStrategy,
    BestFirstStrategy,
    BreadthFirstStrategy,
    ChildThought,
    DepthFirstStrategy,
    MonteCarloStrategy,
)
from llm_agent.reasoning.tree import NO_PATH_CONCLUSION
from llm_agent.status import StatusManager
from llm_agent.tools import to_registry, tool


@tool
async def get_weather(city: str) -> dict:
    return {}


TOOLS = to_registry([get_weather])


def _step(confidence: float, insights: list[str], **extra: Any) -> str:
    return json.dumps({"reasoning": f"reasoning at {confidence}", "confidence": confidence, "insights": insights, **extra})


def chain_routes(
    confidences: tuple[float, float, float, float] = (0.8, 0.8, 0.8, 0.8),
    valid: bool = True,
) -> dict[str, Any]:
    return {
        "to analyze a problem": _step(confidences[0], ["needs a city"]),
        "to plan a solution": _step(confidences[1], ["call the tool"]),
        "to develop an execution strategy": _step(confidences[2], ["one call is enough"]),
        "to evaluate the proposed solution": _step(confidences[3], ["sound"], conclusion="Call get_weather for Paris"),
        "validating Chain of Thought": json.dumps({"is_valid": valid, "error": "" if valid else "gaps remain"}),
    }


TREE_ROUTES: dict[str, Any] = {
    "starting a Tree of Thoughts": json.dumps({"thought": "Use the weather tool", "thought_type": "hypothesis"}),
    "generating child thoughts": json.dumps(
        {"children": [{"thought": "Call get_weather", "thought_type": "decision", "estimated_score": 0.8}]}
    ),
    "evaluating a thought": json.dumps({"score": 0.6}),
    "synthesizing a conclusion": json.dumps({"conclusion": "Look up Paris weather"}),
}


def _parts(
    routes: dict[str, Any], config: AgentConfig, events: EventManager, sink: InMemoryMetrics
) -> tuple[LLMCommunicator, StatusManager, SafeMetrics]:
    status = StatusManager(config, events)
    metrics = SafeMetrics(sink)
    client = ScriptedModelClient(responder=route_by_prompt(routes))
    return LLMCommunicator(client, config, events, status, metrics), status, metrics


# ---------------------------------------------------------------------------
# Chain of Thought
# ---------------------------------------------------------------------------


class TestChainOfThought:
    @pytest.mark.asyncio
    async def test_full_chain(self, events: EventManager, recorder: EventRecorder, sink: InMemoryMetrics) -> None:
        config = AgentConfig(reasoning_type="chain_of_thought")
        comm, status, metrics = _parts(chain_routes((0.9, 0.8, 0.7, 0.8)), config, events, sink)
        result = await ChainOfThoughtEngine(comm, config, status, metrics).reason("Weather in Paris?", "", TOOLS)
        assert result.success
        assert result.confidence == pytest.approx(0.8)
        assert result.conclusion == "Call get_weather for Paris"
        assert [s.step_type for s in result.chain.steps] == ["analysis", "planning", "decision", "evaluation"]
        assert result.chain.is_complete
        assert result.metadata == {"steps_completed": 4, "total_insights": 4, "reasoning_type": "chain_of_thought"}
        assert sink.counters["validation.passed:chain_of_thought"] == 1
        assert sink.values["reasoning_confidence:chain_of_thought"] == [pytest.approx(0.8)]
        titles = recorder.status_titles()
        for title in ("Analyzing problem", "Planning approach", "Developing strategy", "Evaluating solution", "Validating reasoning"):
            assert title in titles

    @pytest.mark.asyncio
    async def test_invalid_and_below_threshold_fails(self, events: EventManager, sink: InMemoryMetrics) -> None:
        config = AgentConfig(reasoning_type="chain_of_thought")
        comm, status, metrics = _parts(chain_routes((0.5, 0.5, 0.5, 0.5), valid=False), config, events, sink)
        result = await ChainOfThoughtEngine(comm, config, status, metrics).reason("g", "", TOOLS)
        assert not result.success
        assert result.error == "Reasoning confidence 0.50 below threshold 0.70"
        assert len(result.chain.steps) == 4
        assert not result.chain.is_complete
        assert sink.validations[-1] == {"type": "chain_of_thought", "passed": False, "error": "gaps remain"}

    @pytest.mark.asyncio
    async def test_invalid_but_confident_succeeds(self, events: EventManager, sink: InMemoryMetrics) -> None:
        config = AgentConfig(reasoning_type="chain_of_thought")
        comm, status, metrics = _parts(chain_routes(valid=False), config, events, sink)
        result = await ChainOfThoughtEngine(comm, config, status, metrics).reason("g", "", TOOLS)
        assert result.success

    @pytest.mark.asyncio
    async def test_validation_disabled(self, events: EventManager, sink: InMemoryMetrics) -> None:
        config = AgentConfig(reasoning_type="chain_of_thought", enable_reasoning_validation=False)
        routes = chain_routes((0.1, 0.1, 0.1, 0.1))
        del routes["validating Chain of Thought"]
        comm, status, metrics = _parts(routes, config, events, sink)
        result = await ChainOfThoughtEngine(comm, config, status, metrics).reason("g", "", TOOLS)
        assert result.success
        assert sink.validations == []

    @pytest.mark.asyncio
    async def test_empty_step_response_fails_with_partial_chain(self, events: EventManager, sink: InMemoryMetrics) -> None:
        config = AgentConfig(reasoning_type="chain_of_thought")
        routes = chain_routes()
        routes["to plan a solution"] = "   "
        comm, status, metrics = _parts(routes, config, events, sink)
        engine = ChainOfThoughtEngine(comm, config, status, metrics)
        result = await engine.reason("g", "", TOOLS)
        assert not result.success
        assert result.error == "Empty LLM response"
        assert len(result.chain.steps) == 1
        assert engine.current_chain is result.chain

    @pytest.mark.asyncio
    async def test_unparseable_step(self, events: EventManager, sink: InMemoryMetrics) -> None:
        config = AgentConfig(reasoning_type="chain_of_thought")
        routes = chain_routes()
        routes["to analyze a problem"] = "I cannot answer in JSON"
        comm, status, metrics = _parts(routes, config, events, sink)
        result = await ChainOfThoughtEngine(comm, config, status, metrics).reason("g", "", TOOLS)
        assert not result.success
        assert result.error.startswith("Failed to parse LLM response:")


# ---------------------------------------------------------------------------
# Exploration strategies (no model involved)
# ---------------------------------------------------------------------------


class FakeThinker:
    """Two children per node; scores looked up by thought text."""

    def __init__(self, scores: dict[str, float] | None = None) -> None:
        self.scores = scores or {}
        self.evaluated: list[str] = []

    async def child_thoughts(self, node: ThoughtNode) -> list[ChildThought]:
        return [ChildThought(f"{node.thought}.{i}", "analysis", 0.4 + 0.1 * i) for i in (1, 2)]

    async def evaluate(self, node: ThoughtNode) -> float:
        self.evaluated.append(node.thought)
        return self.scores.get(node.thought, 0.5)


def _tree(max_nodes: int = 50) -> ReasoningTree:
    tree = ReasoningTree(goal="g", max_nodes=max_nodes)
    tree.create_root("r")
    return tree


class TestStrategies:
    @pytest.mark.asyncio
    async def test_breadth_first_visits_everything_and_finds_best_leaf(self, status: StatusManager) -> None:
        tree = _tree()
        thinker = FakeThinker({"r.2.1": 0.9})
        result = await BreadthFirstStrategy().explore(tree, AgentConfig(max_tree_depth=2), thinker, status)
        assert thinker.evaluated == ["r", "r.1", "r.2", "r.1.1", "r.1.2", "r.2.1", "r.2.2"]
        assert result.nodes_explored == 7
        assert result.max_depth_reached == 2
        assert result.best_score == pytest.approx(0.9)
        assert [tree.get_node(n).thought for n in result.best_path] == ["r", "r.2", "r.2.1"]

    @pytest.mark.asyncio
    async def test_depth_first_order(self, status: StatusManager) -> None:
        thinker = FakeThinker()
        await DepthFirstStrategy().explore(_tree(), AgentConfig(max_tree_depth=2), thinker, status)
        assert thinker.evaluated == ["r", "r.1", "r.1.1", "r.1.2", "r.2", "r.2.1", "r.2.2"]

    @pytest.mark.asyncio
    async def test_capacity_stops_growth_without_error(self, status: StatusManager) -> None:
        tree = _tree(max_nodes=4)
        result = await BreadthFirstStrategy().explore(tree, AgentConfig(max_tree_nodes=4), FakeThinker(), status)
        assert result.success
        assert tree.node_count == 4

    @pytest.mark.asyncio
    async def test_best_first_stops_on_excellent_leaf(
        self, status: StatusManager, recorder: EventRecorder
    ) -> None:
        tree = _tree()
        thinker = FakeThinker({"r.2": 0.95})
        result = await BestFirstStrategy().explore(tree, AgentConfig(), thinker, status)
        assert thinker.evaluated == ["r", "r.2"]
        assert [tree.get_node(n).thought for n in result.best_path] == ["r", "r.2"]
        assert "Found excellent solution" in recorder.status_titles()

    @pytest.mark.asyncio
    async def test_beam_keeps_best_estimates(self, status: StatusManager) -> None:
        tree = _tree()
        thinker = FakeThinker()
        await BeamSearchStrategy(width=1).explore(tree, AgentConfig(max_tree_depth=2), thinker, status)
        assert thinker.evaluated == ["r", "r.2", "r.2.2"]

    @pytest.mark.asyncio
    async def test_pruned_nodes_skipped(self, status: StatusManager) -> None:
        tree = _tree()

        class PruningThinker(FakeThinker):
            async def evaluate(self, node: ThoughtNode) -> float:
                if node.thought == "r.1":
                    sibling = next(n for n in tree.nodes.values() if n.thought == "r.2")
                    tree.prune(sibling.node_id)
                return await super().evaluate(node)

        pruner = PruningThinker()
        await BreadthFirstStrategy().explore(tree, AgentConfig(max_tree_depth=2), pruner, status)
        assert pruner.evaluated == ["r", "r.1", "r.1.1", "r.1.2"]

    @pytest.mark.asyncio
    async def test_monte_carlo_is_bounded(self, status: StatusManager) -> None:
        tree = _tree()
        result = await MonteCarloStrategy(walks=10, rng=random.Random(7)).explore(
            tree, AgentConfig(max_tree_depth=2), FakeThinker(), status
        )
        assert result.nodes_explored >= 10
        assert tree.node_count <= 1 + 10 * 2
        assert all(n.depth <= 2 for n in tree.nodes.values())

    def test_strategy_for(self) -> None:
        assert isinstance(strategy_for("beam_search"), BeamSearchStrategy)
        assert isinstance(strategy_for("monte_carlo", rng=random.Random(1)), MonteCarloStrategy)
        with pytest.raises(ValueError, match="Unknown exploration strategy"):
            strategy_for("random_walk")


# ---------------------------------------------------------------------------
# Tree of Thoughts and Hybrid
# ---------------------------------------------------------------------------


class TestTreeOfThoughts:
    @pytest.mark.asyncio
    async def test_tree_run(self, events: EventManager, sink: InMemoryMetrics) -> None:
        config = AgentConfig(reasoning_type="tree_of_thoughts", max_tree_depth=1)
        comm, status, metrics = _parts(TREE_ROUTES, config, events, sink)
        engine = TreeOfThoughtsEngine(comm, config, status, metrics)
        result = await engine.reason("Weather in Paris?", "", TOOLS)
        assert result.success
        assert result.conclusion == "Look up Paris weather"
        assert result.confidence == pytest.approx(0.6)
        assert result.metadata["nodes_explored"] == 2
        assert result.metadata["reasoning_type"] == "tree_of_thoughts"
        assert result.tree is engine.current_tree
        assert result.tree.completed_at is not None

    @pytest.mark.asyncio
    async def test_missing_root_fails(self, events: EventManager, sink: InMemoryMetrics) -> None:
        config = AgentConfig(reasoning_type="tree_of_thoughts")
        routes = dict(TREE_ROUTES)
        routes["starting a Tree of Thoughts"] = '{"thought_type": "hypothesis"}'
        comm, status, metrics = _parts(routes, config, events, sink)
        result = await TreeOfThoughtsEngine(comm, config, status, metrics).reason("g", "", TOOLS)
        assert not result.success
        assert result.error == "Failed to generate root thought from LLM response"

    @pytest.mark.asyncio
    async def test_unparseable_children_degrade(self, events: EventManager, sink: InMemoryMetrics) -> None:
        config = AgentConfig(reasoning_type="tree_of_thoughts")
        routes = dict(TREE_ROUTES)
        routes["generating child thoughts"] = "no children today"
        comm, status, metrics = _parts(routes, config, events, sink)
        result = await TreeOfThoughtsEngine(comm, config, status, metrics).reason("g", "", TOOLS)
        assert result.success
        assert result.tree.node_count == 1

    @pytest.mark.asyncio
    async def test_conclusion_without_path(self, events: EventManager, sink: InMemoryMetrics) -> None:
        config = AgentConfig(reasoning_type="tree_of_thoughts")
        comm, _, _ = _parts(TREE_ROUTES, config, events, sink)
        engine = TreeOfThoughtsEngine(comm, config, StatusManager(config, events))
        assert await engine.thinker.conclusion([], "g", "", TOOLS, _tree()) == NO_PATH_CONCLUSION


class TestHybrid:
    def test_combination_helpers(self) -> None:
        assert combine_confidence(0.8, 0.6) == pytest.approx(0.72)
        assert combine_conclusions("a", "b") == "Analysis: a\n\nExploration: b"
        assert combine_conclusions("", "") == "Hybrid reasoning completed but no specific conclusions were reached."

    def test_enhance_context_keeps_confident_steps(self) -> None:
        chain = ReasoningChain(goal="g")
        chain.add_step("strong", confidence=0.9)
        chain.add_step("weak", confidence=0.5)
        context = enhance_context("ctx", ReasoningResult(success=True, conclusion="c", chain=chain))
        assert context == "ctx\n\nChain of Thought Analysis: c\n\nKey Insights from Analysis:\nstrong"

    @pytest.mark.asyncio
    async def test_weighted_confidence(self, events: EventManager, sink: InMemoryMetrics) -> None:
        config = AgentConfig(reasoning_type="hybrid", max_tree_depth=1)
        comm, status, metrics = _parts({**chain_routes(), **TREE_ROUTES}, config, events, sink)
        result = await HybridEngine(comm, config, status, metrics).reason("Weather in Paris?", "", TOOLS)
        assert result.success
        assert result.confidence == pytest.approx(0.72)
        assert result.chain is not None and result.tree is not None
        assert result.conclusion == "Analysis: Call get_weather for Paris\n\nExploration: Look up Paris weather"
        assert result.metadata["method"] == "hybrid"
        assert result.metadata["chain_confidence"] == pytest.approx(0.8)
        assert result.metadata["tree_confidence"] == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_falls_back_to_tree(
        self, events: EventManager, recorder: EventRecorder, sink: InMemoryMetrics
    ) -> None:
        config = AgentConfig(reasoning_type="hybrid", max_tree_depth=1)
        routes = {**chain_routes(), **TREE_ROUTES}
        routes["to analyze a problem"] = ""
        comm, status, metrics = _parts(routes, config, events, sink)
        result = await HybridEngine(comm, config, status, metrics).reason("g", "", TOOLS)
        assert result.success
        assert result.chain is None
        assert result.metadata["chain_error"] == "Empty LLM response"
        assert "Tree of Thoughts Fallback" in recorder.status_titles()


class TestReasoningManager:
    @pytest.mark.asyncio
    async def test_dispatch_by_config(self, events: EventManager, sink: InMemoryMetrics) -> None:
        config = AgentConfig(reasoning_type="tree_of_thoughts", max_tree_depth=1)
        comm, status, metrics = _parts(TREE_ROUTES, config, events, sink)
        result = await ReasoningManager(comm, config, status, metrics).reason("g", "", TOOLS)
        assert result.success
        assert result.metadata["reasoning_type"] == "tree_of_thoughts"

    @pytest.mark.asyncio
    async def test_none_and_unknown(self, events: EventManager, sink: InMemoryMetrics) -> None:
        config = AgentConfig()
        comm, status, metrics = _parts({}, config, events, sink)
        manager = ReasoningManager(comm, config, status, metrics)
        disabled = await manager.reason_with("none", "g", "", TOOLS)
        assert not disabled.success
        assert disabled.error == "Reasoning disabled"
        with pytest.raises(ValueError, match="No reasoning engine available for type: psychic"):
            await manager.reason_with("psychic", "g", "", TOOLS)
        with pytest.raises(ValueError):
            await manager.reason_with("chain_of_thought", "  ", "", TOOLS)


class TestReasoningPayload:
    def test_bracketed_prose_before_object(self) -> None:
        payload = parse_reasoning_payload('Step [2] done: {"reasoning": "r", "confidence": 0.9}')
        assert payload == {"reasoning": "r", "confidence": 0.9}

    def test_array_rejected(self) -> None:
        with pytest.raises(ValueError, match="expected a JSON object"):
            parse_reasoning_payload("[0.9]")
