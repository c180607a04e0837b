"""Pydantic data model for agent state, decisions, tool results and reasoning structures.

Everything here is serializable with ``model_dump(mode="json")`` so a state
store can persist an ``AgentState`` between runs and the message builder can
render history verbatim.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from llm_agent.errors import (
    ChainClosedError,
    NodeNotFoundError,
    TreeCapacityError,
    TreeRootExistsError,
)
from llm_agent.foundation import new_node_id, utc_now

ActionName = Literal["plan", "tool_call", "multi_tool_call", "finish", "retry"]
ACTION_NAMES: tuple[str, ...] = ("plan", "tool_call", "multi_tool_call", "finish", "retry")

StepType = Literal["analysis", "decision", "observation", "planning", "evaluation", "synthesis"]
ThoughtType = Literal[
    "hypothesis",
    "observation",
    "decision",
    "analysis",
    "conclusion",
    "question",
    "alternative",
]
THOUGHT_TYPES: tuple[str, ...] = (
    "hypothesis",
    "observation",
    "decision",
    "analysis",
    "conclusion",
    "question",
    "alternative",
)
NodeState = Literal["active", "evaluated", "pruned", "best_path", "completed"]


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


# ---------------------------------------------------------------------------
# Model decision
# ---------------------------------------------------------------------------


class ToolCallSpec(BaseModel):
    """One entry of a ``multi_tool_call`` decision."""

    model_config = ConfigDict(extra="forbid")

    tool: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)
    reason: str | None = None


class PlanAction(BaseModel):
    model_config = ConfigDict(extra="forbid")
    kind: Literal["plan"] = "plan"
    summary: str | None = None


class ToolCallAction(BaseModel):
    model_config = ConfigDict(extra="forbid")
    kind: Literal["tool_call"] = "tool_call"
    tool: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)
    summary: str | None = None


class MultiToolCallAction(BaseModel):
    model_config = ConfigDict(extra="forbid")
    kind: Literal["multi_tool_call"] = "multi_tool_call"
    tool_calls: list[ToolCallSpec] = Field(default_factory=list)
    summary: str | None = None


class FinishAction(BaseModel):
    model_config = ConfigDict(extra="forbid")
    kind: Literal["finish"] = "finish"
    final: str = Field(min_length=1)


class RetryAction(BaseModel):
    model_config = ConfigDict(extra="forbid")
    kind: Literal["retry"] = "retry"
    summary: str | None = None


AgentAction = Annotated[
    Union[PlanAction, ToolCallAction, MultiToolCallAction, FinishAction, RetryAction],
    Field(discriminator="kind"),
]


class ModelDecision(BaseModel):
    """The model's choice for one turn.

    ``thoughts`` is private reasoning. The ``status_*``/``next_step_hint``/
    ``progress_pct`` fields are public UI text and are surfaced on their own.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    thoughts: str
    action: AgentAction
    action_raw: str | None = None
    status_title: str | None = None
    status_details: str | None = None
    next_step_hint: str | None = None
    progress_pct: int | None = None

    @property
    def kind(self) -> str:
        return self.action.kind


# ---------------------------------------------------------------------------
# Tool calls and results
# ---------------------------------------------------------------------------


class ToolCallRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    tool: str
    params: dict[str, Any] = Field(default_factory=dict)
    turn_id: str


class ToolExecutionResult(BaseModel):
    """Outcome of one tool invocation.

    ``turn_id`` is the canonical hash of (tool, params), so identical calls
    share it. ``created_at`` plus the staleness window gates dedup reuse.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    success: bool
    output: Any = None
    error: str | None = None
    tool: str = ""
    params: dict[str, Any] = Field(default_factory=dict)
    turn_id: str = ""
    execution_time_ms: float | None = None
    created_at: datetime = Field(default_factory=utc_now)


class AgentTurn(BaseModel):
    """One immutable cycle of decision plus optional tool execution.

    Single-call fields (``tool_call``/``tool_result``) and multi-call fields
    (``tool_calls``/``tool_results``) coexist; one family is populated per
    action type.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    index: int = Field(ge=0)
    turn_id: str | None = None
    decision: ModelDecision | None = None
    tool_call: ToolCallRequest | None = None
    tool_result: ToolExecutionResult | None = None
    tool_calls: list[ToolCallRequest] | None = None
    tool_results: list[ToolExecutionResult] | None = None


# ---------------------------------------------------------------------------
# Reasoning chain
# ---------------------------------------------------------------------------


class ReasoningStep(BaseModel):
    model_config = ConfigDict(extra="forbid")

    step_id: str = Field(default_factory=new_node_id)
    step_number: int = Field(ge=1)
    step_type: StepType = "analysis"
    reasoning: str = ""
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    insights: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)


class ReasoningChain(BaseModel):
    """Ordered, typed reasoning steps; terminal once completed."""

    model_config = ConfigDict(extra="forbid")

    goal: str
    steps: list[ReasoningStep] = Field(default_factory=list)
    is_complete: bool = False
    final_conclusion: str | None = None
    final_confidence: float | None = None
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None

    def add_step(
        self,
        reasoning: str,
        step_type: StepType = "analysis",
        confidence: float = 0.5,
        insights: list[str] | None = None,
    ) -> ReasoningStep:
        if self.is_complete:
            raise ChainClosedError("Cannot add a step to a completed reasoning chain")
        step = ReasoningStep(
            step_number=len(self.steps) + 1,
            step_type=step_type,
            reasoning=reasoning,
            confidence=clamp01(confidence),
            insights=list(insights or []),
        )
        self.steps.append(step)
        return step

    def complete(self, conclusion: str, confidence: float) -> None:
        if self.is_complete:
            raise ChainClosedError("Reasoning chain is already complete")
        self.final_conclusion = conclusion
        self.final_confidence = clamp01(confidence)
        self.is_complete = True
        self.completed_at = utc_now()


# ---------------------------------------------------------------------------
# Reasoning tree (arena of nodes keyed by id)
# ---------------------------------------------------------------------------


class ThoughtNode(BaseModel):
    model_config = ConfigDict(extra="forbid")

    node_id: str = Field(default_factory=new_node_id)
    parent_id: str | None = None
    depth: int = Field(default=0, ge=0)
    thought: str = ""
    score: float = Field(default=0.5, ge=0.0, le=1.0)
    thought_type: ThoughtType = "hypothesis"
    child_ids: list[str] = Field(default_factory=list)
    state: NodeState = "active"
    created_at: datetime = Field(default_factory=utc_now)
    evaluated_at: datetime | None = None

    @property
    def is_leaf(self) -> bool:
        return not self.child_ids


class ReasoningTree(BaseModel):
    """Branching search structure.

    Parent/child links are ids into ``nodes``; pruning only flips node state,
    so pruned nodes stay addressable.
    """

    model_config = ConfigDict(extra="forbid")

    goal: str
    nodes: dict[str, ThoughtNode] = Field(default_factory=dict)
    root_id: str | None = None
    exploration_strategy: str = "best_first"
    max_depth: int = Field(default=10, ge=0)
    max_nodes: int = Field(default=100, ge=1)
    best_path: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def is_at_capacity(self) -> bool:
        return self.node_count >= self.max_nodes

    @property
    def current_max_depth(self) -> int:
        return max((n.depth for n in self.nodes.values()), default=0)

    def get_node(self, node_id: str) -> ThoughtNode:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise NodeNotFoundError(f"Node with ID {node_id} not found.") from None

    def create_root(self, thought: str, thought_type: ThoughtType = "hypothesis") -> ThoughtNode:
        if self.root_id is not None:
            raise TreeRootExistsError("Tree already has a root node.")
        root = ThoughtNode(depth=0, thought=thought, thought_type=thought_type)
        self.nodes[root.node_id] = root
        self.root_id = root.node_id
        return root

    def add_child(
        self,
        parent_id: str,
        thought: str,
        thought_type: ThoughtType = "hypothesis",
    ) -> ThoughtNode:
        """Attach a child; rejects at max depth or node capacity without mutating the tree."""
        if parent_id not in self.nodes:
            raise NodeNotFoundError(f"Parent node with ID {parent_id} not found.")
        parent = self.nodes[parent_id]
        if parent.depth >= self.max_depth:
            raise TreeCapacityError(f"Cannot add child to node at maximum depth {self.max_depth}.")
        if self.is_at_capacity:
            raise TreeCapacityError(f"Tree has reached maximum capacity of {self.max_nodes} nodes.")
        child = ThoughtNode(
            parent_id=parent_id,
            depth=parent.depth + 1,
            thought=thought,
            thought_type=thought_type,
        )
        self.nodes[child.node_id] = child
        parent.child_ids.append(child.node_id)
        return child

    def evaluate(self, node_id: str, score: float) -> None:
        node = self.get_node(node_id)
        node.score = clamp01(score)
        node.state = "evaluated"
        node.evaluated_at = utc_now()

    def descendants(self, node_id: str) -> list[str]:
        out: list[str] = []
        stack = list(reversed(self.get_node(node_id).child_ids))
        while stack:
            current = stack.pop()
            out.append(current)
            node = self.nodes.get(current)
            if node is not None:
                stack.extend(reversed(node.child_ids))
        return out

    def prune(self, node_id: str) -> None:
        for target in [node_id, *self.descendants(node_id)]:
            node = self.nodes.get(target)
            if node is not None:
                node.state = "pruned"

    def path_to_node(self, node_id: str) -> list[str]:
        path: list[str] = []
        current: str | None = node_id
        while current is not None and current in self.nodes:
            path.insert(0, current)
            current = self.nodes[current].parent_id
        return path

    def complete(self, best_path: list[str]) -> None:
        self.best_path = list(best_path)
        self.completed_at = utc_now()
        for node_id in best_path:
            node = self.nodes.get(node_id)
            if node is not None:
                node.state = "best_path"


# ---------------------------------------------------------------------------
# Agent state
# ---------------------------------------------------------------------------


class AgentState(BaseModel):
    """Everything the orchestrator owns during a run; persisted between runs."""

    model_config = ConfigDict(extra="forbid")

    agent_id: str
    goal: str = ""
    turns: list[AgentTurn] = Field(default_factory=list)
    reasoning_type: str | None = None
    current_chain: ReasoningChain | None = None
    current_tree: ReasoningTree | None = None
    reasoning_metadata: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=utc_now)

    def append_turn(self, turn: AgentTurn) -> AgentTurn:
        expected = len(self.turns)
        if turn.index != expected:
            raise ValueError(f"Turn index {turn.index} breaks dense ordering (expected {expected})")
        self.turns.append(turn)
        self.updated_at = utc_now()
        return turn

    @property
    def last_turn(self) -> AgentTurn | None:
        return self.turns[-1] if self.turns else None


__all__ = [
    "ACTION_NAMES",
    "ActionName",
    "AgentAction",
    "AgentState",
    "AgentTurn",
    "FinishAction",
    "ModelDecision",
    "MultiToolCallAction",
    "NodeState",
    "PlanAction",
    "ReasoningChain",
    "ReasoningStep",
    "ReasoningTree",
    "RetryAction",
    "StepType",
    "THOUGHT_TYPES",
    "ThoughtNode",
    "ThoughtType",
    "ToolCallAction",
    "ToolCallRequest",
    "ToolCallSpec",
    "ToolExecutionResult",
    "clamp01",
]
