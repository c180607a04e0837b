"""Run and step entry points.

Usage:
    from llm_agent import Agent, tool

    @tool(description="Current weather for a city")
    async def get_weather(city: str) -> dict:
        ...

    agent = Agent.from_model("gpt-4o")
    result = await agent.run("user-42", "What's the weather in Paris?", [get_weather])
    print(result.succeeded, result.final_output or result.error)

    # Sync
    result = agent.run_sync("user-42", "What's the weather in Paris?", [get_weather])
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from llm_agent.config import AgentConfig
from llm_agent.errors import MaxTurnsExceededError
from llm_agent.events import (
    EventManager,
    RunCompletedEvent,
    RunStartedEvent,
    StepCompletedEvent,
    StepStartedEvent,
)
from llm_agent.messages import MessageBuilderProtocol
from llm_agent.metrics import MetricsSink, SafeMetrics, ensure_safe
from llm_agent.model_client import LiteLLMModelClient, ModelClient
from llm_agent.models import AgentState
from llm_agent.orchestrator import AgentStepResult, Orchestrator
from llm_agent.state_store import MemoryStateStore, StateStore
from llm_agent.status import StatusManager
from llm_agent.tools import Tool, to_registry

logger = logging.getLogger(__name__)

ToolsArg = Iterable[Any] | Mapping[str, Any] | None


@dataclass
class AgentResult:
    """Top-level outcome of a run. ``error`` is set exactly when ``succeeded`` is False."""

    succeeded: bool
    state: AgentState
    final_output: str | None = None
    error: str | None = None


def last_tool_error(state: AgentState) -> str | None:
    """Error of the most recent failed tool result, single or multi."""
    for turn in reversed(state.turns):
        if turn.tool_result is not None and not turn.tool_result.success and turn.tool_result.error:
            return turn.tool_result.error
        for result in reversed(turn.tool_results or []):
            if not result.success and result.error:
                return result.error
    return None


class Agent:
    def __init__(
        self,
        client: ModelClient,
        *,
        state_store: StateStore | None = None,
        config: AgentConfig | None = None,
        metrics: MetricsSink | SafeMetrics | None = None,
        events: EventManager | None = None,
        message_builder: MessageBuilderProtocol | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or AgentConfig()
        self.events = events or EventManager()
        self.status = StatusManager(self.config, self.events)
        self.metrics = ensure_safe(metrics)
        self.state_store: StateStore = state_store or MemoryStateStore()
        self.orchestrator = Orchestrator(
            client,
            self.config,
            events=self.events,
            status=self.status,
            metrics=self.metrics,
            message_builder=message_builder,
            rng=rng,
        )

    @classmethod
    def from_model(cls, model: str, *, config: AgentConfig | None = None, **kwargs: Any) -> "Agent":
        """Agent over ``litellm`` for any model string litellm routes."""
        return cls(LiteLLMModelClient(model), config=config, **kwargs)

    # ------------------------------------------------------------------
    # State persistence
    # ------------------------------------------------------------------

    async def _load(self, agent_id: str, goal: str) -> AgentState:
        t0 = time.monotonic()
        state = await self.state_store.load(agent_id)
        self.metrics.record_state_store_operation(agent_id, "load", (time.monotonic() - t0) * 1000)
        if state is None:
            logger.debug("No stored state for %s; starting fresh", agent_id)
            return AgentState(agent_id=agent_id, goal=goal)
        if not state.goal.strip():
            state.goal = goal
        return state

    async def _save(self, state: AgentState) -> None:
        t0 = time.monotonic()
        await self.state_store.save(state.agent_id, state)
        self.metrics.record_state_store_operation(state.agent_id, "save", (time.monotonic() - t0) * 1000)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def step(self, agent_id: str, goal: str, tools: ToolsArg) -> AgentStepResult:
        """Execute exactly one turn and persist the resulting state."""
        state = await self._load(agent_id, goal)
        registry = to_registry(tools)
        result = await self.orchestrator.step(state, registry)
        await self._save(state)
        return result

    async def run(self, agent_id: str, goal: str, tools: ToolsArg) -> AgentResult:
        """Drive turns until ``finish``, a stop, or the turn budget runs out.

        Never raises for model or tool failures; they end up in
        ``AgentResult.error``. Cancellation propagates.
        """
        logger.info("Starting agent run for %s", agent_id)
        t_run = time.monotonic()
        self.events.emit(RunStartedEvent(agent_id=agent_id, goal=goal))
        self.status.emit_status(agent_id, "Starting agent run", f"Goal: {goal}", "Initializing tools and state", 0)

        state = await self._load(agent_id, goal)
        registry: dict[str, Tool] = to_registry(tools)
        max_turns = self.config.max_turns

        for i in range(max_turns):
            progress = min(100, i * 100 // max_turns)
            turn_index = len(state.turns)
            self.status.emit_status(
                agent_id,
                "Processing step",
                f"Turn {i + 1} of {max_turns}",
                "Analyzing goal and history",
                progress,
                turn_index=turn_index,
            )
            self.events.emit(StepStartedEvent(agent_id=agent_id, turn_index=turn_index))

            t_step = time.monotonic()
            step = await self.orchestrator.step(state, registry)
            await self._save(state)

            self.metrics.record_step_duration(agent_id, turn_index, (time.monotonic() - t_step) * 1000)
            self.metrics.record_step_completion(
                agent_id,
                len(state.turns),
                step.final_output is not None or step.continue_run,
                step.tool_result is not None or bool(step.multi_tool_results),
                "StepError" if step.error else None,
            )
            self.events.emit(
                StepCompletedEvent(
                    agent_id=agent_id,
                    turn_index=turn_index,
                    continue_run=step.continue_run,
                    executed_tool=step.executed_tool,
                    final_output=step.final_output,
                    error=step.error,
                )
            )
            if step.error:
                logger.warning("Step %d for %s encountered error: %s", turn_index, agent_id, step.error)
                self.status.emit_status(
                    agent_id,
                    "Step encountered error",
                    step.error,
                    "Will attempt to recover",
                    progress,
                    turn_index=turn_index,
                )

            if not step.continue_run:
                succeeded = step.final_output is not None
                error = None if succeeded else step.error or "Stopped without final output"
                logger.info("Agent run for %s stopped after %d steps (succeeded=%s)", agent_id, i + 1, succeeded)
                return self._complete(state, succeeded, step.final_output, error, i + 1, t_run)

        error = str(MaxTurnsExceededError(max_turns, last_tool_error(state)))
        logger.warning("Agent run for %s failed: %s", agent_id, error)
        return self._complete(state, False, None, error, max_turns, t_run)

    def run_sync(self, agent_id: str, goal: str, tools: ToolsArg) -> AgentResult:
        """Blocking ``run`` for callers without an event loop."""
        return asyncio.run(self.run(agent_id, goal, tools))

    def _complete(
        self,
        state: AgentState,
        succeeded: bool,
        final_output: str | None,
        error: str | None,
        total_turns: int,
        t_run: float,
    ) -> AgentResult:
        agent_id = state.agent_id
        self.status.emit_status(
            agent_id,
            "Task completed successfully" if succeeded else "Task failed",
            final_output if succeeded else error,
            None,
            100,
            turn_index=len(state.turns),
        )
        self.metrics.record_run_duration(agent_id, (time.monotonic() - t_run) * 1000, total_turns)
        self.metrics.record_run_completion(
            agent_id, succeeded, total_turns, None if succeeded else "RunFailed"
        )
        self.metrics.record_response_quality(agent_id, len(final_output or ""), final_output is not None)
        self.events.emit(
            RunCompletedEvent(
                agent_id=agent_id,
                turn_index=len(state.turns),
                succeeded=succeeded,
                final_output=final_output,
                error=error,
                total_turns=total_turns,
            )
        )
        return AgentResult(succeeded=succeeded, state=state, final_output=final_output, error=error)


__all__ = ["Agent", "AgentResult", "last_tool_error"]
