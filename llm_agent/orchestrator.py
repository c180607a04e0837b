"""Turn state machine: one ``step`` decides, acts and appends exactly one model turn.

Flow of a step::

    reason? -> build messages -> function call | JSON decision -> dispatch -> append

Function calling is tried first when enabled and tools exist. A structured
call is normalized into the same ``ModelDecision`` as free-form JSON; bad
arguments or an unknown tool name become a failed turn. Anything else that
goes wrong on the function path falls back to the JSON path.

After a tool failure a controller ``retry`` turn is appended with a hint;
when the loop detector sees the same failing call repeated it is followed by
a stronger loop-breaker turn.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Mapping

from llm_agent.aggregator import LLMResponse
from llm_agent.communicator import LLMCommunicator
from llm_agent.config import AgentConfig
from llm_agent.dedup import find_reusable_result, policy_for
from llm_agent.errors import FunctionArgumentError, UnknownToolError
from llm_agent.events import EventManager
from llm_agent.foundation import hash_tool_call, new_turn_id
from llm_agent.loop_detector import LoopDetector
from llm_agent.messages import MessageBuilder, MessageBuilderProtocol
from llm_agent.metrics import SafeMetrics, ensure_safe
from llm_agent.model_client import ModelClient
from llm_agent.models import (
    AgentState,
    AgentTurn,
    ModelDecision,
    MultiToolCallAction,
    RetryAction,
    ToolCallAction,
    ToolCallRequest,
    ToolExecutionResult,
)
from llm_agent.parsing import decision_from_function_call
from llm_agent.reasoning import ReasoningManager, ReasoningResult
from llm_agent.status import StatusManager
from llm_agent.tool_executor import ToolExecutor
from llm_agent.tools import Tool, openai_tool_specs

logger = logging.getLogger(__name__)

REASONING_MARKER = "\n\nReasoning Insights: "
"""Separator between the caller's goal and the latest reasoning conclusion."""

REASONING_EVERY_N_TURNS = 3
RECENT_ACTIONS_FOR_REASONING = 3

RETRY_HINT_THOUGHTS = (
    "Controller: The last tool call failed. Use the TOOL CATALOG and retry with required params."
)
LOOP_BREAKER_THOUGHTS = (
    "Controller: You're repeating the same failing call. Read the validation_error.missing "
    "and adjust parameters or try a different tool."
)
MULTI_TOOL_FAILURE = "One or more tools failed in multi-tool call"


@dataclass
class AgentStepResult:
    """Outcome of one orchestrator step; ``state`` is the mutated agent state."""

    state: AgentState
    continue_run: bool = True
    executed_tool: bool = False
    decision: ModelDecision | None = None
    tool_result: ToolExecutionResult | None = None
    multi_tool_results: list[ToolExecutionResult] | None = None
    final_output: str | None = None
    error: str | None = None


def base_goal(goal: str) -> str:
    """The caller's goal without any appended reasoning conclusion."""
    return goal.split(REASONING_MARKER, 1)[0]


def enhance_goal(goal: str, result: ReasoningResult) -> str:
    if not result.conclusion:
        return goal
    return f"{base_goal(goal)}{REASONING_MARKER}{result.conclusion}"


def build_reasoning_context(state: AgentState) -> str:
    """Short digest of the last few turns handed to the reasoning engines."""
    if not state.turns:
        return ""
    lines = ["Recent Actions:"]
    for turn in state.turns[-RECENT_ACTIONS_FOR_REASONING:]:
        if turn.decision is not None and turn.decision.thoughts:
            lines.append(f"- {turn.decision.thoughts}")
        result = turn.tool_result
        tool = turn.tool_call.tool if turn.tool_call is not None else (result.tool if result else "")
        if result is not None and result.success:
            lines.append(f"- Successfully executed: {tool}")
        elif result is not None:
            lines.append(f"- Failed to execute: {tool} - {result.error}")
    return "\n".join(lines)


def controller_turn(index: int, thoughts: str, summary: str) -> AgentTurn:
    return AgentTurn(
        index=index,
        decision=ModelDecision(thoughts=thoughts, action=RetryAction(summary=summary), action_raw="retry"),
    )


class Orchestrator:
    """Owns the per-turn collaborators; ``step`` is the only entry point that mutates state."""

    def __init__(
        self,
        client: ModelClient,
        config: AgentConfig | None = None,
        *,
        events: EventManager | None = None,
        status: StatusManager | None = None,
        metrics: SafeMetrics | None = None,
        message_builder: MessageBuilderProtocol | None = None,
        communicator: LLMCommunicator | None = None,
        tool_executor: ToolExecutor | None = None,
        loop_detector: LoopDetector | None = None,
        reasoning: ReasoningManager | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or AgentConfig()
        self.events = events or EventManager()
        self.status = status or StatusManager(self.config, self.events)
        self.metrics = ensure_safe(metrics)
        self.message_builder = message_builder or MessageBuilder(self.config)
        self.communicator = communicator or LLMCommunicator(
            client, self.config, self.events, self.status, self.metrics
        )
        self.tool_executor = tool_executor or ToolExecutor(self.config, self.events, self.status, self.metrics)
        self.loop_detector = loop_detector or LoopDetector(self.config)
        self.reasoning = reasoning or ReasoningManager(
            self.communicator, self.config, self.status, self.metrics, rng=rng
        )

    # ------------------------------------------------------------------
    # Step
    # ------------------------------------------------------------------

    async def step(self, state: AgentState, tools: Mapping[str, Tool]) -> AgentStepResult:
        turn_index = len(state.turns)
        turn_id = new_turn_id(turn_index)
        agent_id = state.agent_id

        if self.should_reason(state, turn_index):
            reasoning = await self.perform_reasoning(state, tools)
            if reasoning.success:
                self.update_state_with_reasoning(state, reasoning)
                state.goal = enhance_goal(state.goal, reasoning)

        messages = self.message_builder.build_messages(state, tools)
        self.status.emit_status(
            agent_id,
            "Analyzing task",
            "Processing goal and history",
            "Preparing to make decision",
            turn_index=turn_index,
        )

        specs = openai_tool_specs(tools) if self.config.use_function_calling else []
        decision: ModelDecision | None
        if specs:
            try:
                response = await self.communicator.call_with_functions(messages, specs, agent_id, turn_index)
            except Exception as exc:
                logger.warning("Function calling failed, falling back to JSON: %s", exc)
                decision = await self.communicator.call_and_parse(messages, agent_id, turn_index, turn_id, state)
            else:
                if response.function_call is not None:
                    return await self._process_function_call(response, state, tools, turn_index, turn_id)
                logger.debug("No function call returned; parsing content as a JSON decision")
                decision = self.communicator.parse_json_response(response.content, turn_index, turn_id, state)
        else:
            decision = await self.communicator.call_and_parse(messages, agent_id, turn_index, turn_id, state)

        if decision is not None:
            return await self.process_action(decision, state, tools, turn_index, turn_id)

        # The communicator recorded the failure as the last turn.
        last = state.last_turn
        if last is not None and last.tool_result is not None and not last.tool_result.success:
            return AgentStepResult(state=state, tool_result=last.tool_result, error=last.tool_result.error)
        return AgentStepResult(state=state)

    async def _process_function_call(
        self,
        response: LLMResponse,
        state: AgentState,
        tools: Mapping[str, Tool],
        turn_index: int,
        turn_id: str,
    ) -> AgentStepResult:
        call = response.function_call
        assert call is not None
        logger.info("Function call received: %s", call.name)
        try:
            decision = decision_from_function_call(call, response.content)
            if call.name not in tools:
                raise UnknownToolError(call.name, list(tools))
        except FunctionArgumentError as exc:
            return self.handle_function_argument_error(state, call.name, turn_index, turn_id, str(exc))
        except UnknownToolError as exc:
            return self.handle_unknown_tool_error(state, call.name, turn_index, turn_id, str(exc))

        self.status.emit_status(
            state.agent_id, "Tool call detected", f"Calling {call.name}", "Executing tool", turn_index=turn_index
        )
        return await self.process_tool_call(decision, state, tools, turn_index, turn_id)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def process_action(
        self,
        decision: ModelDecision,
        state: AgentState,
        tools: Mapping[str, Tool],
        turn_index: int,
        turn_id: str,
    ) -> AgentStepResult:
        action = decision.action
        if isinstance(action, ToolCallAction):
            return await self.process_tool_call(decision, state, tools, turn_index, turn_id)
        if isinstance(action, MultiToolCallAction):
            return await self.process_multi_tool_call(decision, state, tools, turn_index, turn_id)

        state.append_turn(AgentTurn(index=turn_index, turn_id=turn_id, decision=decision))
        agent_id = state.agent_id
        if action.kind == "plan":
            logger.debug("Model chose to plan")
            self.status.emit_status(
                agent_id, "Planning", "Creating execution plan", "Will execute planned steps", turn_index=turn_index
            )
            return AgentStepResult(state=state, decision=decision)
        if action.kind == "finish":
            logger.info("Agent %s finished", agent_id)
            self.status.emit_status(
                agent_id, "Finalizing", "Preparing final answer", "Task completion", 100, turn_index=turn_index
            )
            return AgentStepResult(state=state, continue_run=False, decision=decision, final_output=action.final)

        logger.debug("Model chose to retry")
        self.status.emit_status(
            agent_id,
            "Retrying",
            "Attempting previous action again",
            "Will retry with adjustments",
            turn_index=turn_index,
        )
        return AgentStepResult(state=state, decision=decision)

    async def process_tool_call(
        self,
        decision: ModelDecision,
        state: AgentState,
        tools: Mapping[str, Tool],
        turn_index: int,
        turn_id: str,
    ) -> AgentStepResult:
        action = decision.action
        assert isinstance(action, ToolCallAction)
        tool_name = action.tool.strip()
        params = dict(action.params)
        call_hash = hash_tool_call(tool_name, params)
        request = ToolCallRequest(tool=tool_name, params=params, turn_id=call_hash)

        prior = self._reusable_result(state, tool_name, call_hash, tools)
        if prior is not None:
            state.append_turn(
                AgentTurn(index=turn_index, turn_id=turn_id, decision=decision, tool_call=request, tool_result=prior)
            )
            return AgentStepResult(state=state, executed_tool=True, decision=decision, tool_result=prior)

        result = await self._execute(state, tool_name, params, tools, turn_index)
        state.append_turn(
            AgentTurn(index=turn_index, turn_id=turn_id, decision=decision, tool_call=request, tool_result=result)
        )
        self.add_retry_hints_and_loop_breaker(state, result, tool_name, params)

        # A single-turn run has no later turn in which to recover.
        stop_now = not result.success and self.config.max_turns <= 1
        return AgentStepResult(
            state=state,
            continue_run=not stop_now,
            executed_tool=True,
            decision=decision,
            tool_result=result,
            error=result.error if stop_now else None,
        )

    async def process_multi_tool_call(
        self,
        decision: ModelDecision,
        state: AgentState,
        tools: Mapping[str, Tool],
        turn_index: int,
        turn_id: str,
    ) -> AgentStepResult:
        action = decision.action
        assert isinstance(action, MultiToolCallAction)
        logger.info(
            "Processing multi-tool call with %d tools: %s",
            len(action.tool_calls),
            ", ".join(c.tool for c in action.tool_calls),
        )

        requests: list[ToolCallRequest] = []
        results: list[ToolExecutionResult] = []
        failures: list[tuple[str, dict[str, Any], ToolExecutionResult]] = []
        for spec in action.tool_calls:
            tool_name = spec.tool.strip()
            params = dict(spec.params)
            call_hash = hash_tool_call(tool_name, params)
            requests.append(ToolCallRequest(tool=tool_name, params=params, turn_id=call_hash))

            prior = self._reusable_result(state, tool_name, call_hash, tools)
            if prior is not None:
                results.append(prior)
                continue
            result = await self._execute(state, tool_name, params, tools, turn_index)
            results.append(result)
            if not result.success:
                failures.append((tool_name, params, result))

        state.append_turn(
            AgentTurn(
                index=turn_index,
                turn_id=turn_id,
                decision=decision,
                tool_calls=requests,
                tool_results=results,
            )
        )
        for tool_name, params, result in failures:
            self.add_retry_hints_and_loop_breaker(state, result, tool_name, params)

        succeeded = sum(1 for r in results if r.success)
        logger.info("Multi-tool call completed: %d/%d tools succeeded", succeeded, len(results))
        stop_now = succeeded < len(results) and self.config.max_turns <= 1
        return AgentStepResult(
            state=state,
            continue_run=not stop_now,
            executed_tool=True,
            decision=decision,
            multi_tool_results=results,
            error=MULTI_TOOL_FAILURE if stop_now else None,
        )

    def _reusable_result(
        self,
        state: AgentState,
        tool_name: str,
        call_hash: str,
        tools: Mapping[str, Tool],
    ) -> ToolExecutionResult | None:
        policy = policy_for(tool_name, tools, self.config)
        if not policy.allowed:
            return None
        prior = find_reusable_result(state.turns, call_hash, policy.ttl_seconds)
        if prior is not None:
            logger.info("Reusing existing successful tool result for id %s", call_hash)
            self.metrics.record_dedup_event(state.agent_id, tool_name, True)
        return prior

    async def _execute(
        self,
        state: AgentState,
        tool_name: str,
        params: dict[str, Any],
        tools: Mapping[str, Tool],
        turn_index: int,
    ) -> ToolExecutionResult:
        self.metrics.record_dedup_event(state.agent_id, tool_name, False)
        result = await self.tool_executor.execute(tool_name, params, tools, state.agent_id, turn_index)
        self.loop_detector.record_tool_call(state.agent_id, tool_name, params, result.success)
        return result

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def add_retry_hints_and_loop_breaker(
        self,
        state: AgentState,
        result: ToolExecutionResult,
        tool_name: str,
        params: Mapping[str, Any],
    ) -> None:
        if result.success:
            return
        agent_id = state.agent_id
        streak = self.loop_detector.consecutive_tool_failures(agent_id, tool_name)
        self.status.emit_status(
            agent_id,
            "Adding retry hint",
            f"{tool_name} failed ({streak} consecutive), providing guidance",
            "Will retry with corrected parameters",
            turn_index=len(state.turns),
        )
        state.append_turn(
            controller_turn(
                len(state.turns),
                RETRY_HINT_THOUGHTS,
                f"Retry {tool_name} including all required params.",
            )
        )

        if not self.loop_detector.detect_repeated_failures(agent_id, tool_name, params):
            return
        threshold = self.config.consecutive_failure_threshold
        logger.warning("Loop-breaker triggered for %s with repeated failures", tool_name)
        self.status.emit_status(
            agent_id,
            "Loop breaker triggered",
            "Repeated failures detected",
            "Will try different approach",
            turn_index=len(state.turns),
        )
        self.metrics.record_loop_detection(agent_id, tool_name, threshold)
        state.append_turn(
            controller_turn(
                len(state.turns),
                LOOP_BREAKER_THOUGHTS,
                f"Stop repeating the same failing call to {tool_name}. Check validation_error details "
                "and try different parameters or a different tool.",
            )
        )

    def _record_call_error(
        self,
        state: AgentState,
        tool_name: str | None,
        turn_index: int,
        turn_id: str,
        message: str,
    ) -> AgentStepResult:
        name = tool_name or "unknown"
        result = ToolExecutionResult(success=False, error=message, tool=name, turn_id=turn_id)
        state.append_turn(
            AgentTurn(
                index=turn_index,
                turn_id=turn_id,
                tool_call=ToolCallRequest(tool=name, params={}, turn_id=turn_id),
                tool_result=result,
            )
        )
        return AgentStepResult(state=state, executed_tool=True, tool_result=result)

    def handle_function_argument_error(
        self,
        state: AgentState,
        tool_name: str | None,
        turn_index: int,
        turn_id: str,
        message: str,
    ) -> AgentStepResult:
        logger.warning("Function argument parsing failed: %s", message)
        self.status.emit_status(
            state.agent_id,
            "Function call error",
            "Invalid function arguments",
            "Will retry with corrected parameters",
            turn_index=turn_index,
        )
        return self._record_call_error(state, tool_name, turn_index, turn_id, message)

    def handle_unknown_tool_error(
        self,
        state: AgentState,
        tool_name: str | None,
        turn_index: int,
        turn_id: str,
        message: str,
    ) -> AgentStepResult:
        logger.warning("Unknown tool in function call: %s", message)
        self.status.emit_status(
            state.agent_id, "Tool not found", message, "Will try different approach", turn_index=turn_index
        )
        return self._record_call_error(state, tool_name, turn_index, turn_id, message)

    # ------------------------------------------------------------------
    # Reasoning hooks
    # ------------------------------------------------------------------

    def should_reason(self, state: AgentState, turn_index: int) -> bool:
        """On the first turn, and on every third turn that follows a failed result."""
        if self.config.reasoning_type == "none":
            return False
        if turn_index == 0:
            return True
        last = state.last_turn
        return (
            last is not None
            and last.tool_result is not None
            and not last.tool_result.success
            and turn_index % REASONING_EVERY_N_TURNS == 0
        )

    async def perform_reasoning(self, state: AgentState, tools: Mapping[str, Tool]) -> ReasoningResult:
        try:
            return await self.reasoning.reason(base_goal(state.goal), build_reasoning_context(state), tools)
        except Exception as exc:
            logger.warning("Reasoning failed: %s", exc)
            return ReasoningResult(success=False, error=str(exc))

    def update_state_with_reasoning(self, state: AgentState, result: ReasoningResult) -> None:
        reported = result.metadata.get("reasoning_type")
        if isinstance(reported, str) and reported:
            state.reasoning_type = reported
        elif result.chain is not None and result.tree is not None:
            state.reasoning_type = "hybrid"
        elif result.chain is not None:
            state.reasoning_type = "chain_of_thought"
        elif result.tree is not None:
            state.reasoning_type = "tree_of_thoughts"
        else:
            state.reasoning_type = "hybrid"
        state.current_chain = result.chain
        state.current_tree = result.tree
        state.reasoning_metadata.update(result.metadata)


__all__ = [
    "AgentStepResult",
    "Orchestrator",
    "base_goal",
    "build_reasoning_context",
    "controller_turn",
    "enhance_goal",
]
