"""Model calls with a deadline, live chunk events and decision parsing.

Every request goes through ``ModelClient.stream``. Chunks are forwarded as
``llm_chunk_received`` events, each carrying the displayable thoughts text
recovered so far by a ``ThoughtsExtractor``, and then aggregated into one
``LLMResponse``.

Failures of the free-form JSON path never raise: they are recorded on the
state as a failed turn so the next prompt shows the model what went wrong.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from llm_agent.aggregator import LLMResponse, LLMStreamChunk, collect_chunks
from llm_agent.config import AgentConfig
from llm_agent.errors import DecisionParseError, LLMEmptyResponseError, LLMTimeoutError
from llm_agent.events import (
    EventManager,
    LLMCallCompletedEvent,
    LLMCallStartedEvent,
    LLMChunkReceivedEvent,
)
from llm_agent.metrics import SafeMetrics, ensure_safe
from llm_agent.model_client import ModelClient
from llm_agent.models import AgentState, AgentTurn, ModelDecision, ToolExecutionResult
from llm_agent.parsing import parse_decision
from llm_agent.status import StatusManager
from llm_agent.streaming import ThoughtsExtractor

logger = logging.getLogger(__name__)


def error_turn(turn_index: int, turn_id: str, error: str) -> AgentTurn:
    """A turn with no decision and a failed result carrying ``error``."""
    return AgentTurn(
        index=turn_index,
        turn_id=turn_id,
        tool_result=ToolExecutionResult(success=False, error=error, turn_id=turn_id),
    )


def require_output(response: LLMResponse) -> LLMResponse:
    """Raise ``LLMEmptyResponseError`` when a decision call produced nothing usable."""
    if not response.has_function_call and not response.content.strip():
        raise LLMEmptyResponseError("Model returned an empty response")
    return response


class LLMCommunicator:
    def __init__(
        self,
        client: ModelClient,
        config: AgentConfig,
        events: EventManager,
        status: StatusManager,
        metrics: SafeMetrics | None = None,
        *,
        model_name: str = "",
    ) -> None:
        self._client = client
        self._config = config
        self._events = events
        self._status = status
        self._metrics = ensure_safe(metrics)
        self._model_name = model_name or str(getattr(client, "model", "") or "")

    # ------------------------------------------------------------------
    # Raw calls
    # ------------------------------------------------------------------

    async def _call(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None,
        agent_id: str,
        turn_index: int,
    ) -> LLMResponse:
        """Stream one request under ``llm_timeout_seconds``.

        Raises:
            LLMTimeoutError: the deadline passed before the stream finished.
            asyncio.CancelledError: propagated untouched.
        """
        extractor = ThoughtsExtractor()
        shown: list[str] = []

        def on_chunk(chunk: LLMStreamChunk) -> None:
            if chunk.content:
                shown.append(extractor.feed(chunk.content))
            self._events.emit(
                LLMChunkReceivedEvent(
                    agent_id=agent_id,
                    turn_index=turn_index,
                    content=chunk.content,
                    display_text="".join(shown),
                    is_final=chunk.is_final,
                )
            )

        timeout = self._config.llm_timeout_seconds
        logger.debug("Calling model with timeout %ss (%d messages)", timeout, len(messages))
        t0 = time.monotonic()
        try:
            response = await asyncio.wait_for(
                collect_chunks(self._client.stream(messages, tools=tools), on_chunk),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            elapsed_ms = (time.monotonic() - t0) * 1000
            self._metrics.record_llm_call(
                agent_id, turn_index, False, self._model_name, elapsed_ms, "LLMTimeoutError"
            )
            raise LLMTimeoutError(f"LLM call deadline exceeded after {timeout:g}s", original=exc) from exc
        except Exception as exc:
            elapsed_ms = (time.monotonic() - t0) * 1000
            self._metrics.record_llm_call(
                agent_id, turn_index, False, self._model_name, elapsed_ms, type(exc).__name__
            )
            raise

        elapsed_ms = (time.monotonic() - t0) * 1000
        self._metrics.record_llm_call(agent_id, turn_index, True, self._model_name, elapsed_ms)
        if response.usage is not None:
            self._metrics.record_token_usage(
                agent_id,
                turn_index,
                response.usage.input_tokens,
                response.usage.output_tokens,
                response.usage.model or self._model_name,
            )
        logger.debug(
            "Model call finished in %.0fms (%d chars, function_call=%s)",
            elapsed_ms,
            len(response.content),
            response.has_function_call,
        )
        return response

    async def call_with_functions(
        self,
        messages: list[dict[str, Any]],
        function_specs: list[dict[str, Any]],
        agent_id: str,
        turn_index: int,
    ) -> LLMResponse:
        """Request with tool specs attached. Errors propagate to the caller.

        Raises:
            LLMEmptyResponseError: neither text nor a function call came back.
        """
        self._events.emit(LLMCallStartedEvent(agent_id=agent_id, turn_index=turn_index))
        logger.debug("Attempting function calling with %d functions", len(function_specs))
        response = require_output(
            await self._call(messages, tools=function_specs, agent_id=agent_id, turn_index=turn_index)
        )
        self._events.emit(LLMCallCompletedEvent(agent_id=agent_id, turn_index=turn_index))
        return response

    async def call_with_streaming(
        self,
        messages: list[dict[str, Any]],
        agent_id: str = "reasoning",
        turn_index: int = 0,
    ) -> str:
        """Plain text request used by the reasoning engines."""
        self._events.emit(LLMCallStartedEvent(agent_id=agent_id, turn_index=turn_index))
        response = await self._call(messages, tools=None, agent_id=agent_id, turn_index=turn_index)
        self._events.emit(LLMCallCompletedEvent(agent_id=agent_id, turn_index=turn_index))
        return response.content

    # ------------------------------------------------------------------
    # Free-form JSON decisions
    # ------------------------------------------------------------------

    async def call_and_parse(
        self,
        messages: list[dict[str, Any]],
        agent_id: str,
        turn_index: int,
        turn_id: str,
        state: AgentState,
    ) -> ModelDecision | None:
        """Call the model and parse its JSON decision.

        Returns ``None`` after appending an error turn to ``state`` when the
        call fails or yields no valid decision.
        """
        self._events.emit(LLMCallStartedEvent(agent_id=agent_id, turn_index=turn_index))
        try:
            response = require_output(
                await self._call(messages, tools=None, agent_id=agent_id, turn_index=turn_index)
            )
        except (LLMTimeoutError, LLMEmptyResponseError) as exc:
            err = str(exc)
            logger.error(err)
            self._events.emit(LLMCallCompletedEvent(agent_id=agent_id, turn_index=turn_index, error=err))
            state.append_turn(error_turn(turn_index, turn_id, err))
            return None
        except Exception as exc:
            err = f"LLM call failed: {exc}"
            logger.error(err)
            self._events.emit(LLMCallCompletedEvent(agent_id=agent_id, turn_index=turn_index, error=err))
            state.append_turn(error_turn(turn_index, turn_id, err))
            return None
        return self.parse_json_response(response.content, turn_index, turn_id, state)

    def parse_json_response(
        self,
        raw: str,
        turn_index: int,
        turn_id: str,
        state: AgentState,
    ) -> ModelDecision | None:
        try:
            decision = parse_decision(raw, self._config)
        except DecisionParseError as exc:
            err = f"Invalid LLM JSON: {exc}"
            logger.error(err)
            self._status.emit_status(
                state.agent_id,
                "Invalid model output",
                "JSON parsing failed",
                "Will retry with corrected format",
                turn_index=turn_index,
            )
            self._events.emit(
                LLMCallCompletedEvent(agent_id=state.agent_id, turn_index=turn_index, error=err)
            )
            state.append_turn(error_turn(turn_index, turn_id, err))
            return None

        if decision.status_title:
            self._status.emit_status(
                state.agent_id,
                decision.status_title,
                decision.status_details,
                decision.next_step_hint,
                decision.progress_pct,
                turn_index=turn_index,
            )
        self._events.emit(
            LLMCallCompletedEvent(agent_id=state.agent_id, turn_index=turn_index, action=decision.kind)
        )
        return decision


__all__ = ["LLMCommunicator", "error_turn", "require_output"]
