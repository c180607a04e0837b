"""Tests for LLMCommunicator: deadlines, chunk events and error turns."""

from __future__ import annotations

import pytest

from conftest import HANG, EventRecorder, ScriptedModelClient, decision

from llm_agent.aggregator import FunctionCall
from llm_agent.communicator import LLMCommunicator
from llm_agent.config import AgentConfig
from llm_agent.errors import LLMEmptyResponseError, LLMRateLimitError, LLMTimeoutError
from llm_agent.events import EventManager
from llm_agent.metrics import InMemoryMetrics, SafeMetrics
from llm_agent.models import AgentState, FinishAction
from llm_agent.status import StatusManager

MESSAGES = [{"role": "user", "content": "hi"}]


def _communicator(
    client: ScriptedModelClient,
    events: EventManager,
    sink: InMemoryMetrics,
    config: AgentConfig | None = None,
) -> LLMCommunicator:
    config = config or AgentConfig()
    return LLMCommunicator(client, config, events, StatusManager(config, events), SafeMetrics(sink))


class TestCallAndParse:
    @pytest.mark.asyncio
    async def test_valid_decision(self, events: EventManager, recorder: EventRecorder, sink: InMemoryMetrics) -> None:
        client = ScriptedModelClient([decision("finish", thoughts="all done", final="42")])
        state = AgentState(agent_id="a", goal="g")
        result = await _communicator(client, events, sink).call_and_parse(MESSAGES, "a", 0, "turn_0", state)
        assert result is not None
        assert isinstance(result.action, FinishAction)
        assert state.turns == []
        completed = recorder.of_type("llm_call_completed")
        assert completed[-1].action == "finish"
        assert sink.counters["llm_call.succeeded"] == 1
        assert sink.counters["tokens.input"] == 10

    @pytest.mark.asyncio
    async def test_chunk_events_carry_display_text(
        self, events: EventManager, recorder: EventRecorder, sink: InMemoryMetrics
    ) -> None:
        client = ScriptedModelClient([decision("plan", thoughts="abc def ghi")], chunk_size=3)
        state = AgentState(agent_id="a", goal="g")
        await _communicator(client, events, sink).call_and_parse(MESSAGES, "a", 0, "turn_0", state)
        chunks = recorder.of_type("llm_chunk_received")
        assert chunks[-1].is_final
        assert chunks[-1].display_text == "abc def ghi"
        assert "".join(c.content for c in chunks).startswith('{"thoughts"')

    @pytest.mark.asyncio
    async def test_invalid_json_appends_error_turn(
        self, events: EventManager, recorder: EventRecorder, sink: InMemoryMetrics
    ) -> None:
        client = ScriptedModelClient(['{"thoughts": "t", "action": "dance", "action_input": {}}'])
        state = AgentState(agent_id="a", goal="g")
        result = await _communicator(client, events, sink).call_and_parse(MESSAGES, "a", 0, "turn_0", state)
        assert result is None
        turn = state.turns[0]
        assert turn.decision is None
        assert turn.tool_result.success is False
        assert turn.tool_result.error == "Invalid LLM JSON: Invalid action: dance"
        assert turn.turn_id == "turn_0"
        assert "Invalid model output" in recorder.status_titles()

    @pytest.mark.asyncio
    async def test_timeout_appends_error_turn(self, events: EventManager, sink: InMemoryMetrics) -> None:
        client = ScriptedModelClient([HANG])
        state = AgentState(agent_id="a", goal="g")
        config = AgentConfig(llm_timeout_seconds=0.05)
        result = await _communicator(client, events, sink, config).call_and_parse(
            MESSAGES, "a", 0, "turn_0", state
        )
        assert result is None
        assert state.turns[0].tool_result.error == "LLM call deadline exceeded after 0.05s"
        assert sink.counters["llm_call.failed"] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", ["", "  \n "])
    async def test_empty_reply_appends_error_turn(
        self, reply: str, events: EventManager, recorder: EventRecorder, sink: InMemoryMetrics
    ) -> None:
        client = ScriptedModelClient([reply])
        state = AgentState(agent_id="a", goal="g")
        result = await _communicator(client, events, sink).call_and_parse(MESSAGES, "a", 0, "turn_0", state)
        assert result is None
        assert state.turns[0].tool_result.error == "Model returned an empty response"
        assert recorder.of_type("llm_call_completed")[-1].error == "Model returned an empty response"

    @pytest.mark.asyncio
    async def test_provider_error_appends_error_turn(self, events: EventManager, sink: InMemoryMetrics) -> None:
        client = ScriptedModelClient([LLMRateLimitError("slow down")])
        state = AgentState(agent_id="a", goal="g")
        result = await _communicator(client, events, sink).call_and_parse(MESSAGES, "a", 0, "turn_0", state)
        assert result is None
        assert state.turns[0].tool_result.error == "LLM call failed: slow down"

    @pytest.mark.asyncio
    async def test_model_status_fields_emitted(
        self, events: EventManager, recorder: EventRecorder, sink: InMemoryMetrics
    ) -> None:
        raw = '{"thoughts": "t", "action": "plan", "action_input": {}, "status_title": "Looking things up", "progress_pct": 30}'
        client = ScriptedModelClient([raw])
        await _communicator(client, events, sink).call_and_parse(
            MESSAGES, "a", 0, "turn_0", AgentState(agent_id="a", goal="g")
        )
        status = recorder.of_type("status_update")[-1]
        assert status.status_title == "Looking things up"
        assert status.progress_pct == 30


class TestRawCalls:
    @pytest.mark.asyncio
    async def test_function_call_returned(self, events: EventManager, sink: InMemoryMetrics) -> None:
        specs = [{"type": "function", "function": {"name": "f", "parameters": {}}}]
        client = ScriptedModelClient([FunctionCall("f", '{"x": 1}')])
        response = await _communicator(client, events, sink).call_with_functions(MESSAGES, specs, "a", 0)
        assert response.function_call == FunctionCall("f", '{"x": 1}')
        assert client.calls[0]["tools"] == specs

    @pytest.mark.asyncio
    async def test_function_call_errors_propagate(self, events: EventManager, sink: InMemoryMetrics) -> None:
        client = ScriptedModelClient([HANG])
        comm = _communicator(client, events, sink, AgentConfig(llm_timeout_seconds=0.01))
        with pytest.raises(LLMTimeoutError):
            await comm.call_with_functions(MESSAGES, [], "a", 0)

    @pytest.mark.asyncio
    async def test_empty_function_response_raises(self, events: EventManager, sink: InMemoryMetrics) -> None:
        client = ScriptedModelClient([""])
        with pytest.raises(LLMEmptyResponseError, match="Model returned an empty response"):
            await _communicator(client, events, sink).call_with_functions(MESSAGES, [], "a", 0)

    @pytest.mark.asyncio
    async def test_streaming_text(self, events: EventManager, sink: InMemoryMetrics) -> None:
        client = ScriptedModelClient(['{"reasoning": "r"}'])
        assert await _communicator(client, events, sink).call_with_streaming(MESSAGES) == '{"reasoning": "r"}'
        assert client.calls[0]["tools"] is None
