"""Tests for ToolExecutor: the failure taxonomy, events and metrics."""

from __future__ import annotations

import asyncio

import pytest

from conftest import EventRecorder

from llm_agent.config import AgentConfig
from llm_agent.events import EventManager
from llm_agent.foundation import hash_tool_call
from llm_agent.metrics import InMemoryMetrics, SafeMetrics
from llm_agent.status import StatusManager
from llm_agent.tool_executor import ToolExecutor
from llm_agent.tools import to_registry, tool


@tool
async def get_weather(city: str) -> dict:
    return {"city": city, "temp": 21}


@tool
async def slow(seconds: float) -> str:
    await asyncio.sleep(seconds)
    return "late"


@tool
def explode() -> None:
    raise RuntimeError("boom")


TOOLS = to_registry([get_weather, slow, explode])


def _executor(
    events: EventManager, sink: InMemoryMetrics, config: AgentConfig | None = None
) -> ToolExecutor:
    config = config or AgentConfig()
    return ToolExecutor(config, events, StatusManager(config, events), SafeMetrics(sink))


class TestExecute:
    @pytest.mark.asyncio
    async def test_success(self, events: EventManager, recorder: EventRecorder, sink: InMemoryMetrics) -> None:
        result = await _executor(events, sink).execute("get_weather", {"city": "Paris"}, TOOLS, "a", 0)
        assert result.success
        assert result.output == {"city": "Paris", "temp": 21}
        assert result.turn_id == hash_tool_call("get_weather", {"city": "Paris"})
        assert result.params == {"city": "Paris"}
        assert result.execution_time_ms is not None
        assert [e.event_type for e in recorder.events if e.event_type.startswith("tool_call")] == [
            "tool_call_started",
            "tool_call_completed",
        ]
        assert sink.counters["tool_call.succeeded:get_weather"] == 1

    @pytest.mark.asyncio
    async def test_validation_error(self, events: EventManager, recorder: EventRecorder, sink: InMemoryMetrics) -> None:
        result = await _executor(events, sink).execute("get_weather", {}, TOOLS, "a", 0)
        assert not result.success
        assert result.output == {"type": "validation_error", "missing": ["city"], "errors": None}
        completed = recorder.of_type("tool_call_completed")[0]
        assert completed.missing == ["city"]
        assert "Validation error" in recorder.status_titles()

    @pytest.mark.asyncio
    async def test_timeout(self, events: EventManager, sink: InMemoryMetrics) -> None:
        config = AgentConfig(tool_timeout_seconds=0.01)
        result = await _executor(events, sink, config).execute("slow", {"seconds": 5}, TOOLS, "a", 0)
        assert not result.success
        assert result.output == {"type": "timeout"}
        assert result.error == "Tool slow call deadline exceeded after 0.01s"

    @pytest.mark.asyncio
    async def test_tool_exception(self, events: EventManager, sink: InMemoryMetrics) -> None:
        result = await _executor(events, sink).execute("explode", {}, TOOLS, "a", 0)
        assert not result.success
        assert result.error == "boom"
        assert result.output == {"type": "tool_error"}
        assert sink.counters["tool_call.failed:explode"] == 1

    @pytest.mark.asyncio
    async def test_unknown_tool(self, events: EventManager, recorder: EventRecorder, sink: InMemoryMetrics) -> None:
        result = await _executor(events, sink).execute("nope", {}, TOOLS, "a", 0)
        assert not result.success
        assert result.error.startswith("Tool 'nope' not found.")
        assert "Tool not found" in recorder.status_titles()

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, events: EventManager, sink: InMemoryMetrics) -> None:
        task = asyncio.ensure_future(_executor(events, sink).execute("slow", {"seconds": 5}, TOOLS, "a", 0))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
