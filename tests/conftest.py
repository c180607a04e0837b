"""Shared fixtures: a scripted model client that replays canned stream chunks."""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Callable

import pytest

from llm_agent.aggregator import FunctionCall, LLMStreamChunk, Usage
from llm_agent.config import AgentConfig
from llm_agent.events import AgentEventBase, EventManager
from llm_agent.metrics import InMemoryMetrics, SafeMetrics
from llm_agent.status import StatusManager

HANG = object()
"""Script entry that makes the stream block until cancelled."""


class ScriptedModelClient:
    """Replays a list of responses, one per ``stream`` call.

    Entries: ``str`` (streamed content), ``FunctionCall``, ``(str, FunctionCall)``,
    an ``Exception`` instance (raised), or ``HANG``. A ``responder`` callable
    receiving ``(messages, tools)`` may be given instead of a list.
    """

    model = "scripted-model"

    def __init__(
        self,
        script: list[Any] | None = None,
        *,
        responder: Callable[[list[dict[str, Any]], Any], Any] | None = None,
        chunk_size: int = 7,
    ) -> None:
        self.script = list(script or [])
        self.responder = responder
        self.chunk_size = chunk_size
        self.calls: list[dict[str, Any]] = []

    def _next(self, messages: list[dict[str, Any]], tools: Any) -> Any:
        if self.responder is not None:
            return self.responder(messages, tools)
        if not self.script:
            raise AssertionError("ScriptedModelClient ran out of scripted responses")
        return self.script.pop(0)

    async def stream(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
        **params: Any,
    ) -> AsyncIterator[LLMStreamChunk]:
        self.calls.append({"messages": messages, "tools": tools, "params": params})
        entry = self._next(messages, tools)
        if entry is HANG:
            await asyncio.sleep(3600)
        if isinstance(entry, Exception):
            raise entry

        content, call = "", None
        if isinstance(entry, str):
            content = entry
        elif isinstance(entry, FunctionCall):
            call = entry
        elif isinstance(entry, tuple):
            content, call = entry
        for i in range(0, len(content), self.chunk_size):
            yield LLMStreamChunk(content=content[i : i + self.chunk_size])
        yield LLMStreamChunk(
            is_final=True,
            finish_reason="tool_calls" if call else "stop",
            function_call=call,
            usage=Usage(input_tokens=10, output_tokens=5, model=self.model),
            response_type="function_call" if call else "text",
        )


def decision(action: str, thoughts: str = "thinking", **action_input: Any) -> str:
    """Serialized decision in the model output contract."""
    return json.dumps({"thoughts": thoughts, "action": action, "action_input": action_input})


def route_by_prompt(routes: dict[str, Any]) -> Callable[[list[dict[str, Any]], Any], Any]:
    """Responder choosing the reply whose key appears in the last message."""

    def respond(messages: list[dict[str, Any]], tools: Any) -> Any:
        text = messages[-1]["content"]
        for needle, reply in routes.items():
            if needle in text:
                return reply() if callable(reply) else reply
        raise AssertionError(f"No scripted route for prompt: {text[:80]!r}")

    return respond


class EventRecorder:
    def __init__(self, events: EventManager) -> None:
        self.events: list[AgentEventBase] = []
        events.subscribe_all(self.events.append)

    def of_type(self, event_type: str) -> list[Any]:
        return [e for e in self.events if e.event_type == event_type]

    def status_titles(self) -> list[str]:
        return [e.status_title for e in self.of_type("status_update")]


@pytest.fixture()
def config() -> AgentConfig:
    return AgentConfig()


@pytest.fixture()
def events() -> EventManager:
    return EventManager()


@pytest.fixture()
def recorder(events: EventManager) -> EventRecorder:
    return EventRecorder(events)


@pytest.fixture()
def sink() -> InMemoryMetrics:
    return InMemoryMetrics()


@pytest.fixture()
def metrics(sink: InMemoryMetrics) -> SafeMetrics:
    return SafeMetrics(sink)


@pytest.fixture()
def status(config: AgentConfig, events: EventManager) -> StatusManager:
    return StatusManager(config, events)
