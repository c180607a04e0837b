"""Typed agent lifecycle events and a subscribe/emit manager.

Handlers are plain synchronous callables. A handler that raises is logged
and skipped; it never changes the outcome of a run.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Annotated, Any, Callable, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from llm_agent.foundation import new_event_id, now_iso

logger = logging.getLogger(__name__)

EventType = Literal[
    "run_started",
    "step_started",
    "llm_call_started",
    "llm_call_completed",
    "llm_chunk_received",
    "tool_call_started",
    "tool_call_completed",
    "step_completed",
    "run_completed",
    "status_update",
]


class AgentEventBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event_id: str = Field(default_factory=new_event_id, pattern=r"^evt_[A-Za-z0-9._:-]+$")
    event_type: EventType
    timestamp: str = Field(default_factory=now_iso)
    agent_id: str = Field(min_length=1)
    turn_index: int = Field(default=0, ge=0)


class RunStartedEvent(AgentEventBase):
    event_type: Literal["run_started"] = "run_started"
    goal: str = ""


class StepStartedEvent(AgentEventBase):
    event_type: Literal["step_started"] = "step_started"


class LLMCallStartedEvent(AgentEventBase):
    event_type: Literal["llm_call_started"] = "llm_call_started"


class LLMCallCompletedEvent(AgentEventBase):
    event_type: Literal["llm_call_completed"] = "llm_call_completed"
    action: str | None = None
    error: str | None = None


class LLMChunkReceivedEvent(AgentEventBase):
    event_type: Literal["llm_chunk_received"] = "llm_chunk_received"
    content: str = ""
    display_text: str = ""
    is_final: bool = False


class ToolCallStartedEvent(AgentEventBase):
    event_type: Literal["tool_call_started"] = "tool_call_started"
    tool_name: str
    params: dict[str, Any] = Field(default_factory=dict)


class ToolCallCompletedEvent(AgentEventBase):
    event_type: Literal["tool_call_completed"] = "tool_call_completed"
    tool_name: str
    success: bool
    output: Any = None
    error: str | None = None
    execution_time_ms: float = 0.0
    missing: list[str] | None = None
    errors: list[str] | None = None


class StepCompletedEvent(AgentEventBase):
    event_type: Literal["step_completed"] = "step_completed"
    continue_run: bool = False
    executed_tool: bool = False
    final_output: str | None = None
    error: str | None = None


class RunCompletedEvent(AgentEventBase):
    event_type: Literal["run_completed"] = "run_completed"
    succeeded: bool
    final_output: str | None = None
    error: str | None = None
    total_turns: int = 0


class StatusUpdateEvent(AgentEventBase):
    event_type: Literal["status_update"] = "status_update"
    status_title: str
    status_details: str | None = None
    next_step_hint: str | None = None
    progress_pct: int | None = Field(default=None, ge=0, le=100)


AgentEvent = Annotated[
    RunStartedEvent
    | StepStartedEvent
    | LLMCallStartedEvent
    | LLMCallCompletedEvent
    | LLMChunkReceivedEvent
    | ToolCallStartedEvent
    | ToolCallCompletedEvent
    | StepCompletedEvent
    | RunCompletedEvent
    | StatusUpdateEvent,
    Field(discriminator="event_type"),
]

_AGENT_EVENT_ADAPTER: TypeAdapter[AgentEvent] = TypeAdapter(AgentEvent)


def validate_agent_event(payload: Mapping[str, Any]) -> AgentEventBase:
    """Parse one serialized event back into its typed model."""
    return _AGENT_EVENT_ADAPTER.validate_python(dict(payload))


EventHandler = Callable[[AgentEventBase], None]


class EventManager:
    """Fan-out of agent events to subscribed handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._catch_all: list[EventHandler] = []

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        self._catch_all.append(handler)

    def unsubscribe(self, handler: EventHandler, event_type: EventType | None = None) -> None:
        """Remove ``handler`` from one event type, or from everything when ``event_type`` is None."""
        targets = [event_type] if event_type is not None else list(self._handlers)
        for name in targets:
            handlers = self._handlers.get(name, [])
            while handler in handlers:
                handlers.remove(handler)
        if event_type is None:
            while handler in self._catch_all:
                self._catch_all.remove(handler)

    def emit(self, event: AgentEventBase) -> None:
        for handler in [*self._handlers.get(event.event_type, []), *self._catch_all]:
            try:
                handler(event)
            except Exception as exc:
                logger.warning(
                    "%s event handler %r raised: %s",
                    event.event_type,
                    handler,
                    exc,
                )


__all__ = [
    "AgentEvent",
    "AgentEventBase",
    "EventHandler",
    "EventManager",
    "EventType",
    "LLMCallCompletedEvent",
    "LLMCallStartedEvent",
    "LLMChunkReceivedEvent",
    "RunCompletedEvent",
    "RunStartedEvent",
    "StatusUpdateEvent",
    "StepCompletedEvent",
    "StepStartedEvent",
    "ToolCallCompletedEvent",
    "ToolCallStartedEvent",
    "validate_agent_event",
]
