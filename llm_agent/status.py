"""Public status updates, kept separate from the model's private thoughts."""

from __future__ import annotations

import logging

from llm_agent.config import AgentConfig
from llm_agent.events import EventManager, StatusUpdateEvent
from llm_agent.parsing import NEXT_STEP_HINT_MAX, STATUS_DETAILS_MAX, STATUS_TITLE_MAX

logger = logging.getLogger(__name__)


class StatusManager:
    def __init__(self, config: AgentConfig, events: EventManager) -> None:
        self._config = config
        self._events = events

    def emit_status(
        self,
        agent_id: str,
        title: str,
        details: str | None = None,
        next_step_hint: str | None = None,
        progress_pct: int | None = None,
        *,
        turn_index: int = 0,
    ) -> None:
        """Emit a ``status_update`` event; a no-op when public status is disabled."""
        if not self._config.emit_public_status:
            return
        if progress_pct is not None:
            progress_pct = max(0, min(100, int(progress_pct)))
        self._events.emit(
            StatusUpdateEvent(
                agent_id=agent_id,
                turn_index=turn_index,
                status_title=title[:STATUS_TITLE_MAX],
                status_details=details[:STATUS_DETAILS_MAX] if details else None,
                next_step_hint=next_step_hint[:NEXT_STEP_HINT_MAX] if next_step_hint else None,
                progress_pct=progress_pct,
            )
        )


__all__ = ["StatusManager"]
