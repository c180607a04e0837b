"""Single tool execution with a deadline and a fixed failure taxonomy.

Every outcome except cancellation becomes a ``ToolExecutionResult``; the
``output`` of a failed result carries a small machine-readable ``type``
(``timeout``, ``validation_error``, ``tool_error``) the model can read back
from history.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Mapping

from llm_agent.config import AgentConfig
from llm_agent.errors import ToolValidationError, UnknownToolError
from llm_agent.events import EventManager, ToolCallCompletedEvent, ToolCallStartedEvent
from llm_agent.foundation import hash_tool_call
from llm_agent.metrics import SafeMetrics, ensure_safe
from llm_agent.models import ToolExecutionResult
from llm_agent.status import StatusManager
from llm_agent.tools import Tool, require_tool

logger = logging.getLogger(__name__)


class ToolExecutor:
    def __init__(
        self,
        config: AgentConfig,
        events: EventManager,
        status: StatusManager,
        metrics: SafeMetrics | None = None,
    ) -> None:
        self._config = config
        self._events = events
        self._status = status
        self._metrics = ensure_safe(metrics)

    async def execute(
        self,
        tool_name: str,
        params: Mapping[str, Any],
        tools: Mapping[str, Tool],
        agent_id: str,
        turn_index: int,
    ) -> ToolExecutionResult:
        """Run one tool call.

        Raises:
            asyncio.CancelledError: propagated untouched; no result is produced.
        """
        params = dict(params)
        call_hash = hash_tool_call(tool_name, params)
        timeout = self._config.tool_timeout_seconds

        self._events.emit(
            ToolCallStartedEvent(agent_id=agent_id, turn_index=turn_index, tool_name=tool_name, params=params)
        )
        self._status.emit_status(
            agent_id, "Executing tool", f"Running {tool_name}", "Processing tool result", turn_index=turn_index
        )

        def _result(
            success: bool,
            *,
            output: Any = None,
            error: str | None = None,
            elapsed_ms: float | None = None,
        ) -> ToolExecutionResult:
            return ToolExecutionResult(
                success=success,
                output=output,
                error=error,
                tool=tool_name,
                params=params,
                turn_id=call_hash,
                execution_time_ms=elapsed_ms,
            )

        missing: list[str] | None = None
        field_messages: list[str] | None = None
        t0 = time.monotonic()
        try:
            target = require_tool(tools, tool_name)
            logger.debug("Invoking tool %s with timeout %ss", tool_name, timeout)
            output = await asyncio.wait_for(target.invoke(params), timeout=timeout)
            elapsed_ms = (time.monotonic() - t0) * 1000
            result = _result(True, output=output, elapsed_ms=elapsed_ms)
            logger.info("Tool %s executed successfully in %.2fms", tool_name, elapsed_ms)
            self._status.emit_status(
                agent_id,
                "Tool completed",
                f"{tool_name} executed successfully",
                "Analyzing result",
                turn_index=turn_index,
            )
        except asyncio.TimeoutError:
            err = f"Tool {tool_name} call deadline exceeded after {timeout:g}s"
            logger.warning(err)
            self._status.emit_status(
                agent_id, "Tool timeout", err, "Will retry with different approach", turn_index=turn_index
            )
            result = _result(False, output={"type": "timeout"}, error=err)
        except ToolValidationError as exc:
            missing = exc.missing or None
            field_messages = [f"{fe.field}: {fe.message}" for fe in exc.field_errors] or None
            logger.warning("Tool %s validation failed: %s", tool_name, exc)
            self._status.emit_status(
                agent_id, "Validation error", str(exc), "Will retry with corrected parameters", turn_index=turn_index
            )
            result = _result(
                False,
                output={"type": "validation_error", "missing": missing, "errors": field_messages},
                error=str(exc),
            )
        except UnknownToolError as exc:
            logger.warning("Tool %s not found: %s", tool_name, exc)
            self._status.emit_status(
                agent_id,
                "Tool not found",
                f"Tool {tool_name} not found",
                "Will try different approach",
                turn_index=turn_index,
            )
            result = _result(False, error=str(exc))
        except Exception as exc:
            logger.warning("Tool %s execution failed: %s", tool_name, exc)
            self._status.emit_status(
                agent_id,
                "Tool execution failed",
                f"Tool {tool_name} execution failed: {exc}",
                "Will retry or try different approach",
                turn_index=turn_index,
            )
            result = _result(False, output={"type": "tool_error"}, error=str(exc) or type(exc).__name__)

        elapsed_ms = (time.monotonic() - t0) * 1000
        self._metrics.record_tool_call(
            agent_id,
            turn_index,
            tool_name,
            result.success,
            elapsed_ms,
            _error_type(result),
        )
        self._events.emit(
            ToolCallCompletedEvent(
                agent_id=agent_id,
                turn_index=turn_index,
                tool_name=tool_name,
                success=result.success,
                output=result.output if result.success else None,
                error=result.error,
                execution_time_ms=elapsed_ms,
                missing=missing,
                errors=field_messages,
            )
        )
        return result


def _error_type(result: ToolExecutionResult) -> str | None:
    if result.success:
        return None
    if isinstance(result.output, dict):
        return str(result.output.get("type", "tool_error"))
    return "not_found"


__all__ = ["ToolExecutor"]
