"""Decision parsing: free-form JSON text and structured function calls.

Both paths produce the same ``ModelDecision`` so the orchestrator never
needs to know which one the model used.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from llm_agent.aggregator import FunctionCall
from llm_agent.config import AgentConfig
from llm_agent.errors import DecisionParseError, FunctionArgumentError
from llm_agent.json_repair import repair_json
from llm_agent.models import (
    ACTION_NAMES,
    FinishAction,
    ModelDecision,
    MultiToolCallAction,
    PlanAction,
    RetryAction,
    ToolCallAction,
    ToolCallSpec,
)

logger = logging.getLogger(__name__)

STATUS_TITLE_MAX = 60
STATUS_DETAILS_MAX = 160
NEXT_STEP_HINT_MAX = 60


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise DecisionParseError(f"'{key}' must be a string.")
    return value


def _check_length(name: str, value: str | None, limit: int) -> None:
    if value is not None and len(value) > limit:
        raise DecisionParseError(f"'{name}' field exceeds maximum length of {limit} characters")


def _clip(value: Any, limit: int) -> str | None:
    if not isinstance(value, str):
        return None
    return value[:limit]


def _progress(value: Any) -> int | None:
    # bool is an int subclass; JSON true/false is not a percentage.
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value if 0 <= value <= 100 else None


def _params(raw: Any, *, where: str) -> dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise DecisionParseError(f"{where} params must be an object.")
    return raw


def _tool_call_specs(raw: Any) -> list[ToolCallSpec]:
    if not isinstance(raw, list) or not raw:
        raise DecisionParseError("multi_tool_call requires a non-empty action_input.tool_calls list")
    specs: list[ToolCallSpec] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise DecisionParseError(f"tool_calls[{i}] must be an object.")
        tool = item.get("tool")
        if not isinstance(tool, str) or not tool.strip():
            raise DecisionParseError(f"tool_calls[{i}] requires tool")
        reason = item.get("reason")
        specs.append(
            ToolCallSpec(
                tool=tool.strip(),
                params=_params(item.get("params"), where=f"tool_calls[{i}]"),
                reason=reason if isinstance(reason, str) else None,
            )
        )
    return specs


def decision_from_payload(payload: Any, config: AgentConfig | None = None) -> ModelDecision:
    """Validate a decoded JSON object against the decision contract.

    Raises:
        DecisionParseError: on any contract violation. The message is suitable
            for showing back to the model.
    """
    cfg = config or AgentConfig()
    if not isinstance(payload, dict):
        raise DecisionParseError("JSON must be an object")

    if "thoughts" not in payload:
        raise DecisionParseError("Missing 'thoughts'.")
    thoughts = payload.get("thoughts") or ""
    if not isinstance(thoughts, str):
        raise DecisionParseError("'thoughts' must be a string.")
    _check_length("thoughts", thoughts, cfg.max_thoughts_length)

    if "action" not in payload:
        raise DecisionParseError("Missing 'action'.")
    action_raw = payload.get("action")
    action_name = action_raw.strip().lower() if isinstance(action_raw, str) else ""
    if action_name not in ACTION_NAMES:
        raise DecisionParseError(f"Invalid action: {action_raw}")

    if "action_input" not in payload:
        raise DecisionParseError("Missing 'action_input'.")
    action_input = payload.get("action_input") or {}
    if not isinstance(action_input, dict):
        raise DecisionParseError("'action_input' must be an object.")

    summary = _optional_str(action_input, "summary")
    _check_length("summary", summary, cfg.max_summary_length)
    final = _optional_str(action_input, "final")
    _check_length("final", final, cfg.max_final_length)

    action: PlanAction | ToolCallAction | MultiToolCallAction | FinishAction | RetryAction
    if action_name == "tool_call":
        tool = action_input.get("tool")
        if not isinstance(tool, str) or not tool.strip():
            raise DecisionParseError("tool_call requires action_input.tool")
        action = ToolCallAction(
            tool=tool.strip(),
            params=_params(action_input.get("params"), where="tool_call"),
            summary=summary,
        )
    elif action_name == "multi_tool_call":
        action = MultiToolCallAction(tool_calls=_tool_call_specs(action_input.get("tool_calls")), summary=summary)
    elif action_name == "finish":
        if not final or not final.strip():
            raise DecisionParseError("finish requires action_input.final")
        action = FinishAction(final=final)
    elif action_name == "retry":
        action = RetryAction(summary=summary)
    else:
        action = PlanAction(summary=summary)

    try:
        return ModelDecision(
            thoughts=thoughts,
            action=action,
            action_raw=action_raw,
            status_title=_clip(payload.get("status_title"), STATUS_TITLE_MAX),
            status_details=_clip(payload.get("status_details"), STATUS_DETAILS_MAX),
            next_step_hint=_clip(payload.get("next_step_hint"), NEXT_STEP_HINT_MAX),
            progress_pct=_progress(payload.get("progress_pct")),
        )
    except ValidationError as exc:
        raise DecisionParseError(str(exc), original=exc) from exc


def parse_decision(text: str, config: AgentConfig | None = None) -> ModelDecision:
    """Parse free-form model output (fenced, chatty or slightly broken JSON)."""
    if not text or not text.strip():
        raise DecisionParseError("Empty model output.")
    repaired = repair_json(text, expect_object=True)
    try:
        payload = json.loads(repaired)
    except ValueError as exc:
        raise DecisionParseError(str(exc), original=exc) from exc
    return decision_from_payload(payload, config)


def parse_function_arguments(call: FunctionCall) -> dict[str, Any]:
    raw = (call.arguments_json or "").strip()
    if not raw:
        return {}
    try:
        args = json.loads(raw)
    except ValueError as exc:
        raise FunctionArgumentError(f"Failed to parse function arguments: {exc}", original=exc) from exc
    if args is None:
        return {}
    if not isinstance(args, dict):
        raise FunctionArgumentError(
            f"Failed to parse function arguments: expected an object, got {type(args).__name__}"
        )
    return args


def decision_from_function_call(call: FunctionCall, assistant_text: str = "") -> ModelDecision:
    """Normalize a structured function call into a ``tool_call`` decision.

    Thoughts come from any assistant text that accompanied the call.
    """
    if not call.name:
        raise FunctionArgumentError("Failed to parse function arguments: function call has no name")
    params = parse_function_arguments(call)
    thoughts = assistant_text.strip() or f"Calling {call.name} to advance the plan."
    logger.debug("Normalized function call %s (%d params)", call.name, len(params))
    return ModelDecision(
        thoughts=thoughts,
        action=ToolCallAction(
            tool=call.name,
            params=params,
            summary=f"Execute {call.name} and continue with the results.",
        ),
        action_raw="tool_call",
    )


__all__ = [
    "NEXT_STEP_HINT_MAX",
    "STATUS_DETAILS_MAX",
    "STATUS_TITLE_MAX",
    "decision_from_function_call",
    "decision_from_payload",
    "parse_decision",
    "parse_function_arguments",
]
