"""Default message builder: system contract plus one user message with goal, tools and history."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Protocol

from llm_agent.config import AgentConfig
from llm_agent.models import AgentState, AgentTurn, ModelDecision, ToolExecutionResult
from llm_agent.prompts import render_prompt
from llm_agent.tools import Tool, describe_tool

logger = logging.getLogger(__name__)

PREAMBLE = (
    "You will receive your GOAL, TOOL CATALOG, and HISTORY. "
    "Respond ONLY with a single JSON object per the MODEL OUTPUT CONTRACT."
)
CLOSING = (
    "IMPORTANT: Reply with JSON only. No prose or markdown. When a tool call fails, read the "
    "validation_error details in HISTORY and immediately retry with corrected parameters. "
    "Avoid repeating identical failing calls."
)
STATUS_INSTRUCTIONS = (
    "STATUS UPDATES (optional): You may include these public fields in your JSON response for UI updates:\n"
    '- "status_title": string (3-10 words, <=60 chars) - brief status summary\n'
    '- "status_details": string (<=160 chars) - additional context\n'
    '- "next_step_hint": string (3-12 words, <=60 chars) - what you\'ll do next\n'
    '- "progress_pct": integer (0-100) - completion percentage\n'
    "These fields must be public-only. Do not include internal reasoning or chain-of-thought."
)


class MessageBuilderProtocol(Protocol):
    def build_messages(self, state: AgentState, tools: Mapping[str, Tool]) -> list[dict[str, str]]: ...


def _dumps(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, default=str)


def truncate_text(text: str | None, max_length: int) -> str:
    if not text:
        return ""
    return text if len(text) <= max_length else text[: max_length - 3] + "..."


def decision_to_contract(decision: ModelDecision) -> dict[str, Any]:
    """Render a decision back into the JSON shape the model is asked to produce."""
    action = decision.action
    action_input = action.model_dump(exclude={"kind"}, exclude_none=True)
    payload: dict[str, Any] = {
        "thoughts": decision.thoughts,
        "action": action.kind,
        "action_input": action_input,
    }
    for key in ("status_title", "status_details", "next_step_hint", "progress_pct"):
        value = getattr(decision, key)
        if value is not None:
            payload[key] = value
    return payload


def truncate_result(result: ToolExecutionResult, max_output_size: int) -> dict[str, Any]:
    """Result as a dict, with an oversized output replaced by a preview stub."""
    data = result.model_dump()
    if result.output is None or max_output_size <= 0:
        return data
    output_json = _dumps(result.output)
    if len(output_json) <= max_output_size:
        return data
    preview_length = max(1, max_output_size - 20)
    data["output"] = {
        "truncated": True,
        "original_size": len(output_json),
        "preview": output_json[:preview_length] + "...",
    }
    return data


class MessageBuilder:
    def __init__(self, config: AgentConfig, *, system_template: str = "agent_system") -> None:
        self._config = config
        self._system_template = system_template

    def build_messages(self, state: AgentState, tools: Mapping[str, Tool]) -> list[dict[str, str]]:
        system = render_prompt(self._system_template)
        user = {"role": "user", "content": self.build_user_content(state, tools)}
        return [*system, *[dict(m) for m in self._config.additional_messages], user]

    def build_user_content(self, state: AgentState, tools: Mapping[str, Tool]) -> str:
        lines: list[str] = [PREAMBLE, "", "GOAL:", state.goal, ""]
        lines.append('TOOL CATALOG (name and params you may call via action:"tool_call"):')
        for t in tools.values():
            lines.append(f"{t.name}: {describe_tool(t)}")
        lines.append("Use the JSON schemas exactly; do not invent fields.")
        lines.append("")

        if self._config.emit_public_status:
            lines.append(STATUS_INSTRUCTIONS)
            lines.append("")

        lines.append("HISTORY (most recent last):")
        turns = sorted(state.turns, key=lambda t: t.index)
        recent_from = len(turns) - self._config.max_recent_turns
        for i, turn in enumerate(turns):
            if i >= recent_from or not self._config.enable_history_summarization:
                lines.extend(self._full_turn(turn))
            else:
                lines.append(f"SUMMARY: {self._summarize_turn(turn)}")
            lines.append("---")

        lines.append("")
        lines.append(CLOSING)
        return "\n".join(lines) + "\n"

    def _full_turn(self, turn: AgentTurn) -> list[str]:
        out: list[str] = []
        if turn.decision is not None:
            out += ["LLM:", _dumps(decision_to_contract(turn.decision))]
        if turn.tool_call is not None:
            out += ["TOOL_CALL:", _dumps(turn.tool_call.model_dump())]
        if turn.tool_result is not None:
            out += ["TOOL_RESULT:", _dumps(truncate_result(turn.tool_result, self._config.max_tool_output_size))]
        if turn.tool_calls:
            out += ["TOOL_CALLS:", _dumps([c.model_dump() for c in turn.tool_calls])]
        if turn.tool_results:
            out += [
                "TOOL_RESULTS:",
                _dumps([truncate_result(r, self._config.max_tool_output_size) for r in turn.tool_results]),
            ]
        return out

    def _summarize_turn(self, turn: AgentTurn) -> str:
        parts: list[str] = []
        if turn.decision is not None:
            parts.append(f"LLM: {turn.decision.action.kind} - {truncate_text(turn.decision.thoughts, 100)}")
        if turn.tool_call is not None:
            parts.append(f"TOOL: {turn.tool_call.tool}")
        if turn.tool_calls:
            parts.append("TOOLS: " + ", ".join(c.tool for c in turn.tool_calls))
        results = [turn.tool_result] if turn.tool_result is not None else list(turn.tool_results or [])
        for result in results:
            status = "SUCCESS" if result.success else "FAILED"
            text = f"RESULT: {status}"
            if not result.success and result.error:
                text += f" ({truncate_text(result.error, 50)})"
            parts.append(text)
        return " | ".join(parts)


__all__ = [
    "MessageBuilder",
    "MessageBuilderProtocol",
    "decision_to_contract",
    "truncate_result",
    "truncate_text",
]
