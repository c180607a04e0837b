"""Tests for decision parsing and function-call normalization."""

from __future__ import annotations

import json

import pytest

from llm_agent.aggregator import FunctionCall
from llm_agent.config import AgentConfig
from llm_agent.errors import DecisionParseError, FunctionArgumentError
from llm_agent.models import FinishAction, MultiToolCallAction, PlanAction, RetryAction, ToolCallAction
from llm_agent.parsing import (
    decision_from_function_call,
    decision_from_payload,
    parse_decision,
    parse_function_arguments,
)


def _payload(action: str = "plan", **extra: object) -> dict:
    payload: dict = {"thoughts": "t", "action": action, "action_input": {}}
    payload.update(extra)
    return payload


# ---------------------------------------------------------------------------
# Free-form JSON
# ---------------------------------------------------------------------------


class TestParseDecision:
    def test_tool_call(self) -> None:
        text = json.dumps(
            {"thoughts": "look up", "action": "tool_call", "action_input": {"tool": " get_weather ", "params": {"city": "Paris"}}}
        )
        decision = parse_decision(text)
        assert isinstance(decision.action, ToolCallAction)
        assert decision.action.tool == "get_weather"
        assert decision.action.params == {"city": "Paris"}
        assert decision.kind == "tool_call"

    def test_fenced_and_chatty(self) -> None:
        text = 'Sure:\n```json\n{"thoughts": "done", "action": "finish", "action_input": {"final": "42"}}\n```'
        decision = parse_decision(text)
        assert isinstance(decision.action, FinishAction)
        assert decision.action.final == "42"

    def test_bracketed_prose_before_decision(self) -> None:
        decision = parse_decision('Step [1]: {"thoughts": "t", "action": "plan", "action_input": {"summary": "s"}}')
        assert isinstance(decision.action, PlanAction)
        assert decision.action.summary == "s"

    def test_action_case_insensitive(self) -> None:
        assert isinstance(decision_from_payload(_payload("RETRY")).action, RetryAction)

    def test_plan_summary(self) -> None:
        decision = decision_from_payload(_payload(action_input={"summary": "step 1"}))
        assert isinstance(decision.action, PlanAction)
        assert decision.action.summary == "step 1"

    def test_multi_tool_call(self) -> None:
        decision = decision_from_payload(
            _payload(
                "multi_tool_call",
                action_input={"tool_calls": [{"tool": "a", "params": {"x": 1}, "reason": "r"}, {"tool": "b"}]},
            )
        )
        assert isinstance(decision.action, MultiToolCallAction)
        assert [c.tool for c in decision.action.tool_calls] == ["a", "b"]
        assert decision.action.tool_calls[1].params == {}

    def test_status_fields_clipped_and_progress_checked(self) -> None:
        decision = decision_from_payload(
            _payload(status_title="x" * 100, next_step_hint="go", progress_pct=150)
        )
        assert decision.status_title == "x" * 60
        assert decision.next_step_hint == "go"
        assert decision.progress_pct is None

    def test_progress_bool_ignored(self) -> None:
        assert decision_from_payload(_payload(progress_pct=True)).progress_pct is None

    @pytest.mark.parametrize(
        ("text", "message"),
        [
            ("", "Empty model output."),
            ("[1, 2]", "JSON must be an object"),
            ('{"action": "plan", "action_input": {}}', "Missing 'thoughts'."),
            ('{"thoughts": "t", "action_input": {}}', "Missing 'action'."),
            ('{"thoughts": "t", "action": "dance", "action_input": {}}', "Invalid action: dance"),
            ('{"thoughts": "t", "action": "plan"}', "Missing 'action_input'."),
            ('{"thoughts": "t", "action": "tool_call", "action_input": {}}', "tool_call requires action_input.tool"),
            ('{"thoughts": "t", "action": "finish", "action_input": {"final": " "}}', "finish requires action_input.final"),
            (
                '{"thoughts": "t", "action": "multi_tool_call", "action_input": {"tool_calls": []}}',
                "multi_tool_call requires a non-empty action_input.tool_calls list",
            ),
            (
                '{"thoughts": "t", "action": "tool_call", "action_input": {"tool": "x", "params": [1]}}',
                "tool_call params must be an object.",
            ),
        ],
    )
    def test_contract_violations(self, text: str, message: str) -> None:
        with pytest.raises(DecisionParseError, match=message.replace(".", r"\.")):
            parse_decision(text)

    def test_length_limits(self) -> None:
        config = AgentConfig(max_thoughts_length=5)
        with pytest.raises(DecisionParseError, match="'thoughts' field exceeds maximum length of 5"):
            decision_from_payload({"thoughts": "123456", "action": "plan", "action_input": {}}, config)

    def test_unparseable_text(self) -> None:
        with pytest.raises(DecisionParseError):
            parse_decision("I think we should call the weather tool")


# ---------------------------------------------------------------------------
# Function calls
# ---------------------------------------------------------------------------


class TestFunctionCalls:
    def test_arguments_decoded(self) -> None:
        assert parse_function_arguments(FunctionCall("f", '{"a": 1}')) == {"a": 1}

    def test_empty_and_null_arguments(self) -> None:
        assert parse_function_arguments(FunctionCall("f", "")) == {}
        assert parse_function_arguments(FunctionCall("f", "null")) == {}

    def test_bad_arguments(self) -> None:
        with pytest.raises(FunctionArgumentError, match="Failed to parse function arguments"):
            parse_function_arguments(FunctionCall("f", "{not json"))

    def test_non_object_arguments(self) -> None:
        with pytest.raises(FunctionArgumentError, match="expected an object, got list"):
            parse_function_arguments(FunctionCall("f", "[1]"))

    def test_normalized_to_tool_call_decision(self) -> None:
        decision = decision_from_function_call(FunctionCall("get_weather", '{"city": "Paris"}'), "Checking weather.")
        assert decision.thoughts == "Checking weather."
        assert decision.action_raw == "tool_call"
        assert isinstance(decision.action, ToolCallAction)
        assert decision.action.params == {"city": "Paris"}

    def test_default_thoughts(self) -> None:
        decision = decision_from_function_call(FunctionCall("lookup", "{}"))
        assert decision.thoughts == "Calling lookup to advance the plan."

    def test_missing_name(self) -> None:
        with pytest.raises(FunctionArgumentError):
            decision_from_function_call(FunctionCall("", "{}"))
