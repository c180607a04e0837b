"""Tests for llm_agent.json_repair."""

from __future__ import annotations

import json

import pytest

from llm_agent.json_repair import (
    extract_json_value,
    find_json_start,
    loads_lenient,
    repair_json,
    strip_fences,
)


class TestStripFences:
    def test_json_fence(self) -> None:
        assert strip_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence(self) -> None:
        assert strip_fences('```\n[1, 2]\n```') == "[1, 2]"

    def test_fence_inside_prose(self) -> None:
        assert strip_fences('Here you go:\n```json\n{"a": 1}\n```\nDone.') == '{"a": 1}'

    def test_unclosed_fence(self) -> None:
        assert strip_fences('```json\n{"a": 1}') == '{"a": 1}'

    def test_plain_text_trimmed(self) -> None:
        assert strip_fences('  {"a": 1}  ') == '{"a": 1}'


class TestExtract:
    def test_find_start(self) -> None:
        assert find_json_start('say [1] {"a"}') == 4
        assert find_json_start("nothing") == -1
        assert find_json_start('say [1] {"a"}', 5) == 8
        assert find_json_start('say [1] {"a"}', 0, "{") == 8

    def test_extract_from_offset(self) -> None:
        assert extract_json_value('Step [1]: {"a": 1}', 10) == '{"a": 1}'

    def test_balanced_value_in_prose(self) -> None:
        assert extract_json_value('Sure! {"a": {"b": 1}} thanks') == '{"a": {"b": 1}}'

    def test_brackets_inside_strings_ignored(self) -> None:
        assert extract_json_value('{"a": "}{]["} trailing') == '{"a": "}{]["}'

    def test_unbalanced_returns_remainder(self) -> None:
        assert extract_json_value('x {"a": [1, 2') == '{"a": [1, 2'


class TestRepairJson:
    def test_valid_json_unchanged(self) -> None:
        assert repair_json('{"a": 1}') == '{"a": 1}'

    def test_fenced(self) -> None:
        assert repair_json('```json\n{"a":1}\n```') == '{"a":1}'

    def test_missing_closers(self) -> None:
        assert repair_json('{"a":{"b":1}') == '{"a":{"b":1}}'

    def test_trailing_commas(self) -> None:
        assert json.loads(repair_json('{"a": [1, 2,], }')) == {"a": [1, 2]}

    def test_raw_newline_in_string(self) -> None:
        assert json.loads(repair_json('{"t": "line1\nline2"}')) == {"t": "line1\nline2"}

    def test_unterminated_string(self) -> None:
        assert json.loads(repair_json('{"thoughts": "abc')) == {"thoughts": "abc"}

    def test_prose_around_object(self) -> None:
        assert json.loads(repair_json('The answer: {"ok": true} -- end')) == {"ok": True}

    def test_structural_newlines_dropped(self) -> None:
        assert json.loads(repair_json('{\n  "a": 1,\n  "b": [\n 2\n')) == {"a": 1, "b": [2]}

    def test_no_json_returns_text(self) -> None:
        assert repair_json("  hello  ") == "hello"

    def test_empty(self) -> None:
        assert repair_json("") == ""

    def test_undecodable_candidate_skipped(self) -> None:
        assert json.loads(repair_json('see [note: x] then {"a": 1}')) == {"a": 1}

    def test_bracketed_prose_before_object(self) -> None:
        text = 'Step [1]: {"thoughts": "t", "action": "plan"}'
        assert repair_json(text) == "[1]"
        assert json.loads(repair_json(text, expect_object=True)) == {"thoughts": "t", "action": "plan"}

    def test_expect_object_without_object_returns_text(self) -> None:
        assert repair_json("[1, 2]", expect_object=True) == "[1, 2]"


class TestLoadsLenient:
    def test_recovers_value(self) -> None:
        assert loads_lenient('```json\n{"a": [1,]}\n```') == {"a": [1]}

    def test_expect_object(self) -> None:
        assert loads_lenient('Options [a, b]: {"pick": "a"}', expect_object=True) == {"pick": "a"}

    def test_unrecoverable_raises_value_error(self) -> None:
        with pytest.raises(ValueError):
            loads_lenient("no json here")
