"""Locate and repair the JSON value inside a model response.

Models wrap JSON in markdown fences, leave trailing commas, put raw
newlines inside strings, or stop before closing every bracket. The helpers
here recover the first JSON value without ever touching string content
beyond escaping raw control characters:

    >>> repair_json('```json\\n{"a":1}\\n```')
    '{"a":1}'
    >>> repair_json('{"a":{"b":1}')
    '{"a":{"b":1}}'

Already-valid JSON is returned unchanged.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json|JSON)?[ \t]*\r?\n?(.*?)\r?\n?[ \t]*```", re.DOTALL)
_OPEN_FENCE = re.compile(r"^```(?:json|python|xml|text)?\s*\n?")
_CLOSE_FENCE = re.compile(r"\n?\s*```\s*$")

_CLOSERS = {"{": "}", "[": "]"}
_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t", "\b": "\\b", "\f": "\\f"}


def strip_fences(content: str) -> str:
    """Strip markdown code fences from a response.

    A fenced block anywhere in the text wins; otherwise a leading fence with
    no closing fence is removed. Unfenced text is only trimmed.
    """
    content = content.strip()
    match = _FENCED_BLOCK.search(content)
    if match:
        return match.group(1).strip()
    content = _OPEN_FENCE.sub("", content)
    content = _CLOSE_FENCE.sub("", content)
    return content.strip()


def _is_complete_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def find_json_start(text: str, pos: int = 0, openers: str = "{[") -> int:
    """Index of the first opener at or after ``pos``, or -1."""
    positions = [p for p in (text.find(ch, pos) for ch in openers) if p >= 0]
    return min(positions) if positions else -1


def extract_json_value(text: str, start: int | None = None) -> str | None:
    """Return the first balanced top-level JSON object/array in ``text``.

    Brackets inside strings are ignored. When the text ends before the value
    closes, the unbalanced remainder is returned so it can be repaired.
    Scanning begins at ``start`` when given.
    """
    if start is None:
        start = find_json_start(text)
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return text[start:]


def _drop_trailing_comma(out: list[str]) -> None:
    while out and out[-1] in " \t":
        out.pop()
    if out and out[-1] == ",":
        out.pop()


def _rewrite(value: str) -> str:
    """Single-pass structural rewrite of one JSON value."""
    out: list[str] = []
    stack: list[str] = []
    in_string = False
    escaped = False

    for ch in value:
        if in_string:
            if escaped:
                escaped = False
                out.append(ch)
            elif ch == "\\":
                escaped = True
                out.append(ch)
            elif ch == '"':
                in_string = False
                out.append(ch)
            elif ch in _CONTROL_ESCAPES:
                out.append(_CONTROL_ESCAPES[ch])
            elif ord(ch) < 0x20:
                out.append(f"\\u{ord(ch):04x}")
            else:
                out.append(ch)
            continue

        if ch == '"':
            in_string = True
            out.append(ch)
        elif ch in "\r\n":
            continue
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
            out.append(ch)
        elif ch in "}]":
            _drop_trailing_comma(out)
            if stack and stack[-1] == ch:
                stack.pop()
            out.append(ch)
            if not stack:
                break
        else:
            out.append(ch)

    if in_string:
        if escaped:
            out.pop()
        out.append('"')
    while stack:
        _drop_trailing_comma(out)
        out.append(stack.pop())
    return "".join(out)


def _repair_candidate(candidate: str) -> str:
    if _is_complete_json(candidate):
        return candidate
    repaired = _rewrite(candidate)
    if repaired != candidate:
        logger.debug("Repaired model JSON (%d -> %d chars)", len(candidate), len(repaired))
    return repaired


def _acceptable(text: str, expect_object: bool) -> bool:
    try:
        value = json.loads(text)
    except ValueError:
        return False
    return isinstance(value, dict) or not expect_object


def repair_json(text: str, expect_object: bool = False) -> str:
    """Return the best-effort JSON text recovered from ``text``.

    Steps: strip fences, return untouched if already valid, otherwise take the
    first balanced value and rewrite it (structural newlines dropped, raw
    control characters in strings escaped, trailing commas removed, missing
    closers appended). A candidate that still does not decode is skipped in
    favour of the next opening bracket. With ``expect_object`` only objects
    are considered, so bracketed prose such as ``Step [1]:`` ahead of the
    payload is passed over. Text with no candidate is returned stripped.
    """
    if not text:
        return text
    stripped = strip_fences(text)
    if _acceptable(stripped, expect_object):
        return stripped

    openers = "{" if expect_object else "{["
    first: str | None = None
    start = find_json_start(stripped, 0, openers)
    while start >= 0:
        repaired = _repair_candidate(extract_json_value(stripped, start) or "")
        if _acceptable(repaired, expect_object):
            return repaired
        if first is None:
            first = repaired
        start = find_json_start(stripped, start + 1, openers)
    return stripped if first is None else first


def loads_lenient(text: str, expect_object: bool = False) -> Any:
    """``json.loads`` after ``repair_json``; raises ``ValueError`` when unrecoverable."""
    return json.loads(repair_json(text, expect_object))


__all__ = [
    "extract_json_value",
    "find_json_start",
    "loads_lenient",
    "repair_json",
    "strip_fences",
]
