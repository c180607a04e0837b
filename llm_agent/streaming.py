"""Character-level extractor for the human-readable part of a streamed decision.

The model streams a JSON object token by token. Only the values of the
``thoughts``/``reasoning`` fields are meant for live display, so the
extractor emits those characters as they arrive and swallows everything
else. Nothing is buffered beyond the current field name.
"""

from __future__ import annotations

from typing import Literal

ExtractorState = Literal[
    "looking_for_field",
    "in_field_name",
    "in_name_escape",
    "looking_for_colon",
    "looking_for_quote",
    "in_field_value",
    "in_escape",
]

TARGET_FIELDS: frozenset[str] = frozenset({"reasoning", "thoughts"})
"""Field names (matched case-insensitively) whose string values are emitted."""

_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "\\": "\\", '"': '"'}


class ThoughtsExtractor:
    """Stateful filter: ``feed(chunk)`` returns the displayable text in ``chunk``.

    Example::

        extractor = ThoughtsExtractor()
        async for chunk in stream:
            print(extractor.feed(chunk.content), end="")
    """

    def __init__(self, fields: frozenset[str] = TARGET_FIELDS) -> None:
        self._fields = frozenset(f.lower() for f in fields)
        self.reset()

    @property
    def state(self) -> ExtractorState:
        return self._state

    def reset(self) -> None:
        self._state: ExtractorState = "looking_for_field"
        self._field_name: list[str] = []
        self._is_target = False

    def feed(self, chunk: str) -> str:
        if not chunk:
            return ""
        out: list[str] = []
        for ch in chunk:
            emitted = self._step(ch)
            if emitted is not None:
                out.append(emitted)
        return "".join(out)

    def flush(self) -> str:
        """Nothing is held back between chunks, so there is never a tail."""
        return ""

    def _step(self, ch: str) -> str | None:
        state = self._state

        if state == "looking_for_field":
            if ch == '"':
                self._state = "in_field_name"
                self._field_name.clear()
            return None

        if state == "in_field_name":
            if ch == "\\":
                self._state = "in_name_escape"
            elif ch == '"':
                self._is_target = "".join(self._field_name).lower() in self._fields
                self._state = "looking_for_colon"
            else:
                self._field_name.append(ch)
            return None

        if state == "in_name_escape":
            self._field_name.append(_ESCAPES.get(ch, ch))
            self._state = "in_field_name"
            return None

        if state == "looking_for_colon":
            if ch == ":":
                self._state = "looking_for_quote"
            elif not ch.isspace():
                # The quoted text was a value, not a key.
                self._state = "looking_for_field"
                self._is_target = False
            return None

        if state == "looking_for_quote":
            if ch == '"':
                self._state = "in_field_value"
            elif not ch.isspace():
                self._state = "looking_for_field"
                self._is_target = False
            return None

        if state == "in_field_value":
            if ch == "\\":
                self._state = "in_escape"
                return None
            if ch == '"':
                self._state = "looking_for_field"
                self._is_target = False
                return None
            return ch if self._is_target else None

        # in_escape
        self._state = "in_field_value"
        if self._is_target:
            return _ESCAPES.get(ch, ch)
        return None


__all__ = ["ExtractorState", "TARGET_FIELDS", "ThoughtsExtractor"]
