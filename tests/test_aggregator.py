"""Tests for stream chunk aggregation."""

from __future__ import annotations

from typing import AsyncIterator

import pytest

from llm_agent.aggregator import (
    FunctionCall,
    LLMStreamChunk,
    Usage,
    aggregate_chunks,
    collect_chunks,
)


class TestAggregateChunks:
    def test_empty(self) -> None:
        response = aggregate_chunks([])
        assert response.content == ""
        assert response.function_call is None
        assert response.response_type == "text"

    def test_concatenates_and_takes_final_metadata(self) -> None:
        chunks = [
            LLMStreamChunk(content="Hel"),
            LLMStreamChunk(content="lo", usage=Usage(1, 1)),
            LLMStreamChunk(is_final=True, usage=Usage(3, 4, model="m"), metadata={"id": "x"}),
        ]
        response = aggregate_chunks(chunks)
        assert response.content == "Hello"
        assert response.usage == Usage(3, 4, model="m")
        assert response.usage.total_tokens == 7
        assert response.metadata == {"id": "x"}

    def test_first_function_call_wins(self) -> None:
        first = FunctionCall("a", '{"x": 1}')
        chunks = [
            LLMStreamChunk(function_call=first, response_type="function_call"),
            LLMStreamChunk(function_call=FunctionCall("b"), is_final=True, response_type="function_call"),
        ]
        response = aggregate_chunks(chunks)
        assert response.function_call == first
        assert response.has_function_call
        assert response.response_type == "function_call"


class TestCollectChunks:
    @pytest.mark.asyncio
    async def test_calls_back_per_chunk(self) -> None:
        async def stream() -> AsyncIterator[LLMStreamChunk]:
            for text in ("a", "b", ""):
                yield LLMStreamChunk(content=text, is_final=not text)

        seen: list[str] = []
        response = await collect_chunks(stream(), lambda c: seen.append(c.content))
        assert seen == ["a", "b", ""]
        assert response.content == "ab"
