"""Streamed chunk types and their aggregation into one logical response."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, Callable, Iterable, Literal

logger = logging.getLogger(__name__)

ResponseType = Literal["text", "function_call", "streaming", "auto"]


@dataclass(frozen=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    provider: str = ""

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class FunctionCall:
    """A structured tool invocation; ``arguments_json`` is the raw argument text."""

    name: str
    arguments_json: str = "{}"


@dataclass(frozen=True)
class LLMStreamChunk:
    """One piece of a streamed model response.

    Attributes:
        content: Text delta (may be empty).
        is_final: True on the last chunk of the stream.
        finish_reason: Provider stop reason, set on the final chunk.
        function_call: Completed structured call, if the provider produced one.
        usage: Token counts; providers usually attach these to the last chunk.
        response_type: What kind of response the provider actually produced.
        metadata: Provider-specific extras.
    """

    content: str = ""
    is_final: bool = False
    finish_reason: str | None = None
    function_call: FunctionCall | None = None
    usage: Usage | None = None
    response_type: ResponseType = "text"
    metadata: dict[str, Any] | None = None


@dataclass
class LLMResponse:
    """Aggregated model response."""

    content: str = ""
    function_call: FunctionCall | None = None
    usage: Usage | None = None
    response_type: ResponseType = "text"
    metadata: dict[str, Any] | None = field(default=None, repr=False)

    @property
    def has_function_call(self) -> bool:
        return self.function_call is not None


def aggregate_chunks(chunks: Iterable[LLMStreamChunk]) -> LLMResponse:
    """Collapse chunks: content concatenated, first function call, last usage.

    Response type and metadata come from the final chunk. No chunks gives an
    empty text response.
    """
    chunk_list = list(chunks)
    if not chunk_list:
        return LLMResponse()

    content = "".join(c.content for c in chunk_list)
    function_call = next((c.function_call for c in chunk_list if c.function_call is not None), None)
    usage = next((c.usage for c in reversed(chunk_list) if c.usage is not None), None)
    last = chunk_list[-1]

    logger.debug("Aggregated %d chunks into %d chars", len(chunk_list), len(content))
    return LLMResponse(
        content=content,
        function_call=function_call,
        usage=usage,
        response_type=last.response_type,
        metadata=last.metadata,
    )


async def collect_chunks(
    chunks: AsyncIterable[LLMStreamChunk],
    on_chunk: Callable[[LLMStreamChunk], None] | None = None,
) -> LLMResponse:
    """Drain an async chunk stream, calling ``on_chunk`` per chunk, then aggregate."""
    collected: list[LLMStreamChunk] = []
    async for chunk in chunks:
        collected.append(chunk)
        if on_chunk is not None:
            on_chunk(chunk)
    return aggregate_chunks(collected)


__all__ = [
    "FunctionCall",
    "LLMResponse",
    "LLMStreamChunk",
    "ResponseType",
    "Usage",
    "aggregate_chunks",
    "collect_chunks",
]
