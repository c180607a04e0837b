"""Model-client protocol and the litellm-backed implementation.

The orchestrator only ever sees ``LLMStreamChunk`` values. Any provider
that litellm supports works through ``LiteLLMModelClient``::

    client = LiteLLMModelClient("gpt-4o-mini", temperature=0.1)
    async for chunk in client.stream(messages, tools=specs):
        ...
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Protocol, runtime_checkable

import litellm

from llm_agent.aggregator import FunctionCall, LLMStreamChunk, Usage
from llm_agent.errors import wrap_error

logger = logging.getLogger(__name__)


@runtime_checkable
class ModelClient(Protocol):
    """Anything that streams chunks for a message list.

    ``tools`` is a list of OpenAI-format function specs; ``None`` disables
    function calling for the request.
    """

    def stream(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
        **params: Any,
    ) -> AsyncIterator[LLMStreamChunk]: ...


def _delta_text(chunk: Any) -> str:
    choices = getattr(chunk, "choices", None)
    if not choices:
        return ""
    delta = choices[0].delta
    return (delta.content if delta and delta.content else "") or ""


def _extract_usage(complete: Any, model: str) -> Usage | None:
    usage = getattr(complete, "usage", None)
    if usage is None:
        return None
    return Usage(
        input_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
        output_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
        model=model,
        provider="litellm",
    )


def _extract_function_call(complete: Any) -> FunctionCall | None:
    message = complete.choices[0].message
    tool_calls = getattr(message, "tool_calls", None)
    if not tool_calls:
        return None
    if len(tool_calls) > 1:
        logger.debug("Model returned %d tool calls; using the first", len(tool_calls))
    fn = tool_calls[0].function
    return FunctionCall(name=fn.name or "", arguments_json=fn.arguments or "{}")


class LiteLLMModelClient:
    """Streams through ``litellm.acompletion``.

    Args:
        model: Any litellm model string.
        **defaults: Sampling params applied to every request
            (``temperature``, ``max_tokens``, ``api_base``...). Per-call
            params win.
    """

    def __init__(self, model: str, **defaults: Any) -> None:
        self.model = model
        self._defaults = defaults

    async def stream(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
        **params: Any,
    ) -> AsyncIterator[LLMStreamChunk]:
        call_kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": True,
            "stream_options": {"include_usage": True},
            **self._defaults,
            **params,
        }
        if tools:
            call_kwargs["tools"] = tools
            call_kwargs.setdefault("tool_choice", "auto")

        raw_chunks: list[Any] = []
        try:
            response = await litellm.acompletion(**call_kwargs)
            async for chunk in response:
                raw_chunks.append(chunk)
                text = _delta_text(chunk)
                if text:
                    yield LLMStreamChunk(content=text)
        except Exception as exc:
            raise wrap_error(exc) from exc

        yield self._final_chunk(raw_chunks, messages)

    def _final_chunk(self, raw_chunks: list[Any], messages: list[dict[str, Any]]) -> LLMStreamChunk:
        if not raw_chunks:
            return LLMStreamChunk(is_final=True, finish_reason="stop")
        complete = litellm.stream_chunk_builder(raw_chunks, messages=messages)
        if complete is None or not complete.choices:
            return LLMStreamChunk(is_final=True, finish_reason="stop")

        function_call = _extract_function_call(complete)
        return LLMStreamChunk(
            is_final=True,
            finish_reason=complete.choices[0].finish_reason or "stop",
            function_call=function_call,
            usage=_extract_usage(complete, self.model),
            response_type="function_call" if function_call else "text",
        )


__all__ = ["LiteLLMModelClient", "ModelClient"]
