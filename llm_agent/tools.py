"""Tools: the callable protocol, a function-backed implementation, and registry helpers.

Any object with ``name``, ``description`` and ``async invoke(params)`` is a
tool. ``FunctionTool`` turns a typed Python function into one, deriving an
OpenAI-compatible JSON schema from its annotations and validating arguments
before the call:

    @tool(description="Current weather for a city")
    async def get_weather(city: str, units: str = "metric") -> dict:
        ...

    registry = to_registry([get_weather])
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import (
    Any,
    Callable,
    Iterable,
    Mapping,
    Protocol,
    Union,
    get_args,
    get_origin,
    get_type_hints,
    runtime_checkable,
)

from pydantic import TypeAdapter, ValidationError

from llm_agent.errors import ToolFieldError, ToolValidationError, UnknownToolError
from llm_agent.foundation import canonical_json

logger = logging.getLogger(__name__)

# Python type → JSON Schema type
_TYPE_MAP: dict[type, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
}


@runtime_checkable
class Tool(Protocol):
    """Minimal tool surface.

    Optional extras read with ``getattr``: ``parameters_schema()``,
    ``allow_dedupe`` (default True), ``dedupe_ttl_seconds`` (default: the
    configured staleness window). Cancellation arrives as
    ``asyncio.CancelledError`` inside ``invoke``.
    """

    name: str
    description: str

    async def invoke(self, params: dict[str, Any]) -> Any: ...


# ---------------------------------------------------------------------------
# Schema generation
# ---------------------------------------------------------------------------


def _type_to_json_schema(tp: Any) -> dict[str, Any]:
    """Convert a Python type annotation to a JSON Schema fragment.

    Supports: str, int, float, bool, list[X], dict, Optional[X].
    Raises ValueError for unsupported types.
    """
    origin = get_origin(tp)
    args = get_args(tp)

    # Optional[X] and X | None unwrap to X
    if origin is Union or (origin is not None and type(None) in args):
        non_none = [a for a in args if a is not type(None)]
        if len(non_none) == 1:
            return _type_to_json_schema(non_none[0])

    if origin is list or tp is list:
        schema: dict[str, Any] = {"type": "array"}
        if args:
            schema["items"] = _type_to_json_schema(args[0])
        return schema

    if origin is dict or tp is dict:
        return {"type": "object"}

    if tp is Any:
        return {}

    if tp in _TYPE_MAP:
        return {"type": _TYPE_MAP[tp]}

    raise ValueError(
        f"Unsupported type annotation: {tp!r}. "
        f"Supported: str, int, float, bool, list[X], dict, Optional[X]."
    )


def _is_optional(tp: Any) -> bool:
    return type(None) in get_args(tp)


class FunctionTool:
    """A tool backed by a sync or async Python function.

    Every parameter must be annotated. Required parameters are the ones
    without defaults. Arguments are coerced through pydantic in lax mode, so
    ``"3"`` is accepted for an ``int`` parameter.
    """

    def __init__(
        self,
        fn: Callable[..., Any],
        *,
        name: str | None = None,
        description: str | None = None,
        allow_dedupe: bool = True,
        dedupe_ttl_seconds: float | None = None,
    ) -> None:
        self.fn = fn
        self.name = name or fn.__name__
        self.description = description or _first_doc_line(fn) or f"Parameters for {self.name}"
        self.allow_dedupe = allow_dedupe
        self.dedupe_ttl_seconds = dedupe_ttl_seconds

        self._signature = inspect.signature(fn)
        hints = get_type_hints(fn)
        self._hints: dict[str, Any] = {}
        self._required: list[str] = []
        self._accepts_var_kwargs = False
        properties: dict[str, Any] = {}

        for pname, param in self._signature.parameters.items():
            if pname in ("self", "cls"):
                continue
            if param.kind == inspect.Parameter.VAR_KEYWORD:
                self._accepts_var_kwargs = True
                continue
            if param.kind == inspect.Parameter.VAR_POSITIONAL:
                continue
            if pname not in hints:
                raise ValueError(
                    f"Parameter {pname!r} of {self.name!r} has no type annotation. "
                    f"All parameters must be typed for schema generation."
                )
            tp = hints[pname]
            self._hints[pname] = tp
            prop = _type_to_json_schema(tp)
            if param.default is not inspect.Parameter.empty:
                if param.default is not None:
                    prop["default"] = param.default
            else:
                self._required.append(pname)
            properties[pname] = prop

        self._schema: dict[str, Any] = {"type": "object", "properties": properties}
        if self._required:
            self._schema["required"] = list(self._required)
        self._adapters = {pname: TypeAdapter(tp) for pname, tp in self._hints.items()}

    def parameters_schema(self) -> dict[str, Any]:
        return self._schema

    def describe(self) -> str:
        """JSON line used in the tool catalog of the prompt."""
        return canonical_json(
            {"name": self.name, "description": self.description, "params": self._schema}
        )

    def validate(self, params: Mapping[str, Any]) -> dict[str, Any]:
        """Return coerced keyword arguments or raise ``ToolValidationError``."""
        missing = [
            p
            for p in self._required
            if p not in params or (params[p] is None and not _is_optional(self._hints[p]))
        ]
        if missing:
            raise ToolValidationError("Invalid parameters payload.", missing=missing)

        field_errors: list[ToolFieldError] = []
        coerced: dict[str, Any] = {}
        for key, value in params.items():
            adapter = self._adapters.get(key)
            if adapter is None:
                if self._accepts_var_kwargs:
                    coerced[key] = value
                else:
                    field_errors.append(ToolFieldError(key, "Unsupported parameter"))
                continue
            try:
                coerced[key] = adapter.validate_python(value)
            except ValidationError as exc:
                for err in exc.errors():
                    field_errors.append(ToolFieldError(key, str(err.get("msg", "Invalid value"))))

        if field_errors:
            raise ToolValidationError("Parameter validation failed.", field_errors=field_errors)
        return coerced

    async def invoke(self, params: dict[str, Any]) -> Any:
        kwargs = self.validate(params)
        if asyncio.iscoroutinefunction(self.fn):
            return await self.fn(**kwargs)
        result = self.fn(**kwargs)
        if inspect.isawaitable(result):
            return await result
        return result

    def __repr__(self) -> str:
        return f"FunctionTool({self.name!r})"


def _first_doc_line(fn: Callable[..., Any]) -> str:
    if not fn.__doc__:
        return ""
    return fn.__doc__.strip().split("\n")[0].strip()


def tool(
    fn: Callable[..., Any] | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
    allow_dedupe: bool = True,
    dedupe_ttl_seconds: float | None = None,
) -> Any:
    """Decorator form of ``FunctionTool``; usable bare or with options."""

    def wrap(func: Callable[..., Any]) -> FunctionTool:
        return FunctionTool(
            func,
            name=name,
            description=description,
            allow_dedupe=allow_dedupe,
            dedupe_ttl_seconds=dedupe_ttl_seconds,
        )

    if fn is not None:
        return wrap(fn)
    return wrap


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------


def as_tool(obj: Any) -> Tool:
    if isinstance(obj, Tool):
        return obj
    if callable(obj):
        return FunctionTool(obj)
    raise TypeError(f"Cannot use {obj!r} as a tool")


def to_registry(tools: Iterable[Any] | Mapping[str, Any] | None) -> dict[str, Tool]:
    """Build a name → tool map. Plain functions are wrapped in ``FunctionTool``.

    Raises:
        ValueError: If two tools share a name.
    """
    if tools is None:
        return {}
    items = tools.values() if isinstance(tools, Mapping) else tools
    registry: dict[str, Tool] = {}
    for item in items:
        t = as_tool(item)
        if t.name in registry:
            raise ValueError(f"Duplicate tool name {t.name!r}: {registry[t.name]!r} and {t!r}")
        registry[t.name] = t
    return registry


def require_tool(registry: Mapping[str, Tool], name: str) -> Tool:
    found = registry.get(name)
    if found is None:
        raise UnknownToolError(name, list(registry))
    return found


def tool_schema(t: Tool) -> dict[str, Any]:
    provider = getattr(t, "parameters_schema", None)
    if callable(provider):
        schema = provider()
        if isinstance(schema, dict):
            return schema
    return {"type": "object", "properties": {}}


def describe_tool(t: Tool) -> str:
    describer = getattr(t, "describe", None)
    if callable(describer):
        return str(describer())
    return json.dumps({"params": {}})


def openai_tool_specs(registry: Mapping[str, Tool]) -> list[dict[str, Any]]:
    """OpenAI function-calling specs for every tool, ready for litellm ``tools=``."""
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": tool_schema(t),
            },
        }
        for t in registry.values()
    ]


def allows_dedupe(t: Tool) -> bool:
    return bool(getattr(t, "allow_dedupe", True))


def dedupe_ttl(t: Tool, default_seconds: float) -> float:
    custom = getattr(t, "dedupe_ttl_seconds", None)
    return float(custom) if custom is not None else default_seconds


__all__ = [
    "FunctionTool",
    "Tool",
    "allows_dedupe",
    "as_tool",
    "dedupe_ttl",
    "describe_tool",
    "openai_tool_specs",
    "require_tool",
    "to_registry",
    "tool",
    "tool_schema",
]
