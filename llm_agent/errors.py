"""Structured error types for llm_agent.

Most failures inside a run are recorded on turns rather than raised (see
``Orchestrator``). The types below are what the layers raise to each other,
and what hosts can catch around the model client:

    from llm_agent.errors import LLMRateLimitError, UnknownToolError

    try:
        async for chunk in client.stream(messages):
            ...
    except LLMRateLimitError:
        # Transient; the orchestrator turns this into a retry-intent turn
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class AgentError(Exception):
    """Base for all llm_agent errors."""

    def __init__(self, message: str, original: Exception | None = None) -> None:
        super().__init__(message)
        self.original = original


# ---------------------------------------------------------------------------
# Model-call failures
# ---------------------------------------------------------------------------


class LLMError(AgentError):
    """Base for model-provider failures."""


class LLMRateLimitError(LLMError):
    """Transient rate limit (429)."""


class LLMQuotaExhaustedError(LLMError):
    """Permanent quota/billing exhaustion."""


class LLMAuthError(LLMError):
    """Authentication failed (401/403)."""


class LLMContentFilterError(LLMError):
    """Content policy violation, request was blocked."""


class LLMTransientError(LLMError):
    """Server error (500/502/503) or connection failure."""


class LLMTimeoutError(LLMError):
    """Model call exceeded its deadline."""


class LLMModelNotFoundError(LLMError):
    """Model doesn't exist (404)."""


class LLMEmptyResponseError(LLMError):
    """Model returned neither text nor a function call."""


# ---------------------------------------------------------------------------
# Decision / tool failures
# ---------------------------------------------------------------------------


class DecisionParseError(AgentError, ValueError):
    """Model output does not satisfy the decision contract."""


class FunctionArgumentError(AgentError, ValueError):
    """Function-call arguments could not be decoded into a parameter map."""


class UnknownToolError(AgentError, KeyError):
    """A decision referenced a tool that is not in the registry."""

    def __init__(self, tool: str, available: list[str] | None = None) -> None:
        names = ", ".join(sorted(available or [])) or "none"
        super().__init__(f"Tool '{tool}' not found. Available tools: {names}")
        self.tool = tool
        self.available = sorted(available or [])

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message.
        return str(self.args[0])


@dataclass
class ToolFieldError:
    """One field-level validation problem."""

    field: str
    message: str


class ToolValidationError(AgentError):
    """Tool arguments failed validation; carries field-level detail."""

    def __init__(
        self,
        message: str,
        *,
        missing: list[str] | None = None,
        field_errors: list[ToolFieldError] | None = None,
        original: Exception | None = None,
    ) -> None:
        super().__init__(message, original=original)
        self.missing = list(missing or [])
        self.field_errors = list(field_errors or [])


class MaxTurnsExceededError(AgentError):
    """Turn budget spent without a finish decision."""

    def __init__(self, max_turns: int, last_error: str | None = None) -> None:
        message = f"Max turns {max_turns} reached without finish."
        if last_error:
            message += f" Last error: {last_error}"
        super().__init__(message)
        self.max_turns = max_turns
        self.last_error = last_error


# ---------------------------------------------------------------------------
# Reasoning structures
# ---------------------------------------------------------------------------


class ReasoningError(AgentError):
    """Base for reasoning-structure violations."""


class ChainClosedError(ReasoningError):
    """Step added to, or completion of, an already completed chain."""


class TreeCapacityError(ReasoningError):
    """Node rejected at node-count capacity or maximum depth."""


class TreeRootExistsError(ReasoningError):
    """A root was created on a tree that already has one."""


class NodeNotFoundError(ReasoningError, KeyError):
    """Referenced node id is not in the tree."""

    def __str__(self) -> str:
        return str(self.args[0])


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


_QUOTA_PATTERNS = [
    "quota",
    "billing",
    "insufficient",
    "exceeded your current",
    "plan and billing",
]


def _litellm_error_types(module: Any, names: tuple[str, ...]) -> tuple[type[BaseException], ...]:
    """Resolve optional litellm exception classes without static attribute coupling."""
    out: list[type[BaseException]] = []
    for name in names:
        candidate = getattr(module, name, None)
        if isinstance(candidate, type) and issubclass(candidate, BaseException):
            out.append(candidate)
    return tuple(out)


def classify_error(error: Exception) -> type[LLMError]:
    """Classify a provider exception into an LLMError subtype.

    Uses litellm exception types when available, falls back to string matching.
    """
    import litellm as _lt

    if isinstance(error, TimeoutError):
        return LLMTimeoutError

    timeout_types = _litellm_error_types(_lt, ("Timeout",))
    if timeout_types and isinstance(error, timeout_types):
        return LLMTimeoutError

    auth_types = _litellm_error_types(_lt, ("AuthenticationError", "PermissionDeniedError"))
    if auth_types and isinstance(error, auth_types):
        return LLMAuthError

    not_found_types = _litellm_error_types(_lt, ("NotFoundError",))
    if not_found_types and isinstance(error, not_found_types):
        return LLMModelNotFoundError

    content_types = _litellm_error_types(_lt, ("ContentPolicyViolationError",))
    if content_types and isinstance(error, content_types):
        return LLMContentFilterError

    budget_types = _litellm_error_types(_lt, ("BudgetExceededError",))
    if budget_types and isinstance(error, budget_types):
        return LLMQuotaExhaustedError

    rate_types = _litellm_error_types(_lt, ("RateLimitError",))
    if rate_types and isinstance(error, rate_types):
        error_str = str(error).lower()
        if any(p in error_str for p in _QUOTA_PATTERNS):
            return LLMQuotaExhaustedError
        return LLMRateLimitError

    transient_types = _litellm_error_types(
        _lt,
        (
            "InternalServerError",
            "ServiceUnavailableError",
            "APIConnectionError",
            "BadGatewayError",
        ),
    )
    if transient_types and isinstance(error, transient_types):
        return LLMTransientError

    # Fallback: string pattern matching
    error_str = str(error).lower()

    if any(p in error_str for p in _QUOTA_PATTERNS):
        return LLMQuotaExhaustedError
    if "401" in error_str or "authentication" in error_str or "unauthorized" in error_str:
        return LLMAuthError
    if "403" in error_str or "forbidden" in error_str:
        return LLMAuthError
    if "404" in error_str or "does not exist" in error_str:
        return LLMModelNotFoundError
    if "content" in error_str and ("policy" in error_str or "filter" in error_str):
        return LLMContentFilterError
    if "rate" in error_str and "limit" in error_str:
        return LLMRateLimitError
    if "timeout" in error_str or "timed out" in error_str:
        return LLMTimeoutError
    if any(p in error_str for p in ("connection", "500", "502", "503", "server error")):
        return LLMTransientError

    return LLMError


def wrap_error(error: Exception) -> LLMError:
    """Wrap an exception in the appropriate LLMError subclass.

    If the error is already an LLMError, returns it unchanged.
    """
    if isinstance(error, LLMError):
        return error
    cls = classify_error(error)
    return cls(str(error), original=error)
