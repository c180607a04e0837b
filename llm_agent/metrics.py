"""Metrics sink protocol, a failure-isolating wrapper, and an in-memory collector.

Sinks are called synchronously from deep inside the orchestrator. Wrap any
external sink in ``SafeMetrics`` so a broken exporter only produces a log
warning.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, defaultdict
from typing import Any, Callable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class MetricsSink(Protocol):
    def record_run_completion(
        self, agent_id: str, succeeded: bool, total_turns: int, error_type: str | None = None
    ) -> None: ...

    def record_run_duration(self, agent_id: str, duration_ms: float, total_turns: int) -> None: ...

    def record_step_completion(
        self,
        agent_id: str,
        turn_index: int,
        succeeded: bool,
        executed_tool: bool,
        error_type: str | None = None,
    ) -> None: ...

    def record_step_duration(self, agent_id: str, turn_index: int, duration_ms: float) -> None: ...

    def record_llm_call(
        self,
        agent_id: str,
        turn_index: int,
        succeeded: bool,
        model_name: str,
        duration_ms: float,
        error_type: str | None = None,
    ) -> None: ...

    def record_tool_call(
        self,
        agent_id: str,
        turn_index: int,
        tool_name: str,
        succeeded: bool,
        duration_ms: float,
        error_type: str | None = None,
    ) -> None: ...

    def record_reasoning_duration(self, agent_id: str, reasoning_type: str, duration_ms: float) -> None: ...

    def record_reasoning_confidence(self, agent_id: str, reasoning_type: str, confidence: float) -> None: ...

    def record_dedup_event(self, agent_id: str, tool_name: str, cache_hit: bool) -> None: ...

    def record_loop_detection(self, agent_id: str, loop_type: str, consecutive_failures: int) -> None: ...

    def record_validation(
        self, agent_id: str, validation_type: str, passed: bool, error_message: str | None = None
    ) -> None: ...

    def record_token_usage(
        self, agent_id: str, turn_index: int, input_tokens: int, output_tokens: int, model_name: str
    ) -> None: ...

    def record_response_quality(self, agent_id: str, response_length: int, has_final_output: bool) -> None: ...

    def record_state_store_operation(self, agent_id: str, operation: str, duration_ms: float) -> None: ...


class InMemoryMetrics:
    """Thread-safe counters and timing samples, keyed by flat metric names.

    Counter keys look like ``"dedup.hit:search"``; timings like
    ``"tool_call_ms:search"``. ``snapshot()`` returns a plain dict copy.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.counters: Counter[str] = Counter()
        self.timings: dict[str, list[float]] = defaultdict(list)
        self.values: dict[str, list[float]] = defaultdict(list)
        self.validations: list[dict[str, Any]] = []

    def _count(self, key: str, amount: int = 1) -> None:
        with self._lock:
            self.counters[key] += amount

    def _time(self, key: str, duration_ms: float) -> None:
        with self._lock:
            self.timings[key].append(float(duration_ms))

    def record_run_completion(
        self, agent_id: str, succeeded: bool, total_turns: int, error_type: str | None = None
    ) -> None:
        self._count("run.succeeded" if succeeded else "run.failed")

    def record_run_duration(self, agent_id: str, duration_ms: float, total_turns: int) -> None:
        self._time("run_ms", duration_ms)

    def record_step_completion(
        self,
        agent_id: str,
        turn_index: int,
        succeeded: bool,
        executed_tool: bool,
        error_type: str | None = None,
    ) -> None:
        self._count("step.succeeded" if succeeded else "step.failed")
        if executed_tool:
            self._count("step.executed_tool")

    def record_step_duration(self, agent_id: str, turn_index: int, duration_ms: float) -> None:
        self._time("step_ms", duration_ms)

    def record_llm_call(
        self,
        agent_id: str,
        turn_index: int,
        succeeded: bool,
        model_name: str,
        duration_ms: float,
        error_type: str | None = None,
    ) -> None:
        self._count("llm_call.succeeded" if succeeded else "llm_call.failed")
        self._time("llm_call_ms", duration_ms)

    def record_tool_call(
        self,
        agent_id: str,
        turn_index: int,
        tool_name: str,
        succeeded: bool,
        duration_ms: float,
        error_type: str | None = None,
    ) -> None:
        self._count(f"tool_call.{'succeeded' if succeeded else 'failed'}:{tool_name}")
        self._time(f"tool_call_ms:{tool_name}", duration_ms)

    def record_reasoning_duration(self, agent_id: str, reasoning_type: str, duration_ms: float) -> None:
        self._time(f"reasoning_ms:{reasoning_type}", duration_ms)

    def record_reasoning_confidence(self, agent_id: str, reasoning_type: str, confidence: float) -> None:
        with self._lock:
            self.values[f"reasoning_confidence:{reasoning_type}"].append(float(confidence))

    def record_dedup_event(self, agent_id: str, tool_name: str, cache_hit: bool) -> None:
        self._count(f"dedup.{'hit' if cache_hit else 'miss'}:{tool_name}")

    def record_loop_detection(self, agent_id: str, loop_type: str, consecutive_failures: int) -> None:
        self._count(f"loop_detected:{loop_type}")

    def record_validation(
        self, agent_id: str, validation_type: str, passed: bool, error_message: str | None = None
    ) -> None:
        self._count(f"validation.{'passed' if passed else 'failed'}:{validation_type}")
        with self._lock:
            self.validations.append(
                {"type": validation_type, "passed": passed, "error": error_message}
            )

    def record_token_usage(
        self, agent_id: str, turn_index: int, input_tokens: int, output_tokens: int, model_name: str
    ) -> None:
        self._count("tokens.input", input_tokens)
        self._count("tokens.output", output_tokens)

    def record_response_quality(self, agent_id: str, response_length: int, has_final_output: bool) -> None:
        with self._lock:
            self.values["response_length"].append(float(response_length))

    def record_state_store_operation(self, agent_id: str, operation: str, duration_ms: float) -> None:
        self._count(f"state_store:{operation}")
        self._time(f"state_store_ms:{operation}", duration_ms)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self.counters),
                "timings": {k: list(v) for k, v in self.timings.items()},
                "values": {k: list(v) for k, v in self.values.items()},
            }


class SafeMetrics:
    """Proxy that forwards every ``record_*`` call and logs instead of raising."""

    def __init__(self, sink: MetricsSink | None = None) -> None:
        self.sink: Any = sink if sink is not None else InMemoryMetrics()

    def __getattr__(self, name: str) -> Callable[..., None]:
        target = getattr(self.sink, name)
        if not name.startswith("record_"):
            return target  # type: ignore[no-any-return]

        def _safe(*args: Any, **kwargs: Any) -> None:
            try:
                target(*args, **kwargs)
            except Exception as exc:
                logger.warning("Metrics sink %s failed: %s", name, exc)

        return _safe


def ensure_safe(metrics: MetricsSink | SafeMetrics | None) -> SafeMetrics:
    if isinstance(metrics, SafeMetrics):
        return metrics
    return SafeMetrics(metrics)


__all__ = ["InMemoryMetrics", "MetricsSink", "SafeMetrics", "ensure_safe"]
