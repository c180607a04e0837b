"""Chain-of-Thought: a fixed analysis -> planning -> strategy -> evaluation pipeline.

Each step is one model call returning ``{reasoning, confidence, insights}``;
evaluation also returns ``conclusion``. With validation enabled a final call
judges the chain, and an invalid chain whose average confidence is below
``min_reasoning_confidence`` fails while still returning what was built.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Mapping

from llm_agent.communicator import LLMCommunicator
from llm_agent.config import AgentConfig
from llm_agent.errors import ReasoningError
from llm_agent.metrics import SafeMetrics, ensure_safe
from llm_agent.models import ReasoningChain, StepType
from llm_agent.prompts import render_prompt
from llm_agent.reasoning.base import (
    METRICS_AGENT_ID,
    STATUS_AGENT_ID,
    ReasoningResult,
    as_score,
    as_str_list,
    parse_reasoning_payload,
    tool_names,
)
from llm_agent.status import StatusManager
from llm_agent.tools import Tool

logger = logging.getLogger(__name__)

REASONING_TYPE = "chain_of_thought"


@dataclass(frozen=True)
class _StepSpec:
    template: str
    step_type: StepType
    title: str
    details: str
    hint: str


_PIPELINE: tuple[_StepSpec, ...] = (
    _StepSpec("chain_analysis", "analysis", "Analyzing problem", "Breaking down the goal into components", "Understanding requirements"),
    _StepSpec("chain_planning", "planning", "Planning approach", "Developing solution strategy", "Creating execution plan"),
    _StepSpec("chain_strategy", "decision", "Developing strategy", "Determining execution approach", "Selecting optimal path"),
    _StepSpec("chain_evaluation", "evaluation", "Evaluating solution", "Assessing approach quality", "Finalizing decision"),
)


@dataclass
class _StepOutcome:
    reasoning: str
    confidence: float
    insights: list[str] = field(default_factory=list)
    conclusion: str = ""


@dataclass(frozen=True)
class ValidationOutcome:
    is_valid: bool
    error: str | None = None


class ChainOfThoughtEngine:
    reasoning_type = REASONING_TYPE

    def __init__(
        self,
        communicator: LLMCommunicator,
        config: AgentConfig,
        status: StatusManager,
        metrics: SafeMetrics | None = None,
    ) -> None:
        self._communicator = communicator
        self._config = config
        self._status = status
        self._metrics = ensure_safe(metrics)
        self.current_chain: ReasoningChain | None = None

    async def reason(self, goal: str, context: str, tools: Mapping[str, Tool]) -> ReasoningResult:
        logger.info("Starting Chain of Thought reasoning for goal: %s", goal)
        t0 = time.monotonic()
        chain = ReasoningChain(goal=goal)
        self.current_chain = chain
        try:
            result = await self._run(chain, goal, context, tools)
        except Exception as exc:
            logger.error("Chain of Thought reasoning failed: %s", exc)
            result = ReasoningResult(success=False, error=str(exc), chain=chain)

        result.execution_time_ms = (time.monotonic() - t0) * 1000
        self._metrics.record_reasoning_duration(METRICS_AGENT_ID, REASONING_TYPE, result.execution_time_ms)
        if result.success:
            self._metrics.record_reasoning_confidence(METRICS_AGENT_ID, REASONING_TYPE, result.confidence)
        logger.info(
            "Chain of Thought reasoning finished in %.0fms. Success: %s",
            result.execution_time_ms,
            result.success,
        )
        return result

    async def _run(
        self,
        chain: ReasoningChain,
        goal: str,
        context: str,
        tools: Mapping[str, Tool],
    ) -> ReasoningResult:
        names = tool_names(tools)
        all_insights: list[str] = []
        previous: list[str] = []
        total_confidence = 0.0
        last = _StepOutcome(reasoning="", confidence=0.5)

        for number, spec in enumerate(_PIPELINE):
            # Evaluation sees every insight; earlier steps see only the previous step's.
            insights = all_insights if spec.step_type == "evaluation" else previous
            last = await self._step(spec, number, goal=goal, context=context, tool_names=names, insights=insights)
            chain.add_step(last.reasoning, spec.step_type, last.confidence, last.insights)
            total_confidence += last.confidence
            all_insights.extend(last.insights)
            previous = last.insights

        final_confidence = total_confidence / len(_PIPELINE)
        conclusion = last.conclusion

        if self._config.enable_reasoning_validation:
            validation = await self.validate(goal, all_insights, conclusion, final_confidence)
            self._metrics.record_validation(METRICS_AGENT_ID, REASONING_TYPE, validation.is_valid, validation.error)
            if not validation.is_valid:
                logger.warning("Reasoning validation failed: %s", validation.error)
                if final_confidence < self._config.min_reasoning_confidence:
                    return ReasoningResult(
                        success=False,
                        conclusion=conclusion,
                        confidence=final_confidence,
                        chain=chain,
                        error=(
                            f"Reasoning confidence {final_confidence:.2f} below threshold "
                            f"{self._config.min_reasoning_confidence:.2f}"
                        ),
                    )

        chain.complete(conclusion, final_confidence)
        return ReasoningResult(
            success=True,
            conclusion=conclusion,
            confidence=final_confidence,
            chain=chain,
            metadata={
                "steps_completed": len(chain.steps),
                "total_insights": len(all_insights),
                "reasoning_type": REASONING_TYPE,
            },
        )

    async def _step(self, spec: _StepSpec, number: int, **variables: object) -> _StepOutcome:
        self._status.emit_status(STATUS_AGENT_ID, spec.title, spec.details, spec.hint)
        messages = render_prompt(spec.template, **variables)
        content = await self._communicator.call_with_streaming(messages, STATUS_AGENT_ID, number)
        if not content or not content.strip():
            raise ReasoningError("Empty LLM response")
        try:
            payload = parse_reasoning_payload(content)
        except ValueError as exc:
            raise ReasoningError(f"Failed to parse LLM response: {exc}", original=exc) from exc

        reasoning = payload.get("reasoning")
        conclusion = payload.get("conclusion")
        return _StepOutcome(
            reasoning=reasoning if isinstance(reasoning, str) else "",
            confidence=as_score(payload.get("confidence")),
            insights=as_str_list(payload.get("insights")),
            conclusion=conclusion if isinstance(conclusion, str) else "",
        )

    async def validate(
        self,
        goal: str,
        insights: list[str],
        conclusion: str,
        confidence: float,
    ) -> ValidationOutcome:
        """Ask the model whether the finished chain holds together."""
        self._status.emit_status(
            STATUS_AGENT_ID, "Validating reasoning", "Checking logic and consistency", "Quality assurance"
        )
        messages = render_prompt(
            "chain_validation", goal=goal, insights=insights, conclusion=conclusion, confidence=confidence
        )
        content = await self._communicator.call_with_streaming(messages, STATUS_AGENT_ID, len(_PIPELINE))
        if not content or not content.strip():
            return ValidationOutcome(False, "Empty LLM response")
        try:
            payload = parse_reasoning_payload(content)
        except ValueError as exc:
            return ValidationOutcome(False, f"Failed to parse LLM response: {exc}")
        error = payload.get("error")
        return ValidationOutcome(payload.get("is_valid") is True, error if isinstance(error, str) and error else None)


__all__ = ["ChainOfThoughtEngine", "REASONING_TYPE", "ValidationOutcome"]
