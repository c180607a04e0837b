"""LLM agent core: a bounded decide/act loop over litellm-routed models.

Usage:
    from llm_agent import Agent, AgentConfig, tool

    @tool(description="Current weather for a city")
    async def get_weather(city: str) -> dict:
        ...

    agent = Agent.from_model("gpt-4o", config=AgentConfig(max_turns=10))
    result = await agent.run("user-42", "Weather in Paris?", [get_weather])

    # Pre-action reasoning
    config = AgentConfig.from_env(reasoning_type="hybrid")

    # Live events
    agent.events.subscribe("status_update", lambda e: print(e.status_title))
"""

from llm_agent.agent import Agent, AgentResult
from llm_agent.aggregator import FunctionCall, LLMResponse, LLMStreamChunk, Usage, aggregate_chunks
from llm_agent.config import AgentConfig
from llm_agent.errors import (
    AgentError,
    DecisionParseError,
    FunctionArgumentError,
    LLMError,
    LLMTimeoutError,
    MaxTurnsExceededError,
    ReasoningError,
    ToolValidationError,
    UnknownToolError,
)
from llm_agent.events import EventManager
from llm_agent.foundation import canonical_json, hash_tool_call
from llm_agent.json_repair import loads_lenient, repair_json
from llm_agent.messages import MessageBuilder
from llm_agent.metrics import InMemoryMetrics, MetricsSink, SafeMetrics
from llm_agent.model_client import LiteLLMModelClient, ModelClient
from llm_agent.models import (
    AgentState,
    AgentTurn,
    ModelDecision,
    ReasoningChain,
    ReasoningTree,
    ToolCallRequest,
    ToolExecutionResult,
)
from llm_agent.orchestrator import AgentStepResult, Orchestrator
from llm_agent.reasoning import ReasoningManager, ReasoningResult
from llm_agent.state_store import MemoryStateStore, StateStore
from llm_agent.streaming import ThoughtsExtractor
from llm_agent.tools import FunctionTool, Tool, tool, to_registry

__all__ = [
    "Agent",
    "AgentConfig",
    "AgentError",
    "AgentResult",
    "AgentState",
    "AgentStepResult",
    "AgentTurn",
    "DecisionParseError",
    "EventManager",
    "FunctionArgumentError",
    "FunctionCall",
    "FunctionTool",
    "InMemoryMetrics",
    "LLMError",
    "LLMResponse",
    "LLMStreamChunk",
    "LLMTimeoutError",
    "LiteLLMModelClient",
    "MaxTurnsExceededError",
    "MemoryStateStore",
    "MessageBuilder",
    "MetricsSink",
    "ModelClient",
    "ModelDecision",
    "Orchestrator",
    "ReasoningChain",
    "ReasoningError",
    "ReasoningManager",
    "ReasoningResult",
    "ReasoningTree",
    "SafeMetrics",
    "StateStore",
    "ThoughtsExtractor",
    "Tool",
    "ToolCallRequest",
    "ToolExecutionResult",
    "ToolValidationError",
    "Usage",
    "UnknownToolError",
    "aggregate_chunks",
    "canonical_json",
    "hash_tool_call",
    "loads_lenient",
    "repair_json",
    "tool",
    "to_registry",
]
