"""Pre-action reasoning engines: Chain-of-Thought, Tree-of-Thoughts and Hybrid."""

from llm_agent.reasoning.base import ReasoningEngine, ReasoningResult
from llm_agent.reasoning.chain import ChainOfThoughtEngine
from llm_agent.reasoning.hybrid import HybridEngine
from llm_agent.reasoning.manager import ReasoningManager
from llm_agent.reasoning.strategies import ExplorationResult, strategy_for
from llm_agent.reasoning.tree import TreeOfThoughtsEngine, TreeThinker

__all__ = [
    "ChainOfThoughtEngine",
    "ExplorationResult",
    "HybridEngine",
    "ReasoningEngine",
    "ReasoningManager",
    "ReasoningResult",
    "TreeOfThoughtsEngine",
    "TreeThinker",
    "strategy_for",
]
