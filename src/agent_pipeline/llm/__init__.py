"""LLM package initialization."""

from agent_pipeline.llm.factory import LLMFactory
from agent_pipeline.llm.provider import LLMProvider

__all__ = [
    "LLMFactory",
    "LLMProvider",
]
