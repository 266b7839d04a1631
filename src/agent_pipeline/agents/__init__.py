"""Agent definitions and the agent-execution contract."""

from agent_pipeline.agents.definition import AgentDefinition
from agent_pipeline.agents.llm_runner import LLMAgentRunner
from agent_pipeline.agents.runner import AgentOverlay, AgentResult, AgentRunner, NodeAgentSpec

__all__ = [
    "AgentDefinition",
    "AgentOverlay",
    "AgentResult",
    "AgentRunner",
    "LLMAgentRunner",
    "NodeAgentSpec",
]
