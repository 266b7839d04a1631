"""Agent Pipeline.

Compose LLM-backed agents into a directed workflow of named nodes, with
function or command transformers that can rewrite content, skip a node,
jump to another node or halt the run.
"""

__version__ = "0.1.0"

from agent_pipeline.agents.definition import AgentDefinition
from agent_pipeline.core.config import PipelineConfig
from agent_pipeline.workflow.context import ExecutionContext, NodeResult
from agent_pipeline.workflow.definition import (
    NodeAgentConfig,
    NodeDefinition,
    ScratchpadMode,
    WorkflowDefinition,
)
from agent_pipeline.workflow.engine import WorkflowEngine, WorkflowResult, WorkflowRunHandle
from agent_pipeline.workflow.errors import (
    CircularDependencyError,
    ConfigurationError,
    WorkflowCancelledError,
    WorkflowError,
    WorkflowLoopError,
)

__all__ = [
    "__version__",
    "AgentDefinition",
    "CircularDependencyError",
    "ConfigurationError",
    "ExecutionContext",
    "NodeAgentConfig",
    "NodeDefinition",
    "NodeResult",
    "PipelineConfig",
    "ScratchpadMode",
    "WorkflowCancelledError",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowError",
    "WorkflowLoopError",
    "WorkflowResult",
    "WorkflowRunHandle",
]
