"""Contract between the workflow engine and the agent-execution layer.

The engine resolves each node's agents into an :class:`AgentOverlay` and
hands it to an :class:`AgentRunner`. The runner owns conversations,
delegation wiring and provider retries; the engine only awaits one aggregate
:class:`AgentResult` per node.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from agent_pipeline.agents.definition import AgentDefinition
from agent_pipeline.tools.scratchpad import ScratchpadStorage
from agent_pipeline.workflow.events import EventSink


@dataclass(frozen=True, slots=True)
class NodeAgentSpec:
    """An agent with the node's tool and delegation overrides applied."""

    definition: AgentDefinition
    tools: tuple[str, ...]
    delegates_to: tuple[str, ...]
    reset_context: bool = True

    @property
    def name(self) -> str:
        return self.definition.name


@dataclass(frozen=True, slots=True)
class AgentOverlay:
    """Everything a runner needs to execute one node."""

    node: str
    workflow: str
    lead: str
    agents: Mapping[str, NodeAgentSpec]
    scratchpad: ScratchpadStorage | None = field(default=None, compare=False)
    event_sink: EventSink | None = field(default=None, repr=False, compare=False)

    @property
    def lead_spec(self) -> NodeAgentSpec:
        return self.agents[self.lead]

    def emit(self, event: dict[str, object]) -> None:
        """Pass a runner event to the workflow's sink, if any."""
        if self.event_sink is not None:
            self.event_sink(event)


@dataclass(frozen=True, slots=True)
class AgentResult:
    content: str | None
    agent: str
    success: bool = True
    error: Exception | None = None


@runtime_checkable
class AgentRunner(Protocol):
    """Executes a node's agents.

    Runtime failures are reported as ``success=False``. Failures that mean the
    static configuration can never work (an unknown delegate, a disallowed
    tool) are raised as :class:`~agent_pipeline.workflow.errors.ConfigurationError`.
    """

    def execute(self, overlay: AgentOverlay, prompt: str, reset_context: bool) -> AgentResult: ...
