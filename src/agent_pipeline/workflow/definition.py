"""Immutable workflow definitions.

A loader (YAML, markdown, a builder) is expected to produce these; the engine
only ever reads them. Construction validates the structure, so a
:class:`WorkflowDefinition` that exists is one the engine can run.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from agent_pipeline.agents.definition import AgentDefinition
from agent_pipeline.workflow.context import ExecutionContext
from agent_pipeline.workflow.errors import ConfigurationError
from agent_pipeline.workflow.graph import DependencyGraph
from agent_pipeline.workflow.transformers import Transformer, as_transformer

TransformerLike = Transformer | Callable[[ExecutionContext], object] | str | Sequence[str]


class ScratchpadMode(str, Enum):
    ENABLED = "enabled"
    PER_NODE = "per_node"
    DISABLED = "disabled"

    @classmethod
    def parse(cls, value: ScratchpadMode | str) -> ScratchpadMode:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigurationError(
                f"Invalid scratchpad mode: {value!r}. Use enabled, per_node or disabled"
            ) from None


def _names(value: Iterable[str] | str | None) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(dict.fromkeys(value))


@dataclass(frozen=True, slots=True)
class NodeAgentConfig:
    """One agent as configured inside a node.

    ``tools=None`` inherits the agent's global tool list, an explicit sequence
    (even an empty one) replaces it for this node only. ``reset_context``
    clears the agent's conversation before the node runs.
    """

    agent: str
    delegates_to: tuple[str, ...] = ()
    tools: tuple[str, ...] | None = None
    reset_context: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "delegates_to", _names(self.delegates_to))
        if self.tools is not None:
            object.__setattr__(self, "tools", _names(self.tools))


@dataclass(frozen=True, slots=True)
class NodeDefinition:
    """A named step: zero or more agents wrapped by optional transformers."""

    name: str
    agent_configs: tuple[NodeAgentConfig, ...] = ()
    dependencies: tuple[str, ...] = ()
    lead: str | None = None
    input_transformer: TransformerLike | None = None
    output_transformer: TransformerLike | None = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ConfigurationError("Node name must not be empty")
        configs = tuple(
            NodeAgentConfig(agent=c) if isinstance(c, str) else c for c in self.agent_configs
        )
        object.__setattr__(self, "agent_configs", configs)
        object.__setattr__(self, "dependencies", _names(self.dependencies))
        object.__setattr__(self, "input_transformer", as_transformer(self.input_transformer))
        object.__setattr__(self, "output_transformer", as_transformer(self.output_transformer))

    @property
    def agent_less(self) -> bool:
        return not self.agent_configs

    @property
    def agent_names(self) -> list[str]:
        return [config.agent for config in self.resolved_agent_configs()]

    @property
    def lead_agent(self) -> str | None:
        if self.lead is not None:
            return self.lead
        return self.agent_configs[0].agent if self.agent_configs else None

    def resolved_agent_configs(self) -> tuple[NodeAgentConfig, ...]:
        """Declared agents plus delegates that were never declared themselves.

        ``NodeAgentConfig("backend", delegates_to=("tester",))`` alone yields
        backend and an auto-added tester with no delegation of its own.
        """
        declared = {config.agent for config in self.agent_configs}
        added: dict[str, NodeAgentConfig] = {}
        for config in self.agent_configs:
            for delegate in config.delegates_to:
                if delegate not in declared and delegate not in added:
                    added[delegate] = NodeAgentConfig(agent=delegate)
        return self.agent_configs + tuple(added.values())

    def validate(self) -> None:
        """Check the node's own structure.

        Raises:
            ConfigurationError: On duplicate agents, a missing lead, or an
                agent-less node without transformers.
        """
        if self.agent_less:
            if self.input_transformer is None and self.output_transformer is None:
                raise ConfigurationError(
                    f"Agent-less node '{self.name}' must have at least one transformer "
                    "(input or output)"
                )
            if self.lead is not None:
                raise ConfigurationError(
                    f"Agent-less node '{self.name}' cannot name a lead agent"
                )
            return

        seen: set[str] = set()
        for config in self.agent_configs:
            if config.agent in seen:
                raise ConfigurationError(
                    f"Node '{self.name}' declares agent '{config.agent}' more than once"
                )
            seen.add(config.agent)

        if self.lead is not None and self.lead not in self.agent_names:
            raise ConfigurationError(
                f"Node '{self.name}' lead agent '{self.lead}' not found in node's agents"
            )


@dataclass(frozen=True, slots=True)
class WorkflowDefinition:
    """A named, validated set of nodes plus the shared agent registry."""

    name: str
    start_node: str
    nodes: Mapping[str, NodeDefinition]
    agents: Mapping[str, AgentDefinition] = field(default_factory=dict)
    scratchpad: ScratchpadMode = ScratchpadMode.ENABLED

    def __post_init__(self) -> None:
        object.__setattr__(self, "nodes", MappingProxyType(self._index_nodes(self.nodes)))
        object.__setattr__(self, "agents", MappingProxyType(self._index_agents(self.agents)))
        object.__setattr__(self, "scratchpad", ScratchpadMode.parse(self.scratchpad))
        self.validate()

    @staticmethod
    def _index_nodes(
        nodes: Mapping[str, NodeDefinition] | Iterable[NodeDefinition],
    ) -> dict[str, NodeDefinition]:
        items = nodes.items() if isinstance(nodes, Mapping) else ((n.name, n) for n in nodes)
        indexed: dict[str, NodeDefinition] = {}
        for key, node in items:
            if key != node.name:
                raise ConfigurationError(f"Node registered as '{key}' is named '{node.name}'")
            if key in indexed:
                raise ConfigurationError(f"Duplicate node name '{key}'")
            indexed[key] = node
        return indexed

    @staticmethod
    def _index_agents(
        agents: Mapping[str, AgentDefinition] | Iterable[AgentDefinition],
    ) -> dict[str, AgentDefinition]:
        items = agents.items() if isinstance(agents, Mapping) else ((a.name, a) for a in agents)
        indexed: dict[str, AgentDefinition] = {}
        for key, agent in items:
            if key != agent.name:
                raise ConfigurationError(f"Agent registered as '{key}' is named '{agent.name}'")
            if key in indexed:
                raise ConfigurationError(f"Duplicate agent name '{key}'")
            indexed[key] = agent
        return indexed

    def validate(self) -> None:
        """Validate the whole definition, dependency graph included.

        Raises:
            ConfigurationError: On any structural problem.
            CircularDependencyError: If ``depends_on`` forms a cycle.
        """
        if not self.nodes:
            raise ConfigurationError(f"Workflow '{self.name}' has no nodes")

        if self.start_node not in self.nodes:
            raise ConfigurationError(
                f"start_node '{self.start_node}' not found. "
                f"Available nodes: {', '.join(self.nodes)}"
            )

        for node in self.nodes.values():
            node.validate()

        for node in self.nodes.values():
            for config in node.agent_configs:
                if config.agent not in self.agents:
                    raise ConfigurationError(
                        f"Node '{node.name}' references undefined agent '{config.agent}'"
                    )
                for delegate in config.delegates_to:
                    if delegate not in self.agents:
                        raise ConfigurationError(
                            f"Node '{node.name}' agent '{config.agent}' delegates to "
                            f"undefined agent '{delegate}'"
                        )

        DependencyGraph(self)

        start = self.nodes[self.start_node]
        if start.dependencies:
            raise ConfigurationError(
                f"start_node '{self.start_node}' has dependencies: "
                f"{', '.join(start.dependencies)}. start_node must have no dependencies."
            )

    @property
    def has_agent_nodes(self) -> bool:
        return any(not node.agent_less for node in self.nodes.values())

    def describe(self) -> dict[str, Any]:
        """Plain-data summary, handy for logs and the CLI."""
        graph = DependencyGraph(self)
        return {
            "name": self.name,
            "start_node": self.start_node,
            "scratchpad": self.scratchpad.value,
            "order": list(graph.topological_order()),
            "nodes": {
                name: {
                    "agents": node.agent_names,
                    "lead": node.lead_agent,
                    "dependencies": list(node.dependencies),
                    "dependents": list(graph.dependents_of(name)),
                    "input_transformer": (
                        node.input_transformer.description if node.input_transformer else None
                    ),
                    "output_transformer": (
                        node.output_transformer.description if node.output_transformer else None
                    ),
                }
                for name, node in self.nodes.items()
            },
        }
