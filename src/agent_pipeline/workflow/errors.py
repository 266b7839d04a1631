"""Exception taxonomy for workflow construction and execution."""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for every error raised by the workflow engine."""


class ConfigurationError(WorkflowError):
    """A workflow cannot run as configured.

    Raised for structural problems (unknown start node, undefined agents or
    dependencies, nodes with neither agents nor transformers), for command
    transformers that halt the run, and for configuration-shaped failures
    reported by the agent runner.
    """


class CircularDependencyError(ConfigurationError):
    """The static dependency graph contains a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(
            "Circular dependency detected: "
            + " -> ".join(self.cycle)
            + ". Use goto_node in a transformer to revisit nodes instead."
        )


class WorkflowLoopError(ConfigurationError):
    """A node was revisited more often than the engine allows."""

    def __init__(self, node: str, visits: int) -> None:
        self.node = node
        self.visits = visits
        super().__init__(f"Node '{node}' exceeded the visit limit ({visits} visits)")


class WorkflowCancelledError(WorkflowError):
    """A background run was cancelled before it completed."""
