"""Static dependency graph over a workflow's nodes.

The graph validates that every declared dependency exists and that the
``depends_on`` relation is acyclic, then fixes one deterministic topological
order. That order is the default forward progression of a run; it is not a
scheduler, only one path through the graph executes.
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from agent_pipeline.workflow.errors import CircularDependencyError, ConfigurationError

if TYPE_CHECKING:
    from agent_pipeline.workflow.context import NodeResult
    from agent_pipeline.workflow.definition import WorkflowDefinition

logger = logging.getLogger(__name__)

_WHITE, _GRAY, _BLACK = 0, 1, 2


class DependencyGraph:
    """Edges node -> dependencies, validated once at construction."""

    def __init__(self, definition: WorkflowDefinition) -> None:
        self._start_node = definition.start_node
        self._declared: list[str] = list(definition.nodes)
        self._dependencies: dict[str, tuple[str, ...]] = {
            name: tuple(node.dependencies) for name, node in definition.nodes.items()
        }
        self._validate_references()
        self._detect_cycles()
        self._order: tuple[str, ...] = self._build_order()
        self._positions = {name: idx for idx, name in enumerate(self._order)}
        self._dependents: dict[str, tuple[str, ...]] = {
            name: tuple(n for n in self._order if name in self._dependencies[n])
            for name in self._order
        }

    def _validate_references(self) -> None:
        for name, deps in self._dependencies.items():
            for dep in deps:
                if dep not in self._dependencies:
                    raise ConfigurationError(f"Node '{name}' depends on unknown node '{dep}'")

    def _detect_cycles(self) -> None:
        color = {name: _WHITE for name in self._declared}

        for root in self._declared:
            if color[root] != _WHITE:
                continue
            # Iterative three-color DFS; ``path`` mirrors the gray nodes on the stack.
            path: list[str] = [root]
            stack = [(root, iter(self._dependencies[root]))]
            color[root] = _GRAY
            while stack:
                name, deps = stack[-1]
                dep = next(deps, None)
                if dep is None:
                    color[name] = _BLACK
                    stack.pop()
                    path.pop()
                    continue
                if color[dep] == _GRAY:
                    cycle = path[path.index(dep) :] + [dep]
                    raise CircularDependencyError(cycle)
                if color[dep] == _WHITE:
                    color[dep] = _GRAY
                    path.append(dep)
                    stack.append((dep, iter(self._dependencies[dep])))

    def _build_order(self) -> tuple[str, ...]:
        # Kahn's algorithm; ready nodes leave in declaration order, start node first.
        rank = {name: idx for idx, name in enumerate(self._declared)}
        if self._start_node in rank:
            rank[self._start_node] = -1

        in_degree = {name: len(set(deps)) for name, deps in self._dependencies.items()}
        dependents: dict[str, list[str]] = {name: [] for name in self._declared}
        for name in self._declared:
            for dep in dict.fromkeys(self._dependencies[name]):
                dependents[dep].append(name)

        ready = [(rank[name], name) for name, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)
        order: list[str] = []
        while ready:
            _, name = heapq.heappop(ready)
            order.append(name)
            for dependent in dependents[name]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, (rank[dependent], dependent))

        return tuple(order)

    def topological_order(self) -> list[str]:
        """Every node exactly once, each after all of its dependencies."""
        return list(self._order)

    def position(self, node: str) -> int:
        try:
            return self._positions[node]
        except KeyError:
            raise ConfigurationError(
                f"Unknown node '{node}'. Available nodes: {', '.join(self._order)}"
            ) from None

    def dependencies_of(self, node: str) -> tuple[str, ...]:
        self.position(node)
        return self._dependencies[node]

    def dependents_of(self, node: str) -> tuple[str, ...]:
        self.position(node)
        return self._dependents[node]

    def next_node(self, after: str | None, all_results: Mapping[str, NodeResult]) -> str | None:
        """The default successor of ``after``.

        Returns the first node positioned after ``after`` in the topological
        order whose dependencies all have results, or ``None`` at the end of
        the graph. Nodes whose dependencies were bypassed by a jump are passed
        over.
        """
        start = 0 if after is None else self.position(after) + 1
        for name in self._order[start:]:
            missing = [dep for dep in self._dependencies[name] if dep not in all_results]
            if not missing:
                return name
            logger.debug(
                "Passing over node with unmet dependencies",
                extra={"node": name, "missing": missing},
            )
        return None

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, node: object) -> bool:
        return node in self._positions
