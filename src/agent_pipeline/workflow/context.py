"""Per-call context handed to transformers, node results and control outcomes.

Transformers never raise to steer the run. They return one of the outcome
objects below (directly, through the helpers on :class:`ExecutionContext`, or
as a control mapping) and the engine acts on it after the call returns.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

COMPUTATION_AGENT_PREFIX = "computation:"
HALTED_AGENT = "halted"
SKIPPED_AGENT = "skipped"


class TransformEvent(str, Enum):
    INPUT = "input"
    OUTPUT = "output"


@dataclass(frozen=True, slots=True)
class NodeResult:
    """Outcome of one execution of a node, as stored in ``all_results``."""

    agent: str
    content: str | None
    success: bool = True
    duration: float = 0.0
    skipped: bool = False
    error: Exception | None = None

    def to_json(self) -> dict[str, object]:
        return {
            "agent": self.agent,
            "content": self.content,
            "duration": self.duration,
            "success": self.success,
        }


@dataclass(frozen=True, slots=True)
class Continue:
    """Proceed with ``content`` as the new payload."""

    content: str


@dataclass(frozen=True, slots=True)
class Skip:
    """Bypass the node's agents (input side) or pass through (output side)."""

    content: str | None


@dataclass(frozen=True, slots=True)
class Halt:
    """Stop the whole run.

    ``error`` separates "the workflow chose to stop" (an explicit halt from a
    function transformer) from "something failed" (a command transformer
    exiting 2, timing out or failing to spawn).
    """

    content: str | None
    reason: str = ""
    error: bool = False


@dataclass(frozen=True, slots=True)
class GotoNode:
    """Jump to ``target``, handing it ``content`` as input."""

    target: str
    content: str


TransformOutcome = Continue | Skip | Halt | GotoNode


def freeze_results(results: Mapping[str, NodeResult]) -> Mapping[str, NodeResult]:
    """Read-only snapshot of accumulated results, preserving order."""
    return MappingProxyType(dict(results))


@dataclass(frozen=True, slots=True)
class ExecutionContext:
    """What a transformer sees for one call.

    ``all_results`` is a read-only snapshot. ``dependencies`` is only filled
    for input transformers.
    """

    node: str
    event: TransformEvent
    original_prompt: str
    content: str | None
    all_results: Mapping[str, NodeResult] = field(default_factory=dict)
    dependencies: tuple[str, ...] = ()
    cancel_event: threading.Event | None = field(default=None, repr=False, compare=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def result_of(self, node: str) -> NodeResult | None:
        return self.all_results.get(node)

    def skip_execution(self, content: str | None) -> Skip:
        """Skip the node's agents and use ``content`` as its result."""
        if content is None:
            raise ValueError(
                f"skip_execution requires content (got None). Node: {self.node}"
            )
        return Skip(content=content)

    def halt_workflow(self, content: str | None, reason: str = "") -> Halt:
        """Stop the run and return ``content`` as the final result."""
        if content is None:
            raise ValueError(
                f"halt_workflow requires content (got None). Node: {self.node}"
            )
        return Halt(content=content, reason=reason)

    def goto_node(self, node: str, content: str | None) -> GotoNode:
        """Continue the run at ``node`` with ``content`` as its input."""
        if content is None:
            raise ValueError(
                "goto_node requires content (got None). This often happens when the "
                f"previous node failed. Node: {self.node}, Target: {node}"
            )
        return GotoNode(target=node, content=content)

    def to_payload(self) -> dict[str, object]:
        """JSON document written to command transformers on stdin."""
        payload: dict[str, object] = {
            "event": self.event.value,
            "node": self.node,
            "original_prompt": self.original_prompt,
            "content": self.content,
        }
        if self.event is TransformEvent.INPUT:
            payload["dependencies"] = list(self.dependencies)
        payload["all_results"] = {
            name: result.to_json() for name, result in self.all_results.items()
        }
        return payload
