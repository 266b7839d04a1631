"""Lifecycle events delivered to an injected event sink.

Events are plain dicts. A missing sink makes every emit a no-op; nothing is
buffered.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from agent_pipeline.workflow.definition import NodeDefinition

logger = logging.getLogger(__name__)

EventSink = Callable[[dict[str, Any]], None]

NODE_START = "node_start"
NODE_STOP = "node_stop"


def utc_timestamp() -> str:
    return datetime.now(tz=UTC).isoformat()


class EventEmitter:
    """Builds node lifecycle events and forwards them to the sink."""

    def __init__(self, sink: EventSink | None = None) -> None:
        self.sink = sink

    @property
    def enabled(self) -> bool:
        return self.sink is not None

    def emit(self, event: dict[str, Any]) -> None:
        if self.sink is None:
            return
        self.sink(event)

    def node_start(self, node: NodeDefinition) -> None:
        logger.debug("Node started", extra={"node": node.name})
        if self.sink is None:
            return
        self.emit(
            {
                "type": NODE_START,
                "node": node.name,
                "timestamp": utc_timestamp(),
                "agent_less": node.agent_less,
                "agents": node.agent_names,
                "dependencies": list(node.dependencies),
            }
        )

    def node_stop(self, node: NodeDefinition, *, duration: float, skipped: bool) -> None:
        logger.debug(
            "Node stopped",
            extra={"node": node.name, "duration": round(duration, 3), "skipped": skipped},
        )
        if self.sink is None:
            return
        self.emit(
            {
                "type": NODE_STOP,
                "node": node.name,
                "timestamp": utc_timestamp(),
                "agent_less": node.agent_less,
                "agents": node.agent_names,
                "dependencies": list(node.dependencies),
                "duration": round(duration, 3),
                "skipped": skipped,
            }
        )
