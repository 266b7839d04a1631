"""Drives a workflow run node by node.

Exactly one node is active at a time. After each node the engine either
stops (halt, failure, end of graph), jumps (goto) or advances to the next
node of the graph's topological order whose dependencies have results.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import Counter
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from agent_pipeline.agents.runner import AgentRunner
from agent_pipeline.core.config import EngineConfig
from agent_pipeline.tools.scratchpad import ScratchpadStorage
from agent_pipeline.workflow.context import (
    HALTED_AGENT,
    GotoNode,
    Halt,
    NodeResult,
    TransformEvent,
)
from agent_pipeline.workflow.definition import ScratchpadMode, WorkflowDefinition
from agent_pipeline.workflow.errors import (
    ConfigurationError,
    WorkflowCancelledError,
    WorkflowLoopError,
)
from agent_pipeline.workflow.events import EventEmitter, EventSink
from agent_pipeline.workflow.executor import NodeExecution, NodeExecutor
from agent_pipeline.workflow.graph import DependencyGraph
from agent_pipeline.workflow.record import RunRecord, RunRecordStore, RunStatus

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkflowRunState:
    """Mutable state of one run. Only the engine writes to it."""

    original_prompt: str
    current_node: str | None
    content: str | None
    all_results: dict[str, NodeResult] = field(default_factory=dict)
    pending_jump: str | None = None
    last_result: NodeResult | None = None
    terminal: bool = False
    terminal_reason: str | None = None
    visits: Counter[str] = field(default_factory=Counter)
    path: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class WorkflowResult:
    """Final output of a run.

    ``all_results`` holds the latest result of every node that produced one,
    in first-execution order. ``path`` lists nodes in the order they ran,
    revisits included.
    """

    content: str | None
    success: bool
    agent: str
    duration: float
    all_results: Mapping[str, NodeResult]
    path: tuple[str, ...] = ()
    error: Exception | None = None
    halted: bool = False
    halt_reason: str | None = None


class WorkflowRunHandle:
    """A run executing on a background thread."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        self._cancel_event = threading.Event()
        self._done = threading.Event()
        self._result: WorkflowResult | None = None
        self._error: BaseException | None = None
        self._thread: threading.Thread | None = None

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Ask the run to stop at the next node boundary or subprocess poll."""
        self._cancel_event.set()

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> WorkflowResult:
        """Block until the run finishes.

        Raises:
            TimeoutError: If the run is still going after ``timeout`` seconds.
            WorkflowCancelledError: If the run was cancelled.
            WorkflowError: Whatever error ended the run.
        """
        if not self._done.wait(timeout):
            raise TimeoutError(f"Workflow run {self.run_id} still running after {timeout}s")
        return self.result()

    def result(self) -> WorkflowResult:
        if not self._done.is_set():
            raise RuntimeError(f"Workflow run {self.run_id} has not finished")
        if self._error is not None:
            raise self._error
        assert self._result is not None
        return self._result

    def _start(self, target: Callable[[], None], name: str) -> None:
        self._thread = threading.Thread(target=target, name=name, daemon=True)
        self._thread.start()

    def _finish(
        self, result: WorkflowResult | None = None, error: BaseException | None = None
    ) -> None:
        self._result = result
        self._error = error
        self._done.set()


class WorkflowEngine:
    """Executes a :class:`WorkflowDefinition`.

    Args:
        definition: A validated workflow.
        agent_runner: Collaborator that runs agents. Required when the
            workflow has at least one node with agents.
        event_sink: Callable receiving lifecycle events as dicts.
        config: Loop guard and run-record settings.
    """

    def __init__(
        self,
        definition: WorkflowDefinition,
        agent_runner: AgentRunner | None = None,
        *,
        event_sink: EventSink | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        if definition.has_agent_nodes and agent_runner is None:
            raise ConfigurationError(
                f"Workflow '{definition.name}' has agent nodes but no agent runner was given"
            )

        self.definition = definition
        self.config = config or EngineConfig()
        self.graph = DependencyGraph(definition)
        self.emitter = EventEmitter(event_sink)
        self.executor = NodeExecutor(
            definition,
            agent_runner=agent_runner,
            emitter=self.emitter,
            scratchpad_for=self.scratchpad_for,
        )

        self._scratchpad_lock = threading.Lock()
        self._shared_scratchpad = (
            ScratchpadStorage() if definition.scratchpad is ScratchpadMode.ENABLED else None
        )
        self._node_scratchpads: dict[str, ScratchpadStorage] = {}
        self._record_store = (
            RunRecordStore(self.config.record_path) if self.config.record_path else None
        )

    def scratchpad_for(self, node: str) -> ScratchpadStorage | None:
        """Scratchpad bound to ``node`` under the workflow's scratchpad mode."""
        mode = self.definition.scratchpad
        if mode is ScratchpadMode.DISABLED:
            return None
        if mode is ScratchpadMode.ENABLED:
            return self._shared_scratchpad
        with self._scratchpad_lock:
            pad = self._node_scratchpads.get(node)
            if pad is None:
                pad = ScratchpadStorage()
                self._node_scratchpads[node] = pad
            return pad

    def all_scratchpads(self) -> dict[str, ScratchpadStorage]:
        if self._shared_scratchpad is not None:
            return {"shared": self._shared_scratchpad}
        with self._scratchpad_lock:
            return dict(self._node_scratchpads)

    def execute(self, prompt: str) -> WorkflowResult:
        """Run the workflow to completion on the calling thread."""
        return self._run(prompt, run_id=uuid.uuid4().hex, cancel_event=None)

    def execute_async(self, prompt: str) -> WorkflowRunHandle:
        """Start the workflow on a daemon thread and return its handle."""
        handle = WorkflowRunHandle(uuid.uuid4().hex)

        def _target() -> None:
            try:
                result = self._run(prompt, run_id=handle.run_id, cancel_event=handle.cancel_event)
            except Exception as e:
                logger.exception(
                    "Workflow run failed",
                    extra={"workflow": self.definition.name, "run_id": handle.run_id},
                )
                handle._finish(error=e)
            else:
                handle._finish(result=result)

        handle._start(_target, name=f"workflow-{self.definition.name}-{handle.run_id}")
        return handle

    def _run(
        self, prompt: str, *, run_id: str, cancel_event: threading.Event | None
    ) -> WorkflowResult:
        started = time.monotonic()
        state = WorkflowRunState(
            original_prompt=prompt,
            current_node=self.definition.start_node,
            content=prompt,
        )
        record = RunRecord(run_id=run_id, workflow=self.definition.name, original_prompt=prompt)
        self._save_record(record)

        logger.info(
            "Workflow started",
            extra={"workflow": self.definition.name, "run_id": run_id, "nodes": len(self.graph)},
        )

        try:
            result = self._loop(state, record, cancel_event, started)
        except WorkflowCancelledError as e:
            self._save_record(
                record.update(
                    path=state.path, results=state.all_results, status="cancelled", error=str(e)
                )
            )
            raise
        except Exception as e:
            self._save_record(
                record.update(
                    path=state.path, results=state.all_results, status="failed", error=str(e)
                )
            )
            raise

        status: RunStatus = "succeeded"
        if result.halted:
            status = "halted"
        elif not result.success:
            status = "failed"
        self._save_record(
            record.update(
                path=state.path,
                results=state.all_results,
                status=status,
                content=result.content,
                halt_reason=result.halt_reason,
                error=str(result.error) if result.error is not None else None,
            )
        )
        logger.info(
            "Workflow finished",
            extra={
                "workflow": self.definition.name,
                "run_id": run_id,
                "status": status,
                "duration": round(result.duration, 3),
            },
        )
        return result

    def _loop(
        self,
        state: WorkflowRunState,
        record: RunRecord,
        cancel_event: threading.Event | None,
        started: float,
    ) -> WorkflowResult:
        while state.current_node is not None:
            self._check_cancelled(cancel_event, state)
            name = state.current_node
            self._count_visit(state, name)

            execution = self.executor.execute(
                self.definition.nodes[name],
                content=state.content,
                original_prompt=state.original_prompt,
                all_results=state.all_results,
                cancel_event=cancel_event,
            )
            self._apply(state, execution)
            if self._record_store is not None:
                self._save_record(record.update(path=state.path, results=state.all_results))

            if state.terminal:
                return self._terminal_result(state, execution, started, cancel_event)

            if state.pending_jump is not None:
                state.current_node, state.pending_jump = state.pending_jump, None
                continue

            state.current_node = self.graph.next_node(name, state.all_results)

        last = state.last_result
        return WorkflowResult(
            content=last.content if last is not None else state.content,
            success=True,
            agent=last.agent if last is not None else "",
            duration=time.monotonic() - started,
            all_results=MappingProxyType(dict(state.all_results)),
            path=tuple(state.path),
        )

    def _apply(self, state: WorkflowRunState, execution: NodeExecution) -> None:
        state.path.append(execution.node)
        result = execution.result
        if result is not None:
            # Reassigning an existing key keeps its original position.
            state.all_results[execution.node] = result
            state.last_result = result
            state.content = result.content

        outcome = execution.outcome
        if isinstance(outcome, Halt):
            state.terminal = True
            state.terminal_reason = outcome.reason or "halted"
        elif result is not None and not result.success:
            state.terminal = True
            state.terminal_reason = str(result.error) if result.error else "node failed"
        elif isinstance(outcome, GotoNode):
            if outcome.target not in self.graph:
                raise ConfigurationError(
                    f"goto_node target '{outcome.target}' from node '{execution.node}' "
                    f"not found. Available nodes: {', '.join(self.graph.topological_order())}"
                )
            logger.info(
                "Jumping to node",
                extra={"node": execution.node, "target": outcome.target},
            )
            state.pending_jump = outcome.target
            state.content = outcome.content

    def _terminal_result(
        self,
        state: WorkflowRunState,
        execution: NodeExecution,
        started: float,
        cancel_event: threading.Event | None,
    ) -> WorkflowResult:
        outcome = execution.outcome
        all_results = MappingProxyType(dict(state.all_results))
        duration = time.monotonic() - started

        if isinstance(outcome, Halt):
            if outcome.error:
                self._check_cancelled(cancel_event, state)
                phase = (execution.phase or TransformEvent.INPUT).value.capitalize()
                raise ConfigurationError(
                    f"{phase} transformer halted workflow for node "
                    f"'{execution.node}': {outcome.reason}"
                )
            return WorkflowResult(
                content=outcome.content,
                success=False,
                agent=HALTED_AGENT,
                duration=duration,
                all_results=all_results,
                path=tuple(state.path),
                halted=True,
                halt_reason=outcome.reason or None,
            )

        failed = execution.result
        assert failed is not None
        return WorkflowResult(
            content=failed.content,
            success=False,
            agent=failed.agent,
            duration=duration,
            all_results=all_results,
            path=tuple(state.path),
            error=failed.error,
        )

    def _count_visit(self, state: WorkflowRunState, node: str) -> None:
        state.visits[node] += 1
        limit = self.config.max_node_visits
        if limit is not None and state.visits[node] > limit:
            raise WorkflowLoopError(node, state.visits[node])

    def _check_cancelled(
        self, cancel_event: threading.Event | None, state: WorkflowRunState
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.info(
                "Workflow cancelled",
                extra={"workflow": self.definition.name, "node": state.current_node},
            )
            raise WorkflowCancelledError(
                f"Workflow '{self.definition.name}' cancelled at node '{state.current_node}'"
            )

    def _save_record(self, record: RunRecord) -> None:
        if self._record_store is not None:
            self._record_store.save(record)
