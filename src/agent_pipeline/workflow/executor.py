"""Runs one node through its full lifecycle.

``Pending -> [input transform] -> Skipped | Running -> [output transform] ->
Completed | Halted``

Every node that starts emits exactly one ``node_start`` and one
``node_stop`` event, whether it completes, is skipped, halts the run or
jumps elsewhere.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace

from agent_pipeline.agents.runner import AgentOverlay, AgentRunner, NodeAgentSpec
from agent_pipeline.tools.scratchpad import ScratchpadStorage
from agent_pipeline.workflow.context import (
    COMPUTATION_AGENT_PREFIX,
    HALTED_AGENT,
    SKIPPED_AGENT,
    Continue,
    ExecutionContext,
    GotoNode,
    Halt,
    NodeResult,
    Skip,
    TransformEvent,
    TransformOutcome,
    freeze_results,
)
from agent_pipeline.workflow.definition import NodeDefinition, WorkflowDefinition
from agent_pipeline.workflow.errors import ConfigurationError
from agent_pipeline.workflow.events import EventEmitter

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NodeExecution:
    """What the engine learns from one node run.

    ``result`` is ``None`` only when the input transformer jumped away before
    the node did any work. ``outcome`` is ``Continue`` for a normal finish,
    otherwise the ``Halt`` or ``GotoNode`` that ended the node, raised during
    ``phase``.
    """

    node: str
    result: NodeResult | None
    outcome: TransformOutcome
    phase: TransformEvent | None = None
    skipped: bool = False


class NodeExecutor:
    """Executes single nodes for a :class:`WorkflowEngine`."""

    def __init__(
        self,
        definition: WorkflowDefinition,
        *,
        agent_runner: AgentRunner | None,
        emitter: EventEmitter,
        scratchpad_for: Callable[[str], ScratchpadStorage | None],
    ) -> None:
        self.definition = definition
        self.agent_runner = agent_runner
        self.emitter = emitter
        self.scratchpad_for = scratchpad_for

    def execute(
        self,
        node: NodeDefinition,
        *,
        content: str | None,
        original_prompt: str,
        all_results: Mapping[str, NodeResult],
        cancel_event: threading.Event | None = None,
    ) -> NodeExecution:
        started = time.monotonic()
        self.emitter.node_start(node)
        logger.info("Executing node", extra={"node": node.name, "agent_less": node.agent_less})

        skipped = False
        if node.input_transformer is not None:
            context = ExecutionContext(
                node=node.name,
                event=TransformEvent.INPUT,
                original_prompt=original_prompt,
                content=content,
                all_results=freeze_results(all_results),
                dependencies=node.dependencies,
                cancel_event=cancel_event,
            )
            outcome = node.input_transformer.invoke(context)

            if isinstance(outcome, Halt):
                return self._halted(node, outcome, TransformEvent.INPUT, started, skipped=False)
            if isinstance(outcome, GotoNode):
                self.emitter.node_stop(node, duration=time.monotonic() - started, skipped=False)
                return NodeExecution(
                    node=node.name, result=None, outcome=outcome, phase=TransformEvent.INPUT
                )
            if isinstance(outcome, Skip):
                skipped = True
                logger.info("Skipping node execution", extra={"node": node.name})
            content = outcome.content

        if skipped:
            raw = NodeResult(agent=SKIPPED_AGENT, content=content, skipped=True)
        elif node.agent_less:
            raw = NodeResult(agent=f"{COMPUTATION_AGENT_PREFIX}{node.name}", content=content)
        else:
            raw = self._run_agents(node, content)

        if not raw.success:
            logger.error(
                "Node failed",
                extra={"node": node.name, "agent": raw.agent, "error": str(raw.error)},
            )
            return self._finish(node, raw, Continue(raw.content or ""), started, skipped)

        final_content = raw.content
        if node.output_transformer is not None:
            context = ExecutionContext(
                node=node.name,
                event=TransformEvent.OUTPUT,
                original_prompt=original_prompt,
                content=raw.content,
                all_results=freeze_results({**all_results, node.name: raw}),
                cancel_event=cancel_event,
            )
            outcome = node.output_transformer.invoke(context)

            if isinstance(outcome, Halt):
                return self._halted(node, outcome, TransformEvent.OUTPUT, started, skipped)
            if isinstance(outcome, GotoNode):
                return self._finish(node, raw, outcome, started, skipped, TransformEvent.OUTPUT)
            if isinstance(outcome, Continue):
                final_content = outcome.content
            # Skip on the output side passes the content through unchanged.

        result = replace(raw, content=final_content)
        return self._finish(node, result, Continue(final_content or ""), started, skipped)

    def _run_agents(self, node: NodeDefinition, content: str | None) -> NodeResult:
        if self.agent_runner is None:
            raise ConfigurationError(
                f"Node '{node.name}' has agents but the engine has no agent runner"
            )

        overlay = self.build_overlay(node)
        reset_context = overlay.lead_spec.reset_context
        started = time.monotonic()
        try:
            agent_result = self.agent_runner.execute(overlay, content or "", reset_context)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.exception("Agent runner raised", extra={"node": node.name})
            return NodeResult(
                agent=overlay.lead,
                content=None,
                success=False,
                duration=time.monotonic() - started,
                error=e,
            )

        error = agent_result.error
        if not agent_result.success and error is None:
            error = RuntimeError(f"Agent '{agent_result.agent}' failed in node '{node.name}'")
        return NodeResult(
            agent=agent_result.agent,
            content=agent_result.content,
            success=agent_result.success,
            duration=time.monotonic() - started,
            error=error,
        )

    def build_overlay(self, node: NodeDefinition) -> AgentOverlay:
        """Resolve a node's agents with its tool and delegation overrides."""
        specs: dict[str, NodeAgentSpec] = {}
        for config in node.resolved_agent_configs():
            definition = self.definition.agents[config.agent]
            specs[config.agent] = NodeAgentSpec(
                definition=definition,
                tools=definition.tools if config.tools is None else config.tools,
                delegates_to=config.delegates_to,
                reset_context=config.reset_context,
            )

        lead = node.lead_agent
        assert lead is not None
        return AgentOverlay(
            node=node.name,
            workflow=self.definition.name,
            lead=lead,
            agents=specs,
            scratchpad=self.scratchpad_for(node.name),
            event_sink=self.emitter.sink,
        )

    def _halted(
        self,
        node: NodeDefinition,
        outcome: Halt,
        phase: TransformEvent,
        started: float,
        skipped: bool,
    ) -> NodeExecution:
        duration = time.monotonic() - started
        result = NodeResult(
            agent=HALTED_AGENT,
            content=outcome.content,
            success=False,
            duration=duration,
            skipped=skipped,
        )
        logger.info(
            "Node halted workflow",
            extra={"node": node.name, "phase": phase.value, "reason": outcome.reason},
        )
        self.emitter.node_stop(node, duration=duration, skipped=skipped)
        return NodeExecution(
            node=node.name, result=result, outcome=outcome, phase=phase, skipped=skipped
        )

    def _finish(
        self,
        node: NodeDefinition,
        result: NodeResult,
        outcome: TransformOutcome,
        started: float,
        skipped: bool,
        phase: TransformEvent | None = None,
    ) -> NodeExecution:
        duration = time.monotonic() - started
        result = replace(result, duration=duration)
        self.emitter.node_stop(node, duration=duration, skipped=skipped)
        return NodeExecution(
            node=node.name, result=result, outcome=outcome, phase=phase, skipped=skipped
        )
