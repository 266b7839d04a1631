"""Reference agent runner backed by an :class:`~agent_pipeline.llm.LLMProvider`."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Collection

from agent_pipeline.agents.runner import AgentOverlay, AgentResult, NodeAgentSpec
from agent_pipeline.llm.provider import LLMProvider
from agent_pipeline.workflow.errors import ConfigurationError
from agent_pipeline.workflow.events import utc_timestamp

logger = logging.getLogger(__name__)

SCRATCHPAD_TOOL = "Scratchpad"


class LLMAgentRunner:
    """Runs a node's lead agent as a chat conversation.

    Each agent keeps one message history across nodes. A node that sets
    ``reset_context`` (the default) starts the agent from its system prompt
    again; ``reset_context=False`` continues the previous conversation.
    """

    def __init__(
        self,
        provider: LLMProvider,
        *,
        available_tools: Collection[str] | None = None,
        max_tokens: int | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            provider: Chat-completion backend.
            available_tools: Tool names agents may be granted. None allows any.
            max_tokens: Completion limit passed to the provider.
        """
        self.provider = provider
        self.available_tools = frozenset(available_tools) if available_tools is not None else None
        self.max_tokens = max_tokens
        self._histories: dict[str, list[dict[str, str]]] = {}
        self._lock = threading.Lock()

    def execute(self, overlay: AgentOverlay, prompt: str, reset_context: bool) -> AgentResult:
        self._validate(overlay)
        spec = overlay.lead_spec

        with self._lock:
            if reset_context or spec.name not in self._histories:
                self._histories[spec.name] = [
                    {"role": "system", "content": self._system_prompt(spec, overlay)}
                ]
            history = self._histories[spec.name]
            history.append({"role": "user", "content": prompt})
            messages = list(history)

        overlay.emit(
            {
                "type": "agent_start",
                "node": overlay.node,
                "agent": spec.name,
                "timestamp": utc_timestamp(),
            }
        )
        started = time.monotonic()
        try:
            reply = self.provider.chat(
                messages, model=spec.definition.model, max_tokens=self.max_tokens
            )
        except Exception as e:
            logger.exception(
                "Agent execution failed", extra={"node": overlay.node, "agent": spec.name}
            )
            self._emit_stop(overlay, spec, started, success=False)
            return AgentResult(content=None, agent=spec.name, success=False, error=e)

        with self._lock:
            history.append({"role": "assistant", "content": reply})

        self._record_note(overlay, spec, reply)
        self._emit_stop(overlay, spec, started, success=True)
        return AgentResult(content=reply, agent=spec.name)

    def _validate(self, overlay: AgentOverlay) -> None:
        if overlay.lead not in overlay.agents:
            raise ConfigurationError(
                f"Node '{overlay.node}' lead agent '{overlay.lead}' is not part of the node"
            )
        for spec in overlay.agents.values():
            for delegate in spec.delegates_to:
                if delegate not in overlay.agents:
                    raise ConfigurationError(
                        f"Agent '{spec.name}' in node '{overlay.node}' delegates to "
                        f"'{delegate}', which is not available in this node"
                    )
            if self.available_tools is None:
                continue
            disallowed = [tool for tool in spec.tools if tool not in self.available_tools]
            if disallowed:
                raise ConfigurationError(
                    f"Agent '{spec.name}' in node '{overlay.node}' uses unknown tools: "
                    f"{', '.join(disallowed)}"
                )

    @staticmethod
    def _system_prompt(spec: NodeAgentSpec, overlay: AgentOverlay) -> str:
        definition = spec.definition
        parts = [definition.system_prompt or f"You are {definition.name}."]
        if definition.description:
            parts.append(f"Role: {definition.description}")
        if spec.tools:
            parts.append("Tools available to you: " + ", ".join(spec.tools))
        if spec.delegates_to:
            delegates = []
            for name in spec.delegates_to:
                description = overlay.agents[name].definition.description
                delegates.append(f"- {name}: {description}" if description else f"- {name}")
            parts.append("Agents you may delegate to:\n" + "\n".join(delegates))
        if overlay.scratchpad is not None and SCRATCHPAD_TOOL in spec.tools:
            entries = overlay.scratchpad.list()
            if entries:
                notes = "\n".join(f"- {entry.path}: {entry.title}" for entry in entries)
                parts.append("Shared scratchpad notes:\n" + notes)
        return "\n\n".join(parts)

    @staticmethod
    def _record_note(overlay: AgentOverlay, spec: NodeAgentSpec, reply: str) -> None:
        """Store the reply at ``<node>/<agent>`` for agents granted the scratchpad."""
        if overlay.scratchpad is None or SCRATCHPAD_TOOL not in spec.tools:
            return
        try:
            overlay.scratchpad.write(
                f"{overlay.node}/{spec.name}", reply, title=f"{spec.name} output for {overlay.node}"
            )
        except ValueError as e:
            logger.warning(
                "Scratchpad note not stored",
                extra={"node": overlay.node, "agent": spec.name, "error": str(e)},
            )

    @staticmethod
    def _emit_stop(
        overlay: AgentOverlay, spec: NodeAgentSpec, started: float, *, success: bool
    ) -> None:
        overlay.emit(
            {
                "type": "agent_stop",
                "node": overlay.node,
                "agent": spec.name,
                "success": success,
                "duration": round(time.monotonic() - started, 3),
                "timestamp": utc_timestamp(),
            }
        )
