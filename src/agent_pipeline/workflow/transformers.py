"""Input/output transformers: in-process functions and external commands.

Both kinds satisfy :meth:`Transformer.invoke` and normalize whatever they
produce to a :data:`~agent_pipeline.workflow.context.TransformOutcome`. The
executor never branches on the transformer kind.

Command transformers receive the execution context as one JSON document on
stdin and steer the run with their exit code:

- ``0``: continue, stdout (minus its trailing newline) becomes the content
- ``1``: skip the node's agents (input) or pass through (output); stdout is ignored
- ``2``: halt the run; stderr becomes the halt reason, stdout is ignored
- anything else, a timeout or a spawn failure: halt with a descriptive reason
"""

from __future__ import annotations

import json
import logging
import os
import signal
import subprocess
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from enum import Enum
from pathlib import Path

from agent_pipeline.core.config import TransformerConfig
from agent_pipeline.workflow.context import (
    Continue,
    ExecutionContext,
    GotoNode,
    Halt,
    Skip,
    TransformEvent,
    TransformOutcome,
)
from agent_pipeline.workflow.errors import ConfigurationError

logger = logging.getLogger(__name__)

EXIT_CONTINUE = 0
EXIT_SKIP = 1
EXIT_HALT = 2

PROJECT_DIR_ENV = "AGENT_PIPELINE_PROJECT_DIR"
NODE_NAME_ENV = "AGENT_PIPELINE_NODE_NAME"

_CONTROL_KEYS = ("skip_execution", "halt_workflow", "goto_node")
_VALID_KEYS = frozenset(_CONTROL_KEYS) | {"content", "reason"}
_CANCEL_POLL_SECONDS = 0.1
_REAP_TIMEOUT_SECONDS = 2.0


class Transformer(ABC):
    """Maps an execution context to new content plus a control outcome."""

    @abstractmethod
    def invoke(self, context: ExecutionContext) -> TransformOutcome:
        """Run the transformer for one node event."""

    @property
    def description(self) -> str:
        return type(self).__name__


def _normalize_key(key: object) -> str:
    if isinstance(key, Enum):
        key = key.value
    return str(key).strip().lower()


def outcome_from_mapping(
    value: Mapping[object, object], context: ExecutionContext
) -> TransformOutcome:
    """Interpret a control mapping returned by a function transformer.

    Keys may be strings or enum members and are compared case-insensitively.
    At most one of ``skip_execution``, ``halt_workflow`` and ``goto_node`` may
    be set, and ``skip_execution`` only on the input side. A missing
    ``content`` falls back to the prior content.
    """
    normalized = {_normalize_key(k): v for k, v in value.items()}

    valid_keys = _VALID_KEYS
    if context.event is TransformEvent.OUTPUT:
        # the node has already run, there is nothing left to skip
        valid_keys = _VALID_KEYS - {"skip_execution"}
    invalid = sorted(set(normalized) - valid_keys)
    if invalid:
        raise ConfigurationError(
            f"Invalid {context.event.value} transformer keys for node '{context.node}': "
            f"{', '.join(invalid)}. Valid keys: {', '.join(sorted(valid_keys))}"
        )

    controls = [key for key in _CONTROL_KEYS if normalized.get(key)]
    if len(controls) > 1:
        raise ConfigurationError(
            f"Transformer for node '{context.node}' returned more than one control key: "
            f"{', '.join(controls)}"
        )

    if "content" in normalized:
        raw = normalized["content"]
        content = raw if raw is None or isinstance(raw, str) else str(raw)
    elif controls:
        content = context.content
    else:
        raise ConfigurationError(
            f"{context.event.value.capitalize()} transformer for node '{context.node}' "
            "returned a mapping without a 'content' key"
        )

    if not controls:
        if content is None:
            raise ConfigurationError(
                f"Transformer for node '{context.node}' returned no content"
            )
        return Continue(content)

    control = controls[0]
    if control == "skip_execution":
        return Skip(content)
    if control == "halt_workflow":
        reason = normalized.get("reason")
        return Halt(content=content, reason=str(reason) if reason else "")

    target = normalized["goto_node"]
    if isinstance(target, Enum):
        target = target.value
    if not isinstance(target, str):
        raise ConfigurationError(
            f"goto_node value must be a node name, got: {type(target).__name__}"
        )
    if content is None:
        raise ConfigurationError(
            f"goto_node from node '{context.node}' to '{target}' has no content"
        )
    return GotoNode(target=target, content=content)


class FunctionTransformer(Transformer):
    """Wraps an in-process callable ``func(context) -> value``.

    The callable may return plain content, an outcome object (usually built
    with the helpers on the context), or a control mapping such as
    ``{"skip_execution": True, "content": cached}``. Exceptions propagate.
    """

    def __init__(self, func: Callable[[ExecutionContext], object], name: str | None = None) -> None:
        if not callable(func):
            raise TypeError("FunctionTransformer requires a callable")
        self.func = func
        self.name = name or getattr(func, "__name__", type(func).__name__)

    @property
    def description(self) -> str:
        return f"function:{self.name}"

    def invoke(self, context: ExecutionContext) -> TransformOutcome:
        value = self.func(context)

        if isinstance(value, (Continue, Skip, Halt, GotoNode)):
            return value
        if isinstance(value, Mapping):
            return outcome_from_mapping(value, context)
        if value is None:
            raise ConfigurationError(
                f"{context.event.value.capitalize()} transformer '{self.name}' for node "
                f"'{context.node}' returned None"
            )
        return Continue(value if isinstance(value, str) else str(value))


def _chomp(text: str) -> str:
    if text.endswith("\r\n"):
        return text[:-2]
    if text.endswith(("\n", "\r")):
        return text[:-1]
    return text


class _Cancelled(Exception):
    pass


class CommandTransformer(Transformer):
    """Runs an external command as a transformer.

    A string command runs through the shell; a sequence is executed directly.
    The process is started in its own session so a timeout can kill the whole
    process group.
    """

    DEFAULT_TIMEOUT = 60.0

    def __init__(
        self,
        command: str | Sequence[str],
        *,
        timeout: float = DEFAULT_TIMEOUT,
        project_dir: Path | None = None,
    ) -> None:
        if isinstance(command, str):
            if not command.strip():
                raise ConfigurationError("Transformer command must not be empty")
        elif not command:
            raise ConfigurationError("Transformer command must not be empty")
        if timeout <= 0:
            raise ConfigurationError(f"Transformer timeout must be positive, got {timeout}")

        self.command: str | tuple[str, ...] = (
            command if isinstance(command, str) else tuple(command)
        )
        self.timeout = timeout
        self.project_dir = project_dir

    @classmethod
    def from_config(
        cls, command: str | Sequence[str], config: TransformerConfig | None = None
    ) -> CommandTransformer:
        config = config or TransformerConfig()
        return cls(command, timeout=config.timeout_seconds, project_dir=config.project_dir)

    @property
    def description(self) -> str:
        if isinstance(self.command, str):
            return f"command:{self.command}"
        return "command:" + " ".join(self.command)

    def invoke(self, context: ExecutionContext) -> TransformOutcome:
        # lone surrogates in content are replaced rather than failing the encode
        payload = json.dumps(context.to_payload(), ensure_ascii=False).encode(
            "utf-8", errors="replace"
        )
        project_dir = self.project_dir or Path.cwd()

        logger.debug(
            "Running transformer command",
            extra={"node": context.node, "event": context.event.value, "command": self.description},
        )

        try:
            process = subprocess.Popen(
                self.command,
                shell=isinstance(self.command, str),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self._build_environment(context.node, project_dir),
                cwd=project_dir,
                start_new_session=True,
            )
        except OSError as e:
            return self._halt(context, f"Transformer command failed: {e}")

        try:
            raw_stdout, raw_stderr = self._communicate(process, payload, context)
        except subprocess.TimeoutExpired:
            self._terminate(process)
            return self._halt(context, f"Transformer command timed out after {self.timeout}s")
        except _Cancelled:
            self._terminate(process)
            return self._halt(context, "Transformer command cancelled")

        stdout = raw_stdout.decode("utf-8", errors="replace")
        stderr = raw_stderr.decode("utf-8", errors="replace")
        code = process.returncode

        if code == EXIT_CONTINUE:
            return Continue(_chomp(stdout))
        if code == EXIT_SKIP:
            return Skip(context.content)
        if code == EXIT_HALT:
            reason = stderr if stderr.strip() else "Transformer halted workflow (exit 2)"
            return self._halt(context, reason)
        return self._halt(
            context, f"Transformer exited with unexpected exit code {code}\nSTDERR: {stderr}"
        )

    def _communicate(
        self, process: subprocess.Popen[bytes], payload: bytes, context: ExecutionContext
    ) -> tuple[bytes, bytes]:
        # communicate() drains both pipes, so large outputs cannot deadlock.
        deadline = time.monotonic() + self.timeout
        data: bytes | None = payload
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise subprocess.TimeoutExpired(self.description, self.timeout)
            wait = remaining
            if context.cancel_event is not None:
                wait = min(remaining, _CANCEL_POLL_SECONDS)
            try:
                return process.communicate(input=data, timeout=wait)
            except subprocess.TimeoutExpired:
                data = None
                if context.cancelled:
                    raise _Cancelled from None

    @staticmethod
    def _terminate(process: subprocess.Popen[bytes]) -> None:
        try:
            if hasattr(os, "killpg"):
                os.killpg(process.pid, signal.SIGKILL)
            else:
                process.kill()
        except ProcessLookupError:
            pass  # already exited
        try:
            process.communicate(timeout=_REAP_TIMEOUT_SECONDS)
        except subprocess.TimeoutExpired:
            # a detached descendant still holds the pipes
            logger.warning("Transformer pipes still open after kill", extra={"pid": process.pid})

    @staticmethod
    def _build_environment(node: str, project_dir: Path) -> dict[str, str]:
        return {
            PROJECT_DIR_ENV: str(project_dir),
            NODE_NAME_ENV: node,
            "PATH": os.environ.get("PATH", ""),
        }

    def _halt(self, context: ExecutionContext, reason: str) -> Halt:
        logger.warning(
            "Transformer command halted workflow",
            extra={"node": context.node, "event": context.event.value, "reason": reason},
        )
        return Halt(content=context.content, reason=reason, error=True)


def as_transformer(
    value: Transformer | Callable[[ExecutionContext], object] | str | Sequence[str] | None,
) -> Transformer | None:
    """Coerce a node's transformer setting.

    Callables become :class:`FunctionTransformer`. A shell string or an argv
    sequence becomes a :class:`CommandTransformer` using
    :class:`TransformerConfig` defaults.
    """
    if value is None or isinstance(value, Transformer):
        return value
    if isinstance(value, str):
        return CommandTransformer.from_config(value)
    if isinstance(value, Sequence) and all(isinstance(part, str) for part in value):
        return CommandTransformer.from_config(value)
    if callable(value):
        return FunctionTransformer(value)
    raise ConfigurationError(f"Unsupported transformer: {value!r}")
