"""Command-line entrypoint.

Workflows are Python objects, so the CLI loads them from an importable
``module:attribute`` reference. The attribute may be a
:class:`WorkflowDefinition` or a zero-argument callable returning one.
"""

from __future__ import annotations

import argparse
import importlib
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from agent_pipeline import __version__
from agent_pipeline.agents.llm_runner import LLMAgentRunner
from agent_pipeline.core.config import PipelineConfig
from agent_pipeline.llm.factory import LLMFactory
from agent_pipeline.workflow.definition import WorkflowDefinition
from agent_pipeline.workflow.engine import WorkflowEngine, WorkflowResult
from agent_pipeline.workflow.errors import (
    ConfigurationError,
    WorkflowCancelledError,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIGURATION = 2
EXIT_HALTED = 3
EXIT_INTERRUPTED = 130


def load_workflow(reference: str) -> WorkflowDefinition:
    """Resolve ``package.module:attribute`` to a workflow definition.

    Raises:
        ConfigurationError: If the reference is malformed, cannot be imported
            or does not produce a :class:`WorkflowDefinition`.
    """
    module_name, sep, attr = reference.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(
            f"Invalid workflow reference '{reference}'. Expected 'module:attribute'"
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import workflow module '{module_name}': {e}") from e

    target: Any = module
    for part in attr.split("."):
        try:
            target = getattr(target, part)
        except AttributeError:
            raise ConfigurationError(
                f"Module '{module_name}' has no attribute '{attr}'"
            ) from None

    if callable(target):
        target = target()
    if not isinstance(target, WorkflowDefinition):
        raise ConfigurationError(
            f"'{reference}' is a {type(target).__name__}, not a WorkflowDefinition"
        )
    return target


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-pipeline",
        description="Run multi-node LLM agent workflows",
    )
    parser.add_argument("--version", action="version", version=f"agent-pipeline {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Execute a workflow with a prompt")
    run.add_argument("workflow", help="Workflow reference in the form 'module:attribute'")
    run.add_argument("prompt", help="Initial prompt; use '-' to read it from stdin")
    run.add_argument(
        "--events",
        action="store_true",
        help="Print lifecycle events to stderr as JSON lines",
    )
    run.add_argument(
        "--background",
        action="store_true",
        help="Run on a background thread so Ctrl-C cancels the run cleanly",
    )
    run.add_argument(
        "--record",
        type=Path,
        default=None,
        help="Write the run record to this JSON file after every node",
    )
    run.add_argument(
        "--max-node-visits",
        type=int,
        default=None,
        help="Fail the run if any node executes more than this many times",
    )
    run.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        help="Print the final result as JSON instead of plain content",
    )

    describe = subparsers.add_parser("describe", help="Print a workflow's structure as JSON")
    describe.add_argument("workflow", help="Workflow reference in the form 'module:attribute'")

    return parser


def _print_event(event: dict[str, Any]) -> None:
    print(json.dumps(event, default=str), file=sys.stderr, flush=True)


def _result_payload(result: WorkflowResult) -> dict[str, Any]:
    return {
        "content": result.content,
        "success": result.success,
        "agent": result.agent,
        "duration": round(result.duration, 3),
        "halted": result.halted,
        "halt_reason": result.halt_reason,
        "error": str(result.error) if result.error is not None else None,
        "path": list(result.path),
        "all_results": {name: r.to_json() for name, r in result.all_results.items()},
    }


def _run(args: argparse.Namespace, config: PipelineConfig) -> int:
    definition = load_workflow(args.workflow)

    engine_config = config.engine
    overrides: dict[str, Any] = {}
    if args.record is not None:
        overrides["record_path"] = args.record
    if args.max_node_visits is not None:
        overrides["max_node_visits"] = args.max_node_visits
    if overrides:
        engine_config = engine_config.model_copy(update=overrides)

    runner = None
    if definition.has_agent_nodes:
        runner = LLMAgentRunner(LLMFactory.create(config.llm))

    engine = WorkflowEngine(
        definition,
        runner,
        event_sink=_print_event if args.events else None,
        config=engine_config,
    )

    prompt = sys.stdin.read() if args.prompt == "-" else args.prompt

    if args.background:
        handle = engine.execute_async(prompt)
        try:
            result = handle.wait()
        except KeyboardInterrupt:
            handle.cancel()
            logger.warning("Cancelling workflow run", extra={"run_id": handle.run_id})
            handle.wait()
            return EXIT_INTERRUPTED
    else:
        result = engine.execute(prompt)

    if args.json_output:
        print(json.dumps(_result_payload(result), indent=2, ensure_ascii=False))
    elif result.content is not None:
        print(result.content)

    if result.halted:
        logger.warning("Workflow halted", extra={"reason": result.halt_reason})
        return EXIT_HALTED
    if not result.success:
        logger.error("Workflow failed", extra={"error": str(result.error)})
        return EXIT_FAILED
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = PipelineConfig()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_CONFIGURATION

    config.setup_logging()

    try:
        if args.command == "describe":
            definition = load_workflow(args.workflow)
            print(json.dumps(definition.describe(), indent=2))
            return EXIT_OK

        if args.command == "run":
            return _run(args, config)

        logger.error("Unknown command", extra={"command": args.command})
        return EXIT_CONFIGURATION

    except WorkflowCancelledError as e:
        print(f"Cancelled: {e}", file=sys.stderr)
        return EXIT_INTERRUPTED
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIGURATION
    except ValueError as e:
        # Provider settings, e.g. a missing API key.
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIGURATION
    except Exception:
        logger.exception("Command failed")
        return EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
