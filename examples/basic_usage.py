#!/usr/bin/env python3
"""Programmatic workflow example.

Builds a three-node pipeline and runs it:

* ``plan``: an agent drafts a plan for the prompt
* ``review``: an agent-less node whose command transformer counts words
  and skips when the plan is short
* ``implement``: an agent expands the plan, continuing its conversation

Agent calls need an LLM provider configured through ``.env``
(``AGENT_PIPELINE_LLM_OPENAI_API_KEY`` and friends). Pass ``--dry-run`` to
replace the provider with a canned responder.

Also runnable from the repository root through the CLI::

    python -m agent_pipeline run examples.basic_usage:build_workflow "Write a CLI tool"
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Sequence

from agent_pipeline import (
    AgentDefinition,
    ExecutionContext,
    NodeAgentConfig,
    NodeDefinition,
    PipelineConfig,
    WorkflowDefinition,
    WorkflowEngine,
)
from agent_pipeline.agents import LLMAgentRunner
from agent_pipeline.llm import LLMFactory, LLMProvider

# Reads the JSON context on stdin; exit 1 skips the node when the plan is short.
WORD_COUNT_COMMAND = (
    f"{sys.executable} -c \""
    "import json, sys; ctx = json.load(sys.stdin); words = len(ctx['content'].split()); "
    "sys.exit(1) if words < 5 else print(ctx['content'] + '\\n\\n(' + str(words) + ' words)')\""
)


class CannedProvider(LLMProvider):
    """Echoes the last user message, for running the example offline."""

    def chat(self, messages, *, model=None, max_tokens=None, temperature=None, **kwargs) -> str:
        return f"[{model or 'canned'}] {messages[-1]['content']}"

    def count_tokens(self, text: str) -> int:
        return len(text.split())


def _mark_final(context: ExecutionContext) -> str:
    return f"{context.content}\n\n-- built from: {context.original_prompt}"


def build_workflow() -> WorkflowDefinition:
    agents = [
        AgentDefinition(
            name="planner",
            description="Breaks a request into concrete steps",
            system_prompt="You write short, numbered implementation plans.",
            tools=("Scratchpad",),
        ),
        AgentDefinition(
            name="engineer",
            description="Turns plans into code",
            system_prompt="You implement plans as working Python code.",
            delegates_to=("planner",),
        ),
    ]
    nodes = [
        NodeDefinition(name="plan", agent_configs=("planner",)),
        NodeDefinition(
            name="review",
            dependencies=("plan",),
            input_transformer=WORD_COUNT_COMMAND,
        ),
        NodeDefinition(
            name="implement",
            agent_configs=(NodeAgentConfig("engineer", tools=()),),
            dependencies=("review",),
            output_transformer=_mark_final,
        ),
    ]
    return WorkflowDefinition(
        name="plan-and-build",
        start_node="plan",
        nodes=nodes,
        agents=agents,
        scratchpad="enabled",
    )


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the example workflow.")
    parser.add_argument("prompt", help="What to build")
    parser.add_argument("--dry-run", action="store_true", help="Use a canned LLM provider")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    config = PipelineConfig()
    config.setup_logging()

    provider = CannedProvider() if args.dry_run else LLMFactory.create(config.llm)
    engine = WorkflowEngine(
        build_workflow(),
        LLMAgentRunner(provider),
        event_sink=lambda event: print(json.dumps(event), file=sys.stderr),
    )

    result = engine.execute(args.prompt)
    print(result.content)
    return 0 if result.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
