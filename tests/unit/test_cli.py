"""Unit tests for the command-line interface."""

from __future__ import annotations

import io
import json
import logging
import sys
import textwrap
from pathlib import Path
from unittest.mock import Mock

import pytest

from agent_pipeline import cli
from agent_pipeline.llm.provider import LLMProvider

WORKFLOWS = """
from agent_pipeline import AgentDefinition, NodeDefinition, WorkflowDefinition


def _upper(ctx):
    return ctx.content.upper()


def _halt(ctx):
    return ctx.halt_workflow("stopped early", reason="budget")


def _bad_goto(ctx):
    return ctx.goto_node("nowhere", ctx.content)


shout = WorkflowDefinition(
    name="shout",
    start_node="a",
    nodes=[NodeDefinition(name="a", output_transformer=_upper)],
)

halting = WorkflowDefinition(
    name="halting",
    start_node="a",
    nodes=[NodeDefinition(name="a", output_transformer=_halt)],
)

broken = WorkflowDefinition(
    name="broken",
    start_node="a",
    nodes=[NodeDefinition(name="a", output_transformer=_bad_goto)],
)


def build_agents():
    return WorkflowDefinition(
        name="agents",
        start_node="a",
        nodes=[NodeDefinition(name="a", agent_configs=("writer",))],
        agents=[AgentDefinition(name="writer", system_prompt="You write.")],
    )


not_a_workflow = 42
"""


@pytest.fixture(autouse=True)
def workflows_module(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    package = tmp_path / "cli_fixtures"
    package.mkdir()
    (package / "__init__.py").write_text("", encoding="utf-8")
    (package / "workflows.py").write_text(textwrap.dedent(WORKFLOWS), encoding="utf-8")
    monkeypatch.syspath_prepend(str(tmp_path))
    monkeypatch.delitem(sys.modules, "cli_fixtures", raising=False)
    monkeypatch.delitem(sys.modules, "cli_fixtures.workflows", raising=False)
    return "cli_fixtures.workflows"


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _events(stderr: str) -> list[dict]:
    lines = [json.loads(line) for line in stderr.splitlines() if line.startswith("{")]
    return [line for line in lines if "type" in line]


def test_run_prints_final_content(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(["run", "cli_fixtures.workflows:shout", "abc"])

    assert exit_code == 0
    assert capsys.readouterr().out == "ABC\n"


def test_run_json_output(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(["run", "cli_fixtures.workflows:shout", "abc", "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert payload["content"] == "ABC"
    assert payload["path"] == ["a"]
    assert payload["all_results"]["a"]["agent"] == "computation:a"


def test_run_events_go_to_stderr(capsys: pytest.CaptureFixture[str]) -> None:
    cli.main(["run", "cli_fixtures.workflows:shout", "abc", "--events"])

    events = _events(capsys.readouterr().err)
    assert [e["type"] for e in events] == ["node_start", "node_stop"]


def test_run_in_background(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(["run", "cli_fixtures.workflows:shout", "abc", "--background"])

    assert exit_code == 0
    assert capsys.readouterr().out == "ABC\n"


def test_halted_run_exit_code(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(["run", "cli_fixtures.workflows:halting", "abc"])

    assert exit_code == cli.EXIT_HALTED
    assert capsys.readouterr().out == "stopped early\n"


def test_configuration_error_exit_code(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(["run", "cli_fixtures.workflows:broken", "abc"])

    assert exit_code == cli.EXIT_CONFIGURATION
    assert "target 'nowhere'" in capsys.readouterr().err


@pytest.mark.parametrize(
    ("reference", "message"),
    [
        ("no-colon", "Expected 'module:attribute'"),
        ("cli_fixtures.missing:shout", "Cannot import workflow module"),
        ("cli_fixtures.workflows:ghost", "has no attribute 'ghost'"),
        ("cli_fixtures.workflows:not_a_workflow", "not a WorkflowDefinition"),
    ],
)
def test_bad_workflow_reference(
    reference: str, message: str, capsys: pytest.CaptureFixture[str]
) -> None:
    exit_code = cli.main(["describe", reference])

    assert exit_code == cli.EXIT_CONFIGURATION
    assert message in capsys.readouterr().err


def test_describe_prints_structure(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.main(["describe", "cli_fixtures.workflows:build_agents"])

    summary = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert summary["name"] == "agents"
    assert summary["nodes"]["a"]["agents"] == ["writer"]


def test_agent_workflow_uses_configured_provider(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str], tmp_path: Path
) -> None:
    provider = Mock(spec=LLMProvider)
    provider.chat.return_value = "drafted"
    create = Mock(return_value=provider)
    monkeypatch.setattr(cli.LLMFactory, "create", create)
    record = tmp_path / "record.json"

    exit_code = cli.main(
        ["run", "cli_fixtures.workflows:build_agents", "write", "--record", str(record)]
    )

    assert exit_code == 0
    assert capsys.readouterr().out == "drafted\n"
    assert create.call_count == 1
    assert json.loads(record.read_text(encoding="utf-8"))["status"] == "succeeded"


def test_agent_failure_exit_code(monkeypatch: pytest.MonkeyPatch) -> None:
    provider = Mock(spec=LLMProvider)
    provider.chat.side_effect = RuntimeError("provider down")
    monkeypatch.setattr(cli.LLMFactory, "create", Mock(return_value=provider))

    exit_code = cli.main(["run", "cli_fixtures.workflows:build_agents", "write"])

    assert exit_code == cli.EXIT_FAILED


def test_prompt_from_stdin(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr("sys.stdin", io.StringIO("from stdin"))

    cli.main(["run", "cli_fixtures.workflows:shout", "-"])

    assert capsys.readouterr().out == "FROM STDIN\n"
