"""Unit tests for the workflow engine."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from agent_pipeline.agents.definition import AgentDefinition
from agent_pipeline.core.config import EngineConfig
from agent_pipeline.workflow.context import ExecutionContext
from agent_pipeline.workflow.definition import NodeAgentConfig, NodeDefinition, WorkflowDefinition
from agent_pipeline.workflow.engine import WorkflowEngine
from agent_pipeline.workflow.errors import ConfigurationError, WorkflowLoopError
from agent_pipeline.workflow.record import RunRecordStore


def _upper(context: ExecutionContext) -> str:
    return (context.content or "").upper()


def _workflow(
    nodes: list[NodeDefinition],
    agents: dict[str, AgentDefinition] | None = None,
    **kwargs: object,
) -> WorkflowDefinition:
    return WorkflowDefinition(
        name="wf",
        start_node=nodes[0].name,
        nodes=nodes,
        agents=agents or {},
        **kwargs,  # type: ignore[arg-type]
    )


def test_single_agent_less_node_uppercases() -> None:
    engine = WorkflowEngine(_workflow([NodeDefinition(name="shout", output_transformer=_upper)]))

    result = engine.execute("abc")

    assert result.content == "ABC"
    assert result.success is True
    assert result.agent == "computation:shout"
    assert result.path == ("shout",)


def test_two_agent_nodes_accumulate_results(agents, stub_runner) -> None:
    definition = _workflow(
        [
            NodeDefinition(name="node1", agent_configs=("writer",)),
            NodeDefinition(name="node2", agent_configs=("reviewer",), dependencies=("node1",)),
        ],
        agents,
    )
    stub_runner.responses = ["X", "Y"]

    result = WorkflowEngine(definition, stub_runner).execute("start")

    assert {name: r.content for name, r in result.all_results.items()} == {
        "node1": "X",
        "node2": "Y",
    }
    assert list(result.all_results) == ["node1", "node2"]
    assert result.all_results["node1"].agent == "writer"
    assert result.all_results["node2"].agent == "reviewer"
    assert result.content == "Y"
    assert result.agent == "reviewer"
    # Each node receives the previous node's output.
    assert [prompt for _, prompt, _ in stub_runner.calls] == ["start", "X"]


def test_goto_skips_intermediate_node(agents, stub_runner, events) -> None:
    definition = _workflow(
        [
            NodeDefinition(
                name="a",
                agent_configs=("writer",),
                output_transformer=lambda ctx: ctx.goto_node("c", f"{ctx.content} -> c"),
            ),
            NodeDefinition(name="b", agent_configs=("reviewer",), dependencies=("a",)),
            NodeDefinition(name="c", agent_configs=("tester",)),
        ],
        agents,
    )
    stub_runner.responses = ["from a", "from c"]

    result = WorkflowEngine(definition, stub_runner, event_sink=events).execute("go")

    assert "b" not in events.nodes("node_start")
    assert "b" not in events.nodes("node_stop")
    assert events.nodes("node_start") == ["a", "c"]
    assert events.nodes("node_stop") == ["a", "c"]
    assert result.content == "from c"
    assert stub_runner.calls[1][1] == "from a -> c"
    assert result.path == ("a", "c")


def test_goto_revisit_overwrites_result(agents, stub_runner) -> None:
    attempts: list[str] = []

    def retry_until_approved(ctx: ExecutionContext):
        attempts.append(ctx.content)
        if ctx.content == "approved":
            return ctx.content
        return ctx.goto_node("draft", "try again")

    definition = _workflow(
        [
            NodeDefinition(name="draft", agent_configs=("writer",)),
            NodeDefinition(
                name="review",
                agent_configs=("reviewer",),
                dependencies=("draft",),
                output_transformer=retry_until_approved,
            ),
        ],
        agents,
    )
    stub_runner.responses = ["v1", "rejected", "v2", "approved"]

    result = WorkflowEngine(definition, stub_runner).execute("write")

    assert result.success is True
    assert result.content == "approved"
    assert result.path == ("draft", "review", "draft", "review")
    assert list(result.all_results) == ["draft", "review"]
    assert result.all_results["draft"].content == "v2"
    assert attempts == ["rejected", "approved"]


def test_goto_unknown_node_raises(agents, stub_runner) -> None:
    definition = _workflow(
        [
            NodeDefinition(
                name="a",
                agent_configs=("writer",),
                output_transformer=lambda ctx: ctx.goto_node("nowhere", "x"),
            )
        ],
        agents,
    )

    with pytest.raises(ConfigurationError, match="target 'nowhere'"):
        WorkflowEngine(definition, stub_runner).execute("go")


def test_input_goto_forward_jump(stub_runner) -> None:
    definition = _workflow(
        [
            NodeDefinition(
                name="router", input_transformer=lambda ctx: ctx.goto_node("fast", ctx.content)
            ),
            NodeDefinition(name="slow", dependencies=("router",), output_transformer=_upper),
            NodeDefinition(name="fast", output_transformer=lambda ctx: ctx.content + "!"),
        ]
    )

    result = WorkflowEngine(definition).execute("hi")

    assert result.content == "hi!"
    assert "router" not in result.all_results
    assert result.path == ("router", "fast")


def test_skip_execution_emits_single_skipped_stop(agents, stub_runner, events) -> None:
    definition = _workflow(
        [
            NodeDefinition(
                name="cached",
                agent_configs=("writer",),
                input_transformer=lambda ctx: ctx.skip_execution("from cache"),
            )
        ],
        agents,
    )

    result = WorkflowEngine(definition, stub_runner, event_sink=events).execute("go")

    assert stub_runner.calls == []
    assert events.of_type("agent_start") == []
    stops = events.of_type("node_stop")
    assert len(stops) == 1
    assert stops[0]["skipped"] is True
    assert result.content == "from cache"
    assert result.all_results["cached"].skipped is True


def test_command_skip_leaves_content_unchanged(agents, stub_runner, write_script) -> None:
    command = write_script(
        """
        import sys
        print("discarded")
        sys.exit(1)
        """
    )
    prior = "tabs\tand trailing newline\n"
    definition = _workflow(
        [
            NodeDefinition(name="first", output_transformer=lambda ctx: prior),
            NodeDefinition(
                name="second",
                agent_configs=("writer",),
                dependencies=("first",),
                input_transformer=command,
            ),
        ],
        agents,
    )

    result = WorkflowEngine(definition, stub_runner).execute("go")

    assert stub_runner.calls == []
    assert result.content == prior
    assert result.all_results["second"].content == prior


def test_command_halt_raises_with_full_stderr(agents, stub_runner, write_script) -> None:
    command = write_script(
        """
        import sys
        sys.stderr.write("line one\\nline two: details\\n")
        sys.exit(2)
        """
    )
    definition = _workflow(
        [NodeDefinition(name="gate", agent_configs=("writer",), input_transformer=command)],
        agents,
    )

    with pytest.raises(ConfigurationError) as exc_info:
        WorkflowEngine(definition, stub_runner).execute("go")

    assert "line one\nline two: details\n" in str(exc_info.value)
    assert "Input transformer halted workflow for node 'gate'" in str(exc_info.value)
    assert stub_runner.calls == []


def test_function_halt_returns_halted_result(agents, stub_runner, events) -> None:
    definition = _workflow(
        [
            NodeDefinition(
                name="a",
                agent_configs=("writer",),
                output_transformer=lambda ctx: ctx.halt_workflow("partial", reason="enough"),
            ),
            NodeDefinition(name="b", agent_configs=("reviewer",), dependencies=("a",)),
        ],
        agents,
    )

    result = WorkflowEngine(definition, stub_runner, event_sink=events).execute("go")

    assert result.success is False
    assert result.halted is True
    assert result.agent == "halted"
    assert result.content == "partial"
    assert result.halt_reason == "enough"
    assert events.nodes("node_start") == ["a"]
    assert events.nodes("node_stop") == ["a"]


def test_agent_failure_ends_run(agents, stub_runner) -> None:
    definition = _workflow(
        [
            NodeDefinition(name="a", agent_configs=("writer",)),
            NodeDefinition(name="b", agent_configs=("reviewer",), dependencies=("a",)),
        ],
        agents,
    )
    stub_runner.responses = [RuntimeError("provider down")]

    result = WorkflowEngine(definition, stub_runner).execute("go")

    assert result.success is False
    assert result.halted is False
    assert result.agent == "writer"
    assert isinstance(result.error, RuntimeError)
    assert len(stub_runner.calls) == 1


def test_every_started_node_stops_once(agents, stub_runner, events) -> None:
    definition = _workflow(
        [
            NodeDefinition(name="a", agent_configs=("writer",)),
            NodeDefinition(name="b", dependencies=("a",), output_transformer=_upper),
            NodeDefinition(name="c", agent_configs=("tester",), dependencies=("b",)),
        ],
        agents,
    )

    WorkflowEngine(definition, stub_runner, event_sink=events).execute("go")

    assert events.nodes("node_start") == events.nodes("node_stop") == ["a", "b", "c"]
    node_events = [e for e in events.events if e["type"].startswith("node_")]
    assert [e["type"] for e in node_events] == ["node_start", "node_stop"] * 3


@pytest.mark.parametrize(
    ("mode", "same", "present"),
    [("enabled", True, True), ("per_node", False, True), ("disabled", None, False)],
)
def test_scratchpad_modes(agents, mode: str, same: bool | None, present: bool) -> None:
    definition = _workflow(
        [
            NodeDefinition(name="a", agent_configs=("writer",)),
            NodeDefinition(name="b", agent_configs=("writer",), dependencies=("a",)),
        ],
        agents,
        scratchpad=mode,
    )
    engine = WorkflowEngine(definition, object())  # type: ignore[arg-type]

    first, second = engine.scratchpad_for("a"), engine.scratchpad_for("b")

    if not present:
        assert first is None and second is None
        assert engine.all_scratchpads() == {}
    elif same:
        assert first is second
        assert engine.all_scratchpads() == {"shared": first}
    else:
        assert first is not None and second is not None
        assert first is not second
        assert engine.scratchpad_for("a") is first
        assert engine.all_scratchpads() == {"a": first, "b": second}


def test_scratchpad_reaches_the_runner(agents, stub_runner) -> None:
    definition = _workflow(
        [
            NodeDefinition(name="a", agent_configs=("writer",)),
            NodeDefinition(name="b", agent_configs=("writer",), dependencies=("a",)),
        ],
        agents,
        scratchpad="enabled",
    )
    engine = WorkflowEngine(definition, stub_runner)

    engine.execute("go")

    pads = [overlay.scratchpad for overlay, _, _ in stub_runner.calls]
    assert pads[0] is pads[1] is engine.scratchpad_for("a")


def test_reset_context_flag_is_forwarded(agents, stub_runner) -> None:
    definition = _workflow(
        [
            NodeDefinition(name="a", agent_configs=("writer",)),
            NodeDefinition(
                name="b",
                agent_configs=(NodeAgentConfig("writer", reset_context=False),),
                dependencies=("a",),
            ),
        ],
        agents,
    )

    WorkflowEngine(definition, stub_runner).execute("go")

    assert [reset for _, _, reset in stub_runner.calls] == [True, False]


def test_missing_runner_for_agent_nodes_raises(agents) -> None:
    definition = _workflow([NodeDefinition(name="a", agent_configs=("writer",))], agents)

    with pytest.raises(ConfigurationError, match="no agent runner"):
        WorkflowEngine(definition)


def test_visit_limit_stops_goto_loops() -> None:
    definition = _workflow(
        [NodeDefinition(name="spin", output_transformer=lambda ctx: ctx.goto_node("spin", "x"))]
    )
    engine = WorkflowEngine(definition, config=EngineConfig(max_node_visits=3))

    with pytest.raises(WorkflowLoopError) as exc_info:
        engine.execute("go")

    assert exc_info.value.node == "spin"
    assert exc_info.value.visits == 4


def test_run_record_written_after_each_node(agents, stub_runner, tmp_path: Path) -> None:
    record_path = tmp_path / "runs" / "last.json"
    definition = _workflow(
        [
            NodeDefinition(name="a", agent_configs=("writer",)),
            NodeDefinition(name="b", dependencies=("a",), output_transformer=_upper),
        ],
        agents,
    )
    stub_runner.responses = ["draft"]
    engine = WorkflowEngine(definition, stub_runner, config=EngineConfig(record_path=record_path))

    result = engine.execute("go")

    record = RunRecordStore(record_path).load()
    assert record is not None
    assert record.status == "succeeded"
    assert record.workflow == "wf"
    assert record.original_prompt == "go"
    assert record.path == ["a", "b"]
    assert record.content == result.content == "DRAFT"
    assert record.results["a"].agent == "writer"
    assert record.results["b"].agent == "computation:b"
    assert json.loads(record_path.read_text(encoding="utf-8"))["status"] == "succeeded"


def test_run_record_marks_failures(agents, stub_runner, tmp_path: Path, write_script) -> None:
    record_path = tmp_path / "record.json"
    command = write_script("import sys; sys.stderr.write('nope'); sys.exit(2)")
    definition = _workflow(
        [NodeDefinition(name="gate", output_transformer=command)],
        agents,
    )
    engine = WorkflowEngine(definition, config=EngineConfig(record_path=record_path))

    with pytest.raises(ConfigurationError):
        engine.execute("go")

    record = RunRecordStore(record_path).load()
    assert record is not None
    assert record.status == "failed"
    assert "nope" in (record.error or "")
    assert record.results["gate"].agent == "halted"
