"""Test configuration and fixtures."""

from __future__ import annotations

import os
import sys
import textwrap
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from agent_pipeline.agents.definition import AgentDefinition
from agent_pipeline.agents.runner import AgentOverlay, AgentResult
from agent_pipeline.core.config import EngineConfig, LLMConfig, PipelineConfig


class StubAgentRunner:
    """Agent runner returning queued responses and recording every call.

    A queued exception becomes a failed ``AgentResult``.
    """

    def __init__(self, responses: list[str | Exception] | None = None) -> None:
        self.responses: list[str | Exception] = list(responses or [])
        self.calls: list[tuple[AgentOverlay, str, bool]] = []

    def execute(self, overlay: AgentOverlay, prompt: str, reset_context: bool) -> AgentResult:
        self.calls.append((overlay, prompt, reset_context))
        overlay.emit({"type": "agent_start", "node": overlay.node, "agent": overlay.lead})

        response = self.responses.pop(0) if self.responses else f"{overlay.lead}: {prompt}"
        if isinstance(response, Exception):
            return AgentResult(content=None, agent=overlay.lead, success=False, error=response)

        overlay.emit({"type": "agent_stop", "node": overlay.node, "agent": overlay.lead})
        return AgentResult(content=response, agent=overlay.lead)


class EventCollector:
    """Event sink that keeps everything it receives."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    def __call__(self, event: dict[str, Any]) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [e for e in self.events if e["type"] == event_type]

    def nodes(self, event_type: str) -> list[str]:
        return [e["node"] for e in self.of_type(event_type)]


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep developer .env files and AGENT_PIPELINE_* variables out of tests."""
    monkeypatch.chdir(tmp_path)
    for name in [n for n in os.environ if n.startswith("AGENT_PIPELINE_")]:
        monkeypatch.delenv(name)


@pytest.fixture
def stub_runner() -> StubAgentRunner:
    """Provide an agent runner with an empty response queue."""
    return StubAgentRunner()


@pytest.fixture
def events() -> EventCollector:
    """Provide an event sink that records events."""
    return EventCollector()


@pytest.fixture
def agents() -> dict[str, AgentDefinition]:
    """Provide a small agent registry."""
    return {
        "writer": AgentDefinition(
            name="writer",
            description="Writes drafts",
            system_prompt="You write.",
            tools=("Read", "Write"),
        ),
        "reviewer": AgentDefinition(
            name="reviewer",
            description="Reviews drafts",
            tools=("Read",),
            delegates_to=("writer",),
        ),
        "tester": AgentDefinition(name="tester", description="Runs tests", tools=("Bash",)),
    }


@pytest.fixture
def write_script(tmp_path: Path) -> Callable[..., list[str]]:
    """Write a Python script and return the command that runs it."""

    def _write(source: str, name: str = "transformer.py") -> list[str]:
        path = tmp_path / name
        path.write_text(textwrap.dedent(source), encoding="utf-8")
        return [sys.executable, str(path)]

    return _write


@pytest.fixture
def llm_config() -> LLMConfig:
    """Provide a test LLM configuration."""
    return LLMConfig(
        provider="openai",
        openai_api_key="test-key",
        openai_model="gpt-4",
    )


@pytest.fixture
def engine_config(tmp_path: Path) -> EngineConfig:
    """Provide an engine configuration that records runs."""
    return EngineConfig(record_path=tmp_path / "runs" / "record.json")


@pytest.fixture
def pipeline_config(llm_config: LLMConfig, engine_config: EngineConfig) -> PipelineConfig:
    """Provide a test pipeline configuration."""
    return PipelineConfig(
        log_level="DEBUG",
        debug=True,
        llm=llm_config,
        engine=engine_config,
    )
