"""Persisted record of a workflow run.

The record is rewritten after every node so an interrupted run can be
inspected, and a finished one replayed node by node.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from agent_pipeline.workflow.context import NodeResult

RunStatus = Literal["running", "succeeded", "failed", "halted", "cancelled"]


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


class NodeRecord(BaseModel):
    agent: str
    content: str | None
    success: bool
    duration: float
    skipped: bool = False
    error: str | None = None

    @classmethod
    def from_result(cls, result: NodeResult) -> NodeRecord:
        return cls(
            agent=result.agent,
            content=result.content,
            success=result.success,
            duration=result.duration,
            skipped=result.skipped,
            error=str(result.error) if result.error is not None else None,
        )


class RunRecord(BaseModel):
    run_id: str
    workflow: str
    original_prompt: str
    status: RunStatus = "running"
    created_at: str = Field(default_factory=_utc_iso_now)
    updated_at: str = Field(default_factory=_utc_iso_now)

    path: list[str] = Field(default_factory=list)
    results: dict[str, NodeRecord] = Field(default_factory=dict)

    content: str | None = None
    halt_reason: str | None = None
    error: str | None = None

    def update(
        self,
        *,
        path: list[str],
        results: Mapping[str, NodeResult],
        status: RunStatus | None = None,
        **updates: object,
    ) -> RunRecord:
        return self.model_copy(
            update={
                "updated_at": _utc_iso_now(),
                "path": list(path),
                "results": {name: NodeRecord.from_result(r) for name, r in results.items()},
                "status": status or self.status,
                **updates,
            }
        )


class RunRecordStore:
    """Persist run records as JSON at a fixed path."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> RunRecord | None:
        with self._lock:
            if not self._path.exists():
                return None
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        return RunRecord.model_validate(raw)

    def save(self, record: RunRecord) -> None:
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(
                json.dumps(record.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n",
                encoding="utf-8",
            )
