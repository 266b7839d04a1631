"""Global agent definitions shared by every node of a workflow."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AgentDefinition(BaseModel):
    """An agent as registered once per workflow.

    Nodes refer to agents by name and may override ``tools`` and
    ``delegates_to`` for their own execution without touching this record.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    description: str = ""
    system_prompt: str = ""
    tools: tuple[str, ...] = ()
    delegates_to: tuple[str, ...] = ()
    model: str | None = Field(
        default=None,
        description="Model override for this agent (None = provider default)",
    )

    @field_validator("tools", "delegates_to", mode="before")
    @classmethod
    def _dedupe(cls, value: object) -> object:
        if isinstance(value, str):
            return (value,)
        if isinstance(value, (list, tuple, set, frozenset)):
            return tuple(dict.fromkeys(value))
        return value
