"""Configuration for the workflow engine and its collaborators."""

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from agent_pipeline.core.logging import configure_logging


class LLMConfig(BaseSettings):
    """Configuration for the LLM provider backing the default agent runner."""

    provider: Literal["openai", "llama"] = Field(
        default="openai",
        description="LLM provider to use",
    )

    # OpenAI settings
    openai_api_key: str | None = Field(
        default=None,
        description="OpenAI API key",
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model to use when an agent does not name one",
    )
    openai_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Temperature for OpenAI model",
    )

    # LLaMA settings
    llama_model_path: Path | None = Field(
        default=None,
        description="Path to LLaMA model file",
    )
    llama_n_ctx: int = Field(
        default=4096,
        gt=0,
        description="Context window size for LLaMA",
    )
    llama_n_threads: int | None = Field(
        default=None,
        description="Number of threads for LLaMA (None = auto)",
    )

    model_config = SettingsConfigDict(
        env_prefix="AGENT_PIPELINE_LLM_",
        env_file=".env",
        extra="ignore",
    )


class TransformerConfig(BaseSettings):
    """Configuration for command transformers."""

    timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Seconds a command transformer may run before it is killed",
    )
    project_dir: Path = Field(
        default_factory=Path.cwd,
        description="Working directory exported to command transformers",
    )

    model_config = SettingsConfigDict(
        env_prefix="AGENT_PIPELINE_TRANSFORMER_",
        env_file=".env",
        extra="ignore",
    )


class EngineConfig(BaseSettings):
    """Configuration for the workflow engine."""

    max_node_visits: int | None = Field(
        default=None,
        gt=0,
        description="Maximum executions of a single node per run (None = unlimited)",
    )
    record_path: Path | None = Field(
        default=None,
        description="Where to persist the run record after every node (None = disabled)",
    )

    model_config = SettingsConfigDict(
        env_prefix="AGENT_PIPELINE_ENGINE_",
        env_file=".env",
        extra="ignore",
    )


class PipelineConfig(BaseSettings):
    """Main configuration for agent-pipeline."""

    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    json_logs: bool = Field(
        default=True,
        description="Emit structured JSON log lines",
    )

    llm: LLMConfig = Field(
        default_factory=LLMConfig,
        description="LLM configuration",
    )
    transformer: TransformerConfig = Field(
        default_factory=TransformerConfig,
        description="Command transformer configuration",
    )
    engine: EngineConfig = Field(
        default_factory=EngineConfig,
        description="Engine configuration",
    )

    model_config = SettingsConfigDict(
        env_prefix="AGENT_PIPELINE_",
        env_file=".env",
        extra="ignore",
    )

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        configure_logging(self.log_level, json_output=self.json_logs)

        if self.debug:
            logging.getLogger("agent_pipeline").setLevel(logging.DEBUG)
