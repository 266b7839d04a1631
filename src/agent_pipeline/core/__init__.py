"""Core package initialization."""

from agent_pipeline.core.config import (
    EngineConfig,
    LLMConfig,
    PipelineConfig,
    TransformerConfig,
)
from agent_pipeline.core.logging import JsonFormatter, configure_logging

__all__ = [
    "EngineConfig",
    "JsonFormatter",
    "LLMConfig",
    "PipelineConfig",
    "TransformerConfig",
    "configure_logging",
]
