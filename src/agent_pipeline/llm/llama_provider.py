"""Local LLaMA LLM provider implementation."""

import logging
from typing import Any

from agent_pipeline.core.config import LLMConfig
from agent_pipeline.llm.provider import LLMProvider

logger = logging.getLogger(__name__)


class LLaMAProvider(LLMProvider):
    """Local LLaMA model provider.

    Requires the ``llama`` extra:
        pip install agent-pipeline[llama]
    """

    def __init__(self, config: LLMConfig) -> None:
        """Load the local model.

        Raises:
            ValueError: If model path is not provided.
            ImportError: If llama-cpp-python is not installed.
        """
        if not config.llama_model_path:
            raise ValueError("LLaMA model path is required")

        try:
            from llama_cpp import Llama
        except ImportError as e:
            raise ImportError(
                "llama-cpp-python is required for LLaMA provider. "
                "Install it with: pip install agent-pipeline[llama]"
            ) from e

        self.config = config

        logger.info("Loading LLaMA model", extra={"model_path": str(config.llama_model_path)})

        self.llm = Llama(
            model_path=str(config.llama_model_path),
            n_ctx=config.llama_n_ctx,
            n_threads=config.llama_n_threads,
            verbose=False,
        )

    def chat(
        self,
        messages: list[dict[str, str]],
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        # A single local model is loaded, so per-agent model names are ignored.
        if model:
            logger.debug("Ignoring model override for local LLaMA", extra={"model": model})

        result = self.llm.create_chat_completion(
            messages=messages,
            max_tokens=max_tokens or 512,
            temperature=temperature if temperature is not None else 0.7,
            **kwargs,
        )

        return result["choices"][0]["message"]["content"] or ""

    def count_tokens(self, text: str) -> int:
        tokens = self.llm.tokenize(text.encode("utf-8"))
        return len(tokens)
