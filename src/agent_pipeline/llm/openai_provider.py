"""OpenAI LLM provider implementation."""

import logging
from typing import Any

from openai import OpenAI

from agent_pipeline.core.config import LLMConfig
from agent_pipeline.llm.provider import LLMProvider

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """OpenAI chat-completions provider."""

    def __init__(self, config: LLMConfig, client: OpenAI | None = None) -> None:
        """Initialize the OpenAI provider.

        Args:
            config: LLM configuration.
            client: Pre-built client (tests inject a fake here).

        Raises:
            ValueError: If no client is given and the API key is missing.
        """
        if client is None and not config.openai_api_key:
            raise ValueError("OpenAI API key is required")

        self.config = config
        self.client = client or OpenAI(api_key=config.openai_api_key)
        self.model = config.openai_model
        self.temperature = config.openai_temperature

        logger.info("OpenAI provider initialized", extra={"model": self.model})

    def chat(
        self,
        messages: list[dict[str, str]],
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        temp = temperature if temperature is not None else self.temperature
        model_name = model or self.model

        logger.debug(
            "Requesting chat completion",
            extra={"model": model_name, "message_count": len(messages)},
        )

        response = self.client.chat.completions.create(
            model=model_name,
            messages=messages,  # type: ignore[arg-type]
            max_tokens=max_tokens,
            temperature=temp,
            **kwargs,
        )

        content = response.choices[0].message.content or ""
        logger.debug("Chat completion received", extra={"characters": len(content)})

        return content

    def count_tokens(self, text: str) -> int:
        # Rough approximation: 1 token ≈ 4 characters
        return len(text) // 4
