"""Abstract base class for LLM providers."""

from abc import ABC, abstractmethod
from typing import Any


class LLMProvider(ABC):
    """Chat-completion backend used by :class:`~agent_pipeline.agents.LLMAgentRunner`.

    Implementations are stateless with respect to conversations: the runner
    owns each agent's message history and sends it whole on every call.
    """

    @abstractmethod
    def chat(
        self,
        messages: list[dict[str, str]],
        *,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        """Generate the next assistant message for a conversation.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            model: Model override for this call (None = provider default).
            max_tokens: Maximum tokens to generate.
            temperature: Sampling temperature.
            **kwargs: Additional provider-specific parameters.

        Returns:
            The assistant reply text.
        """
        pass

    @abstractmethod
    def count_tokens(self, text: str) -> int:
        """Count the number of tokens in text."""
        pass
