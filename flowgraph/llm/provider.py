"""LLM Provider abstraction for pluggable model backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class LLMResponse:
    """Response from an LLM call."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = ""
    raw_response: Any = None


class LLMProvider(ABC):
    """
    Abstract LLM provider - plug in any model backend.

    Implementations should handle:
    - API authentication
    - Request/response formatting
    - Token counting
    - Timeouts and transport errors
    """

    @abstractmethod
    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion from the model.

        Args:
            messages: Conversation history [{role: "user"|"assistant", content: str | list}]
                Content may be a list of parts ({"type": "text"} / {"type": "image_url"})
                for vision requests.
            system: System prompt
            max_tokens: Maximum tokens to generate; None uses the provider's own limit

        Returns:
            LLMResponse with content and metadata
        """
        pass

    async def agenerate_image(self, prompt: str) -> str:
        """
        Generate an image from a prompt.

        Returns:
            An image URL or a data:image URI
        """
        raise NotImplementedError(f"{type(self).__name__} does not support image generation")
