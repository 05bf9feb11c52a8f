"""Mock LLM provider for tests and offline runs."""

from collections.abc import Callable
from typing import Any

from flowgraph.llm.provider import LLMProvider, LLMResponse


class MockLLMProvider(LLMProvider):
    """
    Returns scripted responses and records every call.

    Responses are consumed in order; the last one repeats once the script
    runs out. A callable receives (messages, system) and returns the text.
    """

    def __init__(
        self,
        responses: list[str] | Callable[[list[dict[str, Any]], str], str] | None = None,
        image_url: str = "https://example.com/generated.png",
        model: str = "mock-model",
    ):
        self._responses = responses if responses is not None else ["mock response"]
        self.image_url = image_url
        self.model = model
        self.calls: list[dict[str, Any]] = []
        self.image_prompts: list[str] = []

    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        max_tokens: int | None = None,
    ) -> LLMResponse:
        self.calls.append({"messages": messages, "system": system, "max_tokens": max_tokens})

        if callable(self._responses):
            content = self._responses(messages, system)
        else:
            index = min(len(self.calls) - 1, len(self._responses) - 1)
            content = self._responses[index]

        return LLMResponse(content=content, model=self.model, stop_reason="stop")

    async def agenerate_image(self, prompt: str) -> str:
        self.image_prompts.append(prompt)
        return self.image_url
