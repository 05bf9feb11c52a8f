"""LiteLLM provider - one interface over OpenAI, Anthropic, and other backends."""

import logging
from typing import Any

import litellm

from flowgraph.config import DEFAULT_MAX_TOKENS, RuntimeConfig
from flowgraph.llm.provider import LLMProvider, LLMResponse

logger = logging.getLogger(__name__)


class LiteLLMProvider(LLMProvider):
    """
    LLM provider backed by litellm.

    Example:
        provider = LiteLLMProvider(model="openai/gpt-4o")
        response = await provider.acomplete(
            messages=[{"role": "user", "content": "Hello"}],
            system="Be brief.",
        )
    """

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        api_base: str | None = None,
        temperature: float = 0.7,
        image_model: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.temperature = temperature
        self.image_model = image_model
        self.max_tokens = max_tokens

    @classmethod
    def from_config(cls, config: RuntimeConfig | None = None) -> "LiteLLMProvider":
        config = config or RuntimeConfig()
        return cls(
            model=config.model,
            api_key=config.api_key,
            api_base=config.api_base,
            temperature=config.temperature,
            image_model=config.image_model,
            max_tokens=config.max_tokens,
        )

    def _auth_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        return kwargs

    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        max_tokens: int | None = None,
    ) -> LLMResponse:
        full_messages = list(messages)
        if system:
            full_messages.insert(0, {"role": "system", "content": system})

        response = await litellm.acompletion(
            model=self.model,
            messages=full_messages,
            max_tokens=max_tokens or self.max_tokens,
            temperature=self.temperature,
            **self._auth_kwargs(),
        )

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=choice.message.content or "",
            model=getattr(response, "model", None) or self.model,
            input_tokens=getattr(usage, "prompt_tokens", 0) if usage else 0,
            output_tokens=getattr(usage, "completion_tokens", 0) if usage else 0,
            stop_reason=choice.finish_reason or "",
            raw_response=response,
        )

    async def agenerate_image(self, prompt: str) -> str:
        if not self.image_model:
            raise NotImplementedError("No image model configured for LiteLLMProvider")

        response = await litellm.aimage_generation(
            prompt=prompt,
            model=self.image_model,
            **self._auth_kwargs(),
        )

        image = response.data[0]
        url = getattr(image, "url", None)
        if url:
            return url
        b64 = getattr(image, "b64_json", None)
        if b64:
            return f"data:image/png;base64,{b64}"
        raise ValueError(f"Image model '{self.image_model}' returned no image data")
