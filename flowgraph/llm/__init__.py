"""LLM provider abstraction."""

from flowgraph.llm.litellm import LiteLLMProvider
from flowgraph.llm.mock import MockLLMProvider
from flowgraph.llm.provider import LLMProvider, LLMResponse

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "LiteLLMProvider",
    "MockLLMProvider",
]
