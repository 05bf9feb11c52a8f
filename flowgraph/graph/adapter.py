"""
Transformation adapters - turn (node, input) into output.

The executor treats transformation as an opaque async call. Adapters must
not touch node runtime fields (processing, content, ...); the executor owns
those. Failures surface as ProcessingError.

Two adapters ship with the engine:
- FunctionAdapter: plain Python callables registered per node id
- LLMAdapter: maps each processor kind to an LLMProvider call
"""

import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from flowgraph.graph.compat import is_image_content
from flowgraph.graph.errors import FlowGraphError, ProcessingError
from flowgraph.graph.node import BaseNodeSpec, ConditionalNodeSpec, ProcessorKind
from flowgraph.llm.provider import LLMProvider

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_INSTRUCTION = "Describe this image in detail."

NodeFunction = Callable[[BaseNodeSpec, Any], Any]


class TransformationAdapter(ABC):
    """Interface the executor calls to process a node."""

    @abstractmethod
    async def process_node(self, node: BaseNodeSpec, input_data: Any) -> Any:
        """Transform input_data according to the node's declared processor."""
        pass


class FunctionAdapter(TransformationAdapter):
    """
    Adapter backed by Python callables.

    Example:
        adapter = FunctionAdapter()
        adapter.register("upper", lambda node, text: text.upper())
        adapter.register("fetch", fetch_async)  # async callables work too
    """

    def __init__(
        self,
        handlers: dict[str, NodeFunction] | None = None,
        default: NodeFunction | None = None,
    ):
        self.handlers = dict(handlers or {})
        self.default = default

    def register(self, node_id: str, func: NodeFunction) -> None:
        """Register a callable for a node."""
        self.handlers[node_id] = func

    async def process_node(self, node: BaseNodeSpec, input_data: Any) -> Any:
        func = self.handlers.get(node.id, self.default)
        if func is None:
            raise ProcessingError(f"No handler registered for node '{node.id}'", node_id=node.id)

        try:
            result = func(node, input_data)
            if inspect.isawaitable(result):
                result = await result
        except FlowGraphError:
            raise
        except Exception as e:
            raise ProcessingError(f"Node '{node.id}' handler failed: {e}", node_id=node.id) from e
        return result


class LLMAdapter(TransformationAdapter):
    """
    Adapter that calls a model for every node.

    Processor kind to call mapping:
    - text-to-text: chat completion, instruction as system prompt
      (image input is described through the vision call instead)
    - image-to-text: vision completion over the image URL
    - text-to-image: image generation from the input
    - audio-to-text: not supported
    """

    def __init__(self, provider: LLMProvider, max_tokens: int | None = None):
        """
        Args:
            provider: Model backend
            max_tokens: Per-call limit; None defers to the provider's configured limit
        """
        self.provider = provider
        self.max_tokens = max_tokens

    async def process_node(self, node: BaseNodeSpec, input_data: Any) -> Any:
        try:
            if node.processor == ProcessorKind.TEXT_TO_TEXT:
                if is_image_content(input_data):
                    logger.info(
                        f"Node {node.id} received image input, using image-to-text processing",
                        extra={"node_id": node.id},
                    )
                    return await self._image_to_text(node, input_data)
                return await self._text_to_text(node, input_data)

            if node.processor == ProcessorKind.IMAGE_TO_TEXT:
                return await self._image_to_text(node, input_data)

            if node.processor == ProcessorKind.TEXT_TO_IMAGE:
                return await self._text_to_image(node, input_data)

            if node.processor == ProcessorKind.AUDIO_TO_TEXT:
                raise ProcessingError(
                    "Audio to text processing is not supported", node_id=node.id
                )
        except FlowGraphError:
            raise
        except Exception as e:
            raise ProcessingError(
                f"Model request failed for node '{node.id}': {e}", node_id=node.id
            ) from e

        raise ProcessingError(f"Unhandled processor kind: {node.processor}", node_id=node.id)

    def _system_prompt(self, node: BaseNodeSpec) -> str:
        prompt = node.instruction
        if isinstance(node, ConditionalNodeSpec):
            prompt = (
                f"{prompt}\n\nThis is iteration {node.current_iteration} "
                f"of a maximum {node.max_iterations} iterations."
            ).lstrip()
        return prompt

    async def _text_to_text(self, node: BaseNodeSpec, input_data: Any) -> str:
        response = await self.provider.acomplete(
            messages=[{"role": "user", "content": str(input_data)}],
            system=self._system_prompt(node),
            max_tokens=self.max_tokens,
        )
        return response.content

    async def _image_to_text(self, node: BaseNodeSpec, input_data: Any) -> str:
        if not is_image_content(input_data):
            raise ProcessingError(
                f"Node '{node.id}' expects image input (URL or data URI)", node_id=node.id
            )
        content = [
            {"type": "text", "text": node.instruction or DEFAULT_IMAGE_INSTRUCTION},
            {"type": "image_url", "image_url": {"url": input_data}},
        ]
        response = await self.provider.acomplete(
            messages=[{"role": "user", "content": content}],
            max_tokens=self.max_tokens,
        )
        return response.content

    async def _text_to_image(self, node: BaseNodeSpec, input_data: Any) -> str:
        prompt = str(input_data)
        if node.instruction:
            prompt = f"{node.instruction}\n\n{prompt}"
        return await self.provider.agenerate_image(prompt)
