"""
Type-compatibility gate.

Decides whether a node's output may cross a connection into another node.
The declared types decide by default; a few overrides let image output
reach nodes that can make use of it even though they declare text input.
"""

from urllib.parse import urlparse

from flowgraph.graph.errors import TypeMismatch
from flowgraph.graph.node import BaseNodeSpec, ContentType, ProcessorKind

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg")

# Instruction keywords that let a text-to-text node take image output
VISUAL_KEYWORDS = ("image", "visual", "picture")


def is_image_content(value: object) -> bool:
    """True for data:image URIs and http(s) URLs pointing at an image file."""
    if not isinstance(value, str):
        return False
    if value.startswith("data:image"):
        return True
    if value.startswith("http"):
        try:
            path = urlparse(value).path.lower()
        except ValueError:
            return False
        return path.endswith(IMAGE_EXTENSIONS)
    return False


def produces_image(node: BaseNodeSpec) -> bool:
    """Whether the node's last output is image-typed."""
    return node.content_type == ContentType.IMAGE


def can_accept(target: BaseNodeSpec, source: BaseNodeSpec) -> bool:
    """Whether `target` may consume the output of `source`. Pure."""
    if target.input_type == source.output_type:
        return True

    if not produces_image(source):
        return False

    if target.processor == ProcessorKind.IMAGE_TO_TEXT:
        return True

    if target.processor == ProcessorKind.TEXT_TO_TEXT:
        instruction = target.instruction.lower()
        return any(keyword in instruction for keyword in VISUAL_KEYWORDS)

    return False


def check_connection(target: BaseNodeSpec, source: BaseNodeSpec) -> TypeMismatch | None:
    """Return a TypeMismatch diagnostic if the edge must not be traversed."""
    if can_accept(target, source):
        return None
    return TypeMismatch(
        source_id=source.id,
        source_type=str(source.output_type),
        target_id=target.id,
        target_type=str(target.input_type),
    )
