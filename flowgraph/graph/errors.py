"""
Error taxonomy for graph execution.

- ValidationError: a node was run without the input it requires
- ProcessingError: the transformation adapter failed for a node
- GraphError: structural problems (unknown ids, broken references)
- GraphBusyError: the graph was mutated while an execution is in flight

TypeMismatch is deliberately not an exception: a rejected edge is simply
skipped, so it is carried around as a diagnostic value.
"""

from dataclasses import dataclass


class FlowGraphError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, node_id: str | None = None):
        super().__init__(message)
        self.node_id = node_id


class ValidationError(FlowGraphError):
    """A node that requires input was run without any."""


class ProcessingError(FlowGraphError):
    """The transformation adapter could not process a node."""


class GraphError(FlowGraphError):
    """The graph structure does not allow the requested operation."""


class GraphBusyError(GraphError):
    """The graph was mutated while an execution is running."""


@dataclass(frozen=True)
class TypeMismatch:
    """An edge whose source output cannot be consumed by its target."""

    source_id: str
    source_type: str
    target_id: str
    target_type: str

    def describe(self) -> str:
        return (
            f"Type mismatch on '{self.source_id}' -> '{self.target_id}': "
            f"{self.source_type} output cannot feed {self.target_type} input"
        )
