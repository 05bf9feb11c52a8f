"""Graph structures: Nodes, Connections, Adapters and the Executor."""

from flowgraph.graph.adapter import FunctionAdapter, LLMAdapter, TransformationAdapter
from flowgraph.graph.collector import WAITING_TEMPLATE
from flowgraph.graph.compat import can_accept, check_connection, is_image_content
from flowgraph.graph.conditional import LOOP_TERMINATED_TEMPLATE
from flowgraph.graph.edge import Connection, GraphSpec
from flowgraph.graph.errors import (
    FlowGraphError,
    GraphBusyError,
    GraphError,
    ProcessingError,
    TypeMismatch,
    ValidationError,
)
from flowgraph.graph.executor import (
    BranchFailure,
    ExecutionContext,
    ExecutionResult,
    GraphExecutor,
)
from flowgraph.graph.node import (
    AnyNode,
    CollectorNodeSpec,
    CombineMethod,
    ConditionalNodeSpec,
    ContentType,
    NodeKind,
    NodeSpec,
    NodeStatus,
    ProcessorKind,
    SplitterNodeSpec,
)
from flowgraph.graph.splitter import split_items

__all__ = [
    # Node
    "NodeSpec",
    "SplitterNodeSpec",
    "ConditionalNodeSpec",
    "CollectorNodeSpec",
    "CombineMethod",
    "AnyNode",
    "ContentType",
    "ProcessorKind",
    "NodeKind",
    "NodeStatus",
    # Edge
    "Connection",
    "GraphSpec",
    # Type gate
    "can_accept",
    "check_connection",
    "is_image_content",
    # Adapters
    "TransformationAdapter",
    "FunctionAdapter",
    "LLMAdapter",
    # Executor
    "GraphExecutor",
    "ExecutionContext",
    "ExecutionResult",
    "BranchFailure",
    # Splitter / Conditional / Collector
    "split_items",
    "LOOP_TERMINATED_TEMPLATE",
    "WAITING_TEMPLATE",
    # Errors
    "FlowGraphError",
    "ValidationError",
    "ProcessingError",
    "GraphError",
    "GraphBusyError",
    "TypeMismatch",
]
