"""
Graph Executor - Runs flow graphs.

The executor:
1. Takes a GraphSpec and a start node
2. Asks the transformation adapter to process the node
3. Records the node's runtime state (processing, content, errors)
4. Follows outgoing connections depth-first, gating each one on type
   compatibility
5. Hands splitter, conditional and collector nodes to their own logic,
   which recurses back into run()

Results are not aggregated upward: run() returns the start node's own
result, and downstream nodes keep theirs in `content`. A failure in one
downstream branch is logged and recorded; sibling branches still run.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from flowgraph.graph.adapter import TransformationAdapter
from flowgraph.graph.collector import run_collector
from flowgraph.graph.compat import check_connection, is_image_content
from flowgraph.graph.conditional import run_conditional
from flowgraph.graph.edge import GraphSpec
from flowgraph.graph.errors import FlowGraphError, ProcessingError, ValidationError
from flowgraph.graph.node import BaseNodeSpec, ContentType, NodeKind, ProcessorKind
from flowgraph.graph.splitter import run_splitter
from flowgraph.observability import get_trace_context, reset_trace_context, set_trace_context
from flowgraph.runtime.event_bus import EventBus, EventType, FlowEvent

logger = logging.getLogger(__name__)


@dataclass
class BranchFailure:
    """A downstream failure that was caught at its dispatch site."""

    node_id: str
    source_id: str | None
    error: str
    item_index: int | None = None  # 1-based split item, for splitter branches


@dataclass
class ExecutionContext:
    """Bookkeeping threaded through one top-level run."""

    execution_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    path: list[str] = field(default_factory=list)  # Node IDs in the order they started
    node_visit_counts: dict[str, int] = field(default_factory=dict)
    failures: list[BranchFailure] = field(default_factory=list)

    def record_visit(self, node_id: str) -> None:
        self.path.append(node_id)
        self.node_visit_counts[node_id] = self.node_visit_counts.get(node_id, 0) + 1


@dataclass
class ExecutionResult:
    """Result of executing a graph from a start node."""

    success: bool
    output: Any = None
    error: str | None = None
    execution_id: str = ""
    path: list[str] = field(default_factory=list)
    node_visit_counts: dict[str, int] = field(default_factory=dict)
    failures: list[BranchFailure] = field(default_factory=list)

    @property
    def is_clean_success(self) -> bool:
        """True only if execution succeeded with no isolated failures."""
        return self.execution_quality == "clean"

    @property
    def is_degraded_success(self) -> bool:
        return self.execution_quality == "degraded"

    @property
    def had_partial_failures(self) -> bool:
        """True if some downstream branch failed while the run as a whole completed."""
        return self.success and bool(self.failures)

    @property
    def execution_quality(self) -> str:
        """'clean', 'degraded' (isolated branch failures) or 'failed'."""
        if not self.success:
            return "failed"
        return "degraded" if self.failures else "clean"


class GraphExecutor:
    """
    Executes flow graphs.

    Example:
        adapter = FunctionAdapter()
        adapter.register("draft", lambda node, text: f"Draft about {text}")

        executor = GraphExecutor(adapter=adapter, event_bus=EventBus())

        # Raises on start-node failure, returns the start node's output
        output = await executor.run(graph, "draft", "rivers")

        # Never raises for engine errors, returns an ExecutionResult
        result = await executor.execute(graph, "draft", "rivers")
    """

    def __init__(
        self,
        adapter: TransformationAdapter,
        event_bus: EventBus | None = None,
    ):
        """
        Initialize the executor.

        Args:
            adapter: Transformation adapter that processes nodes
            event_bus: Optional diagnostics sink; events are logged either way
        """
        self.adapter = adapter
        self._event_bus = event_bus
        self.logger = logger

    # === ENTRY POINTS ===

    async def execute(
        self,
        graph: GraphSpec,
        start_node_id: str,
        input_data: Any = None,
    ) -> ExecutionResult:
        """
        Run a graph from a start node and report the outcome.

        Validates the graph, resets conditional loop state and collector
        buffers, blocks graph mutation for the duration of the run and
        converts engine errors into a failed ExecutionResult. The trace
        context is scoped to the call.

        Args:
            graph: The graph to execute
            start_node_id: Node to start from
            input_data: Input for the start node; None seeds from the node's
                stored input/content (as run_chain does)
        """
        context = ExecutionContext()
        token = set_trace_context(execution_id=context.execution_id, graph_id=graph.id)
        try:
            return await self._execute(graph, start_node_id, input_data, context)
        finally:
            reset_trace_context(token)

    async def _execute(
        self,
        graph: GraphSpec,
        start_node_id: str,
        input_data: Any,
        context: ExecutionContext,
    ) -> ExecutionResult:
        errors = graph.validate()
        if errors:
            return ExecutionResult(
                success=False,
                error=f"Invalid graph: {errors}",
                execution_id=context.execution_id,
            )

        if graph.get_node(start_node_id) is None:
            return ExecutionResult(
                success=False,
                error=f"Start node '{start_node_id}' not found",
                execution_id=context.execution_id,
            )

        for conditional in graph.conditional_nodes():
            conditional.reset_loop()
        for collector in graph.collector_nodes():
            collector.reset_collection()

        await self.emit(
            EventType.EXECUTION_STARTED,
            f"Executing graph '{graph.id}' from node '{start_node_id}'",
            node_id=start_node_id,
            context=context,
        )

        graph.begin_execution()
        try:
            if input_data is None:
                output = await self.run_chain(graph, start_node_id, context=context)
            else:
                output = await self.run(graph, start_node_id, input_data, context=context)
        except FlowGraphError as e:
            await self.emit(
                EventType.EXECUTION_FAILED,
                f"Execution failed at node '{e.node_id or start_node_id}': {e}",
                node_id=e.node_id or start_node_id,
                level="error",
                context=context,
            )
            return ExecutionResult(
                success=False,
                error=str(e),
                execution_id=context.execution_id,
                path=context.path,
                node_visit_counts=context.node_visit_counts,
                failures=context.failures,
            )
        finally:
            graph.end_execution()

        await self.emit(
            EventType.EXECUTION_COMPLETED,
            f"Execution completed: {len(context.path)} node runs, "
            f"{len(context.failures)} isolated failures",
            node_id=start_node_id,
            context=context,
            failures=len(context.failures),
        )
        return ExecutionResult(
            success=True,
            output=output,
            execution_id=context.execution_id,
            path=context.path,
            node_visit_counts=context.node_visit_counts,
            failures=context.failures,
        )

    async def run(
        self,
        graph: GraphSpec,
        node_id: str,
        input_data: Any,
        *,
        source_id: str | None = None,
        context: ExecutionContext | None = None,
    ) -> Any:
        """
        Process a node and propagate its output downstream, depth-first.

        Args:
            graph: The graph the node belongs to
            node_id: Node to run
            input_data: Input for the node
            source_id: Node that supplied the input (None for a direct run)
            context: Bookkeeping of the enclosing run; created if omitted

        Returns:
            The node's own result: its output for plain nodes, the split
            summary for splitters, the conditional's result string for
            conditionals, the combined output or waiting status for
            collectors

        Raises:
            ValidationError: input_data is missing
            ProcessingError: the adapter failed for this node
        """
        node = graph.require_node(node_id)
        context = context or ExecutionContext()

        self._require_input(node, input_data)

        context.record_visit(node.id)
        node.input_content = input_data
        node.last_input_source = source_id

        if node.kind == NodeKind.PLAIN:
            output = await self.invoke(node, input_data)
            self.record_output(node, output)
            for connection in graph.get_outgoing(node.id):
                if await self.gate(graph, connection.target, node, context):
                    await self.dispatch(graph, connection.target, output, node, context)
            return output

        if node.kind == NodeKind.SPLITTER:
            return await run_splitter(self, graph, node, input_data, context)

        if node.kind == NodeKind.CONDITIONAL:
            return await run_conditional(self, graph, node, input_data, source_id, context)

        if node.kind == NodeKind.COLLECTOR:
            return await run_collector(self, graph, node, input_data, source_id, context)

        raise RuntimeError(f"Unhandled node kind: {node.kind}")

    async def run_chain(
        self,
        graph: GraphSpec,
        start_node_id: str,
        context: ExecutionContext | None = None,
    ) -> Any:
        """Run from a node, seeded with its stored input (or, failing that, its content)."""
        node = graph.require_node(start_node_id)
        seed = node.input_content if _has_value(node.input_content) else node.content
        if not _has_value(seed):
            message = f"Node '{node.id}' has no stored input or content to run from"
            node.last_error = message
            raise ValidationError(message, node_id=node.id)
        return await self.run(graph, start_node_id, seed, context=context)

    # === NODE PROCESSING ===

    async def invoke(self, node: BaseNodeSpec, input_data: Any) -> Any:
        """
        Call the adapter for a node, maintaining its processing state.

        `processing` is True only while the adapter call is awaited.
        """
        node.processing = True
        node.last_error = None
        await self.emit(
            EventType.NODE_STARTED,
            f"Processing node '{node.display_name}' ({node.processor})",
            node_id=node.id,
        )

        try:
            output = await self.adapter.process_node(node, input_data)
        except Exception as e:
            node.processing = False
            error = (
                e
                if isinstance(e, FlowGraphError)
                else ProcessingError(f"Node '{node.id}' failed: {e}", node_id=node.id)
            )
            node.last_error = str(error)
            await self.emit(
                EventType.NODE_FAILED,
                f"Node '{node.display_name}' error: {error}",
                node_id=node.id,
                level="error",
            )
            if error is e:
                raise
            raise error from e

        node.processing = False
        await self.emit(
            EventType.NODE_COMPLETED,
            f"Node '{node.display_name}' processed successfully",
            node_id=node.id,
        )
        return output

    def record_output(self, node: BaseNodeSpec, output: Any) -> None:
        """Store a node's output as its content and mark it processed."""
        node.content = output
        if node.processor == ProcessorKind.TEXT_TO_IMAGE or is_image_content(output):
            node.content_type = ContentType.IMAGE
        else:
            node.content_type = ContentType.TEXT
        node.has_been_processed = True

    def _require_input(self, node: BaseNodeSpec, input_data: Any) -> None:
        if _has_value(input_data):
            return
        message = f"No input provided to node '{node.id}'"
        node.last_error = message
        self.logger.error(message, extra={"node_id": node.id, "event": "validation_error"})
        raise ValidationError(message, node_id=node.id)

    # === EDGE TRAVERSAL ===

    async def gate(
        self,
        graph: GraphSpec,
        target_id: str,
        source: BaseNodeSpec,
        context: ExecutionContext | None = None,
    ) -> bool:
        """Check a connection against the type-compatibility gate."""
        target = graph.require_node(target_id)
        mismatch = check_connection(target, source)
        if mismatch is None:
            return True

        await self.emit(
            EventType.TYPE_MISMATCH,
            mismatch.describe(),
            node_id=target.id,
            level="warning",
            context=context,
            source_id=mismatch.source_id,
            source_type=mismatch.source_type,
            target_id=mismatch.target_id,
            target_type=mismatch.target_type,
        )
        return False

    async def dispatch(
        self,
        graph: GraphSpec,
        target_id: str,
        payload: Any,
        source: BaseNodeSpec,
        context: ExecutionContext,
        item_index: int | None = None,
    ) -> bool:
        """
        Run a downstream node with failure isolation.

        Any error raised by the branch is logged and recorded in the
        context instead of propagating, so sibling branches keep running.

        Returns:
            True if the branch completed without raising
        """
        try:
            await self.run(graph, target_id, payload, source_id=source.id, context=context)
            return True
        except Exception as e:
            context.failures.append(
                BranchFailure(
                    node_id=target_id,
                    source_id=source.id,
                    error=str(e),
                    item_index=item_index,
                )
            )
            label = f"item {item_index} " if item_index is not None else ""
            await self.emit(
                EventType.BRANCH_FAILED,
                f"Error processing {label}in node '{target_id}' from '{source.id}': {e}",
                node_id=target_id,
                level="error",
                context=context,
                source_id=source.id,
                item_index=item_index,
            )
            return False

    # === DIAGNOSTICS ===

    async def emit(
        self,
        event_type: EventType,
        message: str,
        *,
        node_id: str | None = None,
        level: str = "info",
        context: ExecutionContext | None = None,
        **data: Any,
    ) -> None:
        """Log a diagnostic and publish it on the event bus, if any."""
        self.logger.log(
            getattr(logging, level.upper()),
            message,
            extra={"node_id": node_id, "event": event_type.value},
        )
        if self._event_bus is None:
            return
        await self._event_bus.publish(
            FlowEvent(
                type=event_type,
                message=message,
                level=level,
                node_id=node_id,
                execution_id=(
                    context.execution_id if context else get_trace_context().get("execution_id")
                ),
                data=data,
            )
        )


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True
