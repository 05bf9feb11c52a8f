"""
Collector nodes - fan split items back in.

A collector buffers every input it receives. Input produced under a
splitter's item (directly or through intermediate nodes) is keyed by that
splitter and the item's index; any other input is keyed by the node that
sent it. Once every expected item is present the buffer is combined,
stored as the collector's content and passed to its successors. Until
then each arrival returns a "waiting" status string and nothing moves on.

Expected items:
- fed by splitters: every index 1..N of each splitter seen so far
- otherwise: one input from every incoming connection
- wait_for_all_inputs=False: whatever has arrived, on every input
"""

import logging
from typing import TYPE_CHECKING, Any

from flowgraph.graph.node import CollectorNodeSpec, CombineMethod
from flowgraph.graph.splitter import current_split_path, split_path_scope, strip_item_header
from flowgraph.runtime.event_bus import EventType

if TYPE_CHECKING:
    from flowgraph.graph.edge import GraphSpec
    from flowgraph.graph.executor import ExecutionContext, GraphExecutor

logger = logging.getLogger(__name__)

DIRECT_INPUT_KEY = "input"

WAITING_TEMPLATE = "Collected {collected} of {expected} expected items. Waiting for more..."


def item_key(splitter_id: str, item_index: int) -> str:
    return f"{splitter_id}#{item_index}"


def is_complete(graph: "GraphSpec", node: CollectorNodeSpec) -> bool:
    """Whether every input the collector expects has arrived."""
    if not node.wait_for_all_inputs:
        return True
    if node.expected_items:
        return all(
            item_key(splitter_id, index) in node.collected_items
            for splitter_id, total in node.expected_items.items()
            for index in range(1, total + 1)
        )
    sources = {c.source for c in graph.get_incoming(node.id)}
    return sources.issubset(node.collected_items)


def expected_count(graph: "GraphSpec", node: CollectorNodeSpec) -> int:
    if node.expected_items:
        return sum(node.expected_items.values())
    return len({c.source for c in graph.get_incoming(node.id)})


def ordered_items(node: CollectorNodeSpec) -> list[Any]:
    """
    Collected values in combine order.

    Split items come first, grouped by splitter (in the order the
    splitters were first seen) and sorted by item index. Direct inputs
    follow in arrival order.
    """
    splitters = list(node.expected_items)

    def sort_key(key: str) -> tuple[int, int, int]:
        splitter_id, sep, index = key.rpartition("#")
        if sep and splitter_id in node.expected_items and index.isdigit():
            return (0, splitters.index(splitter_id), int(index))
        return (1, 0, 0)

    return [node.collected_items[key] for key in sorted(node.collected_items, key=sort_key)]


async def combine_items(
    executor: "GraphExecutor", node: CollectorNodeSpec, items: list[Any]
) -> Any:
    if node.combine_method == CombineMethod.LIST:
        return "\n".join(f"{i}. {item}" for i, item in enumerate(items, 1))

    text = node.separator.join(str(item) for item in items)
    if node.combine_method == CombineMethod.SUMMARIZE:
        return await executor.invoke(node, text)
    return text


async def run_collector(
    executor: "GraphExecutor",
    graph: "GraphSpec",
    node: CollectorNodeSpec,
    input_data: Any,
    source_id: str | None,
    context: "ExecutionContext",
) -> Any:
    """
    Buffer one input and, once the collection is complete, combine and forward it.

    Returns:
        The combined output, or the waiting status string while items are
        still missing
    """
    path = current_split_path()
    if path is not None:
        node.expected_items[path.splitter_id] = path.total
        key = item_key(path.splitter_id, path.item_index)
        if isinstance(input_data, str):
            input_data = strip_item_header(input_data, path.item_index, path.total)
    else:
        key = source_id or DIRECT_INPUT_KEY
    node.collected_items[key] = input_data
    collected = len(node.collected_items)

    # Parallel branches interleave at every await, so the buffer is
    # checked and drained before the first one.
    if not is_complete(graph, node):
        expected = expected_count(graph, node)
        await executor.emit(
            EventType.ITEM_COLLECTED,
            f"Collector '{node.display_name}' waiting for more items ({collected}/{expected})",
            node_id=node.id,
            context=context,
            key=key,
            collected=collected,
            expected=expected,
        )
        return WAITING_TEMPLATE.format(collected=collected, expected=expected)

    items = ordered_items(node)
    node.reset_collection()

    combined = await combine_items(executor, node, items)
    executor.record_output(node, combined)
    await executor.emit(
        EventType.ITEMS_COMBINED,
        f"Collector '{node.display_name}' combined {len(items)} items",
        node_id=node.id,
        context=context,
        count=len(items),
        method=node.combine_method.value,
    )

    # The combined output no longer belongs to a single split item
    with split_path_scope(None):
        for connection in graph.get_outgoing(node.id):
            if await executor.gate(graph, connection.target, node, context):
                await executor.dispatch(graph, connection.target, combined, node, context)
    return combined
