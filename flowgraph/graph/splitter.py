"""
Splitter nodes - fan one input out into per-item runs.

A splitter (optionally) transforms its input, splits the result into
items and runs every successor once per item. Dispatch order is
connections outer, items inner. In parallel mode every (connection, item)
pair starts at once and the splitter waits for all of them; in sequential
mode each pair is awaited before the next one starts.

Parallel branches share downstream nodes, so a node reached by several
items ends up holding whichever item finished last.

Each branch runs inside a SplitPath scope, so a collector further down
can tell which item (of which splitter) produced its input.
"""

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING

from flowgraph.graph.node import SplitterNodeSpec
from flowgraph.runtime.event_bus import EventType

if TYPE_CHECKING:
    from flowgraph.graph.edge import GraphSpec
    from flowgraph.graph.executor import ExecutionContext, GraphExecutor

logger = logging.getLogger(__name__)

SUMMARY_PREVIEW_CHARS = 50


@dataclass(frozen=True)
class SplitPath:
    """The split item a branch is working on."""

    splitter_id: str
    item_index: int  # 1-based
    total: int


# Innermost split item of the running branch, read by collectors downstream
_split_path: ContextVar[SplitPath | None] = ContextVar("split_path", default=None)


def current_split_path() -> SplitPath | None:
    return _split_path.get()


@contextmanager
def split_path_scope(path: SplitPath | None) -> Iterator[None]:
    """Mark everything run inside the block as belonging to a split item."""
    token = _split_path.set(path)
    try:
        yield
    finally:
        _split_path.reset(token)


@dataclass
class ParallelBranch:
    """One (connection, item) pair dispatched by a splitter."""

    branch_id: str
    node_id: str
    item_index: int  # 1-based
    payload: str
    status: str = "pending"  # pending, completed, failed


def normalize_delimiter(delimiter: str) -> str:
    """Turn the '\\n' and '\\t' escapes into real newline and tab characters."""
    if not delimiter:
        return "\n"
    return delimiter.replace("\\n", "\n").replace("\\t", "\t")


def split_items(text: str, delimiter: str = "\n") -> list[str]:
    """Split text on a delimiter, trimming items and dropping empty ones."""
    separator = normalize_delimiter(delimiter)
    return [item.strip() for item in text.split(separator) if item.strip()]


def format_item(index: int, total: int, item: str) -> str:
    return f"ITEM {index} OF {total}:\n\n{item}"


def strip_item_header(text: str, index: int, total: int) -> str:
    """Undo format_item, leaving text without the header untouched."""
    header = f"ITEM {index} OF {total}:\n\n"
    return text[len(header) :] if text.startswith(header) else text


def summarize_items(items: list[str]) -> str:
    lines = []
    for i, item in enumerate(items, 1):
        preview = item[:SUMMARY_PREVIEW_CHARS]
        if len(item) > SUMMARY_PREVIEW_CHARS:
            preview += "..."
        lines.append(f"{i}. {preview}")
    return f"Split input into {len(items)} items:\n\n" + "\n".join(lines)


async def run_splitter(
    executor: "GraphExecutor",
    graph: "GraphSpec",
    node: SplitterNodeSpec,
    raw_input: object,
    context: "ExecutionContext",
) -> str:
    """
    Split a splitter node's input and drive its successors once per item.

    Returns:
        The split summary, which is also stored as the node's content
    """
    text = raw_input
    if node.instruction:
        text = await executor.invoke(node, raw_input)

    items = split_items(str(text), node.delimiter)
    if len(items) > node.max_items:
        await executor.emit(
            EventType.ITEMS_TRUNCATED,
            f"Limiting splitter to {node.max_items} items ({len(items)} found)",
            node_id=node.id,
            level="warning",
            context=context,
            found=len(items),
            kept=node.max_items,
        )
        items = items[: node.max_items]

    summary = summarize_items(items)
    node.last_split_items = items
    executor.record_output(node, summary)
    await executor.emit(
        EventType.ITEMS_SPLIT,
        f"Splitter '{node.display_name}' found {len(items)} items",
        node_id=node.id,
        context=context,
        count=len(items),
        parallel=node.parallel,
    )

    targets = []
    for connection in graph.get_outgoing(node.id):
        if await executor.gate(graph, connection.target, node, context):
            targets.append(connection.target)

    total = len(items)
    branches = [
        ParallelBranch(
            branch_id=f"{node.id}->{target}#{index}",
            node_id=target,
            item_index=index,
            payload=format_item(index, total, item),
        )
        for target in targets
        for index, item in enumerate(items, 1)
    ]
    if not branches:
        return summary

    async def run_branch(branch: ParallelBranch) -> None:
        with split_path_scope(SplitPath(node.id, branch.item_index, total)):
            ok = await executor.dispatch(
                graph, branch.node_id, branch.payload, node, context, item_index=branch.item_index
            )
        branch.status = "completed" if ok else "failed"

    if node.parallel:
        logger.info(
            f"⑂ Fan-out: {len(branches)} parallel branches from '{node.id}'",
            extra={"node_id": node.id},
        )
        await asyncio.gather(*[run_branch(b) for b in branches])
    else:
        for branch in branches:
            await run_branch(branch)

    completed = sum(1 for b in branches if b.status == "completed")
    logger.info(
        f"⑃ Fan-out complete: {completed}/{len(branches)} branches succeeded",
        extra={"node_id": node.id},
    )
    return summary
