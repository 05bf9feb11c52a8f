"""
Conditional nodes - bounded feedback loops.

A conditional node asks the adapter to evaluate its input. If the result
contains the node's success token the loop ends and the result moves on
to every successor. Otherwise the text after "FAIL:" is sent back, as a
revision request, to the node that produced the input, which runs again
and feeds the conditional again.

The iteration counter resets only when an inactive loop becomes active
and the bound is checked before the adapter is called, so a loop makes
at most max_iterations evaluations.
"""

import logging
from typing import TYPE_CHECKING, Any

from flowgraph.graph.errors import FlowGraphError
from flowgraph.graph.node import ConditionalNodeSpec
from flowgraph.runtime.event_bus import EventType

if TYPE_CHECKING:
    from flowgraph.graph.edge import GraphSpec
    from flowgraph.graph.executor import ExecutionContext, GraphExecutor

logger = logging.getLogger(__name__)

FAIL_MARKER = "FAIL:"

LOOP_TERMINATED_TEMPLATE = (
    "LOOP TERMINATED: Maximum iterations ({max_iterations}) reached. Final input:\n\n{input}"
)

FEEDBACK_TEMPLATE = (
    "FEEDBACK (Iteration {iteration}/{max_iterations}):\n{feedback}\n\n"
    "Please revise your previous output based on this feedback."
)


def begin_iteration(node: ConditionalNodeSpec, input_data: Any) -> str | None:
    """
    Advance the loop counter for a new evaluation.

    Returns:
        The terminal result string if the loop is exhausted, else None
    """
    if not node.loop_active:
        node.current_iteration = 0
        node.loop_active = True

    node.current_iteration += 1
    if node.current_iteration > node.max_iterations:
        node.loop_active = False
        return LOOP_TERMINATED_TEMPLATE.format(
            max_iterations=node.max_iterations, input=input_data
        )
    return None


def extract_feedback(candidate: str) -> str:
    """The text after the first 'FAIL:' marker, or the whole candidate."""
    if FAIL_MARKER in candidate:
        return candidate.split(FAIL_MARKER, 1)[1].strip()
    return candidate


def find_feedback_source(
    graph: "GraphSpec", node: ConditionalNodeSpec, source_id: str | None
) -> str | None:
    """Pick the node that should receive feedback: the input's source if it is wired in."""
    incoming = graph.get_incoming(node.id)
    if source_id is not None and any(c.source == source_id for c in incoming):
        return source_id
    if incoming:
        return incoming[0].source
    return None


def build_feedback_prompt(node: ConditionalNodeSpec, feedback: str) -> str:
    return FEEDBACK_TEMPLATE.format(
        iteration=node.current_iteration,
        max_iterations=node.max_iterations,
        feedback=feedback,
    )


async def run_conditional(
    executor: "GraphExecutor",
    graph: "GraphSpec",
    node: ConditionalNodeSpec,
    input_data: Any,
    source_id: str | None,
    context: "ExecutionContext",
) -> Any:
    """
    Evaluate a conditional node and either forward or loop back.

    Returns:
        The adapter's result when the condition passed or no feedback node
        exists, the feedback prompt when feedback was sent, or the loop
        termination string once the iteration bound is exceeded
    """
    terminal = begin_iteration(node, input_data)
    if terminal is not None:
        await executor.emit(
            EventType.LOOP_TERMINATED,
            f"Conditional '{node.display_name}' reached maximum iterations "
            f"({node.max_iterations})",
            node_id=node.id,
            level="warning",
            context=context,
            result=terminal,
        )
        return terminal

    # The pass branch skips this node, so it is resolved before the verdict
    node.feedback_node = find_feedback_source(graph, node, source_id)

    try:
        candidate = await executor.invoke(node, input_data)
    except FlowGraphError:
        node.loop_active = False
        raise

    executor.record_output(node, candidate)
    candidate_text = str(candidate)

    if node.success_token in candidate_text:
        node.loop_active = False
        await executor.emit(
            EventType.CONDITION_PASSED,
            f"✓ Condition passed on iteration {node.current_iteration}",
            node_id=node.id,
            context=context,
            iteration=node.current_iteration,
        )
        for connection in graph.get_outgoing(node.id):
            if connection.target == node.feedback_node:
                continue
            if await executor.gate(graph, connection.target, node, context):
                await executor.dispatch(graph, connection.target, candidate, node, context)
        return candidate

    await executor.emit(
        EventType.CONDITION_FAILED,
        f"✗ Condition failed on iteration {node.current_iteration}/{node.max_iterations}",
        node_id=node.id,
        level="warning",
        context=context,
        iteration=node.current_iteration,
    )

    target_id = node.feedback_node
    if target_id is None:
        await executor.emit(
            EventType.FEEDBACK_UNAVAILABLE,
            f"No feedback node found for conditional '{node.display_name}'",
            node_id=node.id,
            level="warning",
            context=context,
        )
        node.loop_active = False
        return candidate

    prompt = build_feedback_prompt(node, extract_feedback(candidate_text))
    await executor.emit(
        EventType.FEEDBACK_SENT,
        f"Sending feedback to '{target_id}' (iteration {node.current_iteration})",
        node_id=node.id,
        context=context,
        target_id=target_id,
        iteration=node.current_iteration,
    )

    if not await executor.dispatch(graph, target_id, prompt, node, context):
        node.loop_active = False
    return prompt
