"""
Tests for conditional nodes and feedback loops.

Covers:
- Pass forwards to successors other than the feedback node, even on the
  first iteration
- Fail sends a revision request back to the input's source
- The loop is bounded by max_iterations (bound checked before the adapter)
- Missing feedback node ends the loop with a warning
- Adapter failure on the conditional ends the loop
- execute() resets loop state between runs
"""

import pytest

from flowgraph.graph.adapter import FunctionAdapter
from flowgraph.graph.conditional import (
    LOOP_TERMINATED_TEMPLATE,
    begin_iteration,
    extract_feedback,
    find_feedback_source,
)
from flowgraph.graph.edge import GraphSpec
from flowgraph.graph.errors import ProcessingError
from flowgraph.graph.executor import GraphExecutor
from flowgraph.graph.node import ConditionalNodeSpec, NodeSpec
from flowgraph.runtime.event_bus import EventBus, EventType

# ---------------------------------------------------------------------------
# Mock handlers
# ---------------------------------------------------------------------------


class ScriptedHandler:
    """Returns scripted outputs in order, repeating the last one."""

    def __init__(self, outputs: list[str]):
        self._outputs = outputs
        self.execute_count = 0
        self.inputs: list[str] = []

    def __call__(self, node, input_data):
        self.inputs.append(input_data)
        output = self._outputs[min(self.execute_count, len(self._outputs) - 1)]
        self.execute_count += 1
        return output


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def loop_graph():
    """writer -> judge -> publish"""
    graph = GraphSpec(id="review_loop")
    graph.add_node(NodeSpec(id="writer"))
    graph.add_node(ConditionalNodeSpec(id="judge", instruction="Reply PASS or FAIL: reason"))
    graph.add_node(NodeSpec(id="publish"))
    graph.add_connection("writer", "judge")
    graph.add_connection("judge", "publish")
    return graph


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def test_extract_feedback_takes_text_after_marker():
    assert extract_feedback("Verdict FAIL:  too short ") == "too short"


def test_extract_feedback_without_marker_returns_candidate():
    assert extract_feedback("needs work") == "needs work"


def test_begin_iteration_starts_a_new_loop():
    node = ConditionalNodeSpec(id="c", current_iteration=7)

    assert begin_iteration(node, "x") is None
    assert node.loop_active is True
    assert node.current_iteration == 1


def test_begin_iteration_terminates_past_bound():
    node = ConditionalNodeSpec(id="c", max_iterations=2, current_iteration=2, loop_active=True)

    result = begin_iteration(node, "last draft")

    assert result == LOOP_TERMINATED_TEMPLATE.format(max_iterations=2, input="last draft")
    assert node.loop_active is False


def test_find_feedback_source_prefers_input_source(loop_graph):
    loop_graph.add_node(NodeSpec(id="editor"))
    loop_graph.add_connection("editor", "judge")
    judge = loop_graph.get_node("judge")

    assert find_feedback_source(loop_graph, judge, "editor") == "editor"
    assert find_feedback_source(loop_graph, judge, None) == "writer"
    assert find_feedback_source(loop_graph, judge, "stranger") == "writer"
    assert find_feedback_source(loop_graph, loop_graph.get_node("writer"), None) is None


# ---------------------------------------------------------------------------
# Pass
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_pass_forwards_to_successors(loop_graph):
    writer = ScriptedHandler(["draft"])
    judge = ScriptedHandler(["PASS: looks good"])
    publish = ScriptedHandler(["published"])
    adapter = FunctionAdapter(handlers={"writer": writer, "judge": judge, "publish": publish})
    executor = GraphExecutor(adapter=adapter)

    result = await executor.execute(loop_graph, "writer", "topic")

    node = loop_graph.get_node("judge")
    assert result.success
    assert node.current_iteration == 1
    assert node.loop_active is False
    assert node.content == "PASS: looks good"
    assert publish.inputs == ["PASS: looks good"]
    assert writer.execute_count == 1


@pytest.mark.asyncio
async def test_pass_skips_the_feedback_node(loop_graph):
    loop_graph.add_connection("judge", "writer")
    writer = ScriptedHandler(["draft"])
    judge = ScriptedHandler(["FAIL: more detail", "PASS"])
    publish = ScriptedHandler(["published"])
    adapter = FunctionAdapter(handlers={"writer": writer, "judge": judge, "publish": publish})
    executor = GraphExecutor(adapter=adapter)

    await executor.execute(loop_graph, "writer", "topic")

    # once for the topic, once for the feedback, never for the pass result
    assert writer.execute_count == 2
    assert publish.execute_count == 1


@pytest.mark.asyncio
async def test_pass_on_first_iteration_skips_the_back_edge(loop_graph):
    loop_graph.add_connection("judge", "writer")
    writer = ScriptedHandler(["draft"])
    judge = ScriptedHandler(["PASS: first try"])
    publish = ScriptedHandler(["published"])
    adapter = FunctionAdapter(handlers={"writer": writer, "judge": judge, "publish": publish})
    executor = GraphExecutor(adapter=adapter)

    result = await executor.execute(loop_graph, "writer", "topic")

    node = loop_graph.get_node("judge")
    assert result.is_clean_success
    assert writer.execute_count == 1
    assert judge.execute_count == 1
    assert publish.inputs == ["PASS: first try"]
    assert node.feedback_node == "writer"
    assert node.current_iteration == 1
    assert node.loop_active is False


@pytest.mark.asyncio
async def test_end_to_end_two_node_chain():
    graph = GraphSpec(id="e2e")
    graph.add_node(NodeSpec(id="Node1"))
    graph.add_node(ConditionalNodeSpec(id="Node2", success_token="PASS", max_iterations=2))
    graph.add_connection("Node1", "Node2")
    adapter = FunctionAdapter(
        handlers={
            "Node1": lambda node, text: f"processed {text}",
            "Node2": lambda node, text: "PASS: ok",
        }
    )
    executor = GraphExecutor(adapter=adapter)

    await executor.run(graph, "Node1", "hello")

    node2 = graph.get_node("Node2")
    assert node2.content == "PASS: ok"
    assert node2.input_content == "processed hello"
    assert node2.last_input_source == "Node1"
    assert await executor.run(graph, "Node2", "processed hello") == "PASS: ok"


@pytest.mark.asyncio
async def test_end_to_end_pass_through_from_upstream():
    graph = GraphSpec(id="e2e_pass")
    graph.add_node(NodeSpec(id="Node1"))
    graph.add_node(ConditionalNodeSpec(id="Node2", success_token="PASS"))
    graph.add_connection("Node1", "Node2")
    node2_handler = ScriptedHandler(["PASS: ok"])
    adapter = FunctionAdapter(
        handlers={"Node1": lambda node, text: "PASS: ok", "Node2": node2_handler}
    )
    bus = EventBus()
    executor = GraphExecutor(adapter=adapter, event_bus=bus)

    result = await executor.execute(graph, "Node1", "check this")

    node2 = graph.get_node("Node2")
    assert result.is_clean_success
    assert result.path == ["Node1", "Node2"]
    assert node2_handler.inputs == ["PASS: ok"]
    assert node2.input_content == "PASS: ok"
    assert node2.last_input_source == "Node1"
    assert node2.content == "PASS: ok"
    assert node2.current_iteration == 1
    assert node2.loop_active is False
    passed = bus.get_history(event_type=EventType.CONDITION_PASSED)
    assert [event.data["iteration"] for event in passed] == [1]
    assert bus.get_history(event_type=EventType.FEEDBACK_SENT) == []


# ---------------------------------------------------------------------------
# Fail / feedback
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_fail_sends_feedback_to_source(loop_graph):
    writer = ScriptedHandler(["draft 1", "draft 2"])
    judge = ScriptedHandler(["FAIL: add examples", "PASS"])
    publish = ScriptedHandler(["published"])
    bus = EventBus()
    adapter = FunctionAdapter(handlers={"writer": writer, "judge": judge, "publish": publish})
    executor = GraphExecutor(adapter=adapter, event_bus=bus)

    await executor.execute(loop_graph, "writer", "topic")

    assert writer.inputs[1] == (
        "FEEDBACK (Iteration 1/3):\nadd examples\n\n"
        "Please revise your previous output based on this feedback."
    )
    assert judge.inputs == ["draft 1", "draft 2"]
    assert publish.inputs == ["PASS"]
    assert loop_graph.get_node("judge").feedback_node == "writer"
    assert len(bus.get_history(event_type=EventType.FEEDBACK_SENT)) == 1


@pytest.mark.asyncio
async def test_loop_is_bounded_by_max_iterations(loop_graph):
    writer = ScriptedHandler(["draft"])
    judge = ScriptedHandler(["FAIL: x"])
    publish = ScriptedHandler(["published"])
    bus = EventBus()
    adapter = FunctionAdapter(handlers={"writer": writer, "judge": judge, "publish": publish})
    executor = GraphExecutor(adapter=adapter, event_bus=bus)

    result = await executor.execute(loop_graph, "writer", "topic")

    assert result.success
    assert judge.execute_count == 3
    assert writer.execute_count == 4
    assert publish.execute_count == 0

    terminated = bus.get_history(event_type=EventType.LOOP_TERMINATED)
    assert len(terminated) == 1
    assert terminated[0].data["result"].startswith(
        "LOOP TERMINATED: Maximum iterations (3) reached."
    )
    assert loop_graph.get_node("judge").loop_active is False


@pytest.mark.asyncio
async def test_exhausted_loop_returns_terminal_string_without_adapter_call(loop_graph):
    judge = ScriptedHandler(["FAIL: x"])
    executor = GraphExecutor(adapter=FunctionAdapter(handlers={"judge": judge}))
    node = loop_graph.get_node("judge")
    node.loop_active = True
    node.current_iteration = 3

    result = await executor.run(loop_graph, "judge", "final draft")

    assert result == (
        "LOOP TERMINATED: Maximum iterations (3) reached. Final input:\n\nfinal draft"
    )
    assert judge.execute_count == 0


@pytest.mark.asyncio
async def test_no_feedback_node_ends_loop():
    graph = GraphSpec(id="lonely")
    graph.add_node(ConditionalNodeSpec(id="judge"))
    bus = EventBus()
    adapter = FunctionAdapter(handlers={"judge": lambda node, text: "FAIL: nope"})
    executor = GraphExecutor(adapter=adapter, event_bus=bus)

    result = await executor.run(graph, "judge", "draft")

    assert result == "FAIL: nope"
    assert graph.get_node("judge").loop_active is False
    unavailable = bus.get_history(event_type=EventType.FEEDBACK_UNAVAILABLE)
    assert len(unavailable) == 1
    assert "No feedback node found" in unavailable[0].message


@pytest.mark.asyncio
async def test_adapter_failure_ends_loop(loop_graph):
    def broken(node, text):
        raise RuntimeError("model unavailable")

    executor = GraphExecutor(adapter=FunctionAdapter(handlers={"judge": broken}))

    with pytest.raises(ProcessingError):
        await executor.run(loop_graph, "judge", "draft")

    node = loop_graph.get_node("judge")
    assert node.loop_active is False
    assert "model unavailable" in node.last_error


@pytest.mark.asyncio
async def test_feedback_node_failure_ends_loop(loop_graph):
    writer = ScriptedHandler(["draft"])
    judge = ScriptedHandler(["FAIL: again"])

    def writer_then_fail(node, text):
        if text.startswith("FEEDBACK"):
            raise RuntimeError("writer crashed")
        return writer(node, text)

    adapter = FunctionAdapter(handlers={"writer": writer_then_fail, "judge": judge})
    executor = GraphExecutor(adapter=adapter)

    result = await executor.execute(loop_graph, "writer", "topic")

    assert result.success
    assert judge.execute_count == 1
    assert loop_graph.get_node("judge").loop_active is False
    assert result.failures[0].node_id == "writer"


@pytest.mark.asyncio
async def test_execute_resets_loop_state(loop_graph):
    judge = ScriptedHandler(["PASS"])
    adapter = FunctionAdapter(
        handlers={"writer": lambda node, text: "draft", "judge": judge},
        default=lambda node, text: "ok",
    )
    executor = GraphExecutor(adapter=adapter)
    node = loop_graph.get_node("judge")
    node.loop_active = True
    node.current_iteration = 3
    node.feedback_node = "writer"

    await executor.execute(loop_graph, "writer", "topic")

    assert judge.execute_count == 1
    assert node.current_iteration == 1
