"""
Tests for the graph data model.

Covers:
- Discriminated node parsing from plain dicts (missing kind means plain)
- Derived node status and reset
- Connection self-loop rejection
- Mutation interface (duplicates, missing nodes, cascading removal)
- Insertion order of outgoing/incoming connections
- GraphBusyError while an execution is in flight
- validate()
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from flowgraph.graph.edge import Connection, GraphSpec
from flowgraph.graph.errors import GraphBusyError, GraphError
from flowgraph.graph.node import (
    CollectorNodeSpec,
    CombineMethod,
    ConditionalNodeSpec,
    ContentType,
    NodeSpec,
    NodeStatus,
    SplitterNodeSpec,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def graph():
    g = GraphSpec(id="g")
    for node_id in ("a", "b", "c"):
        g.add_node(NodeSpec(id=node_id))
    g.add_connection("a", "b")
    g.add_connection("a", "c")
    g.add_connection("b", "c")
    return g


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


def test_nodes_parse_by_kind():
    graph = GraphSpec.model_validate(
        {
            "nodes": [
                {"id": "p"},
                {"id": "s", "kind": "splitter", "delimiter": ","},
                {"id": "c", "kind": "conditional", "max_iterations": 5},
                {"id": "m", "kind": "collector", "combine_method": "list"},
            ]
        }
    )

    assert isinstance(graph.get_node("p"), NodeSpec)
    assert isinstance(graph.get_node("s"), SplitterNodeSpec)
    assert graph.get_node("s").delimiter == ","
    assert isinstance(graph.get_node("c"), ConditionalNodeSpec)
    assert graph.get_node("c").max_iterations == 5
    assert isinstance(graph.get_node("m"), CollectorNodeSpec)
    assert graph.get_node("m").combine_method == CombineMethod.LIST


def test_node_models_pass_through_unchanged():
    splitter = SplitterNodeSpec(id="s")
    graph = GraphSpec(nodes=[NodeSpec(id="p"), splitter, CollectorNodeSpec(id="m")])

    assert graph.get_node("s") is splitter
    assert [n.kind for n in graph.nodes] == ["plain", "splitter", "collector"]


def test_unknown_kind_is_rejected():
    with pytest.raises(PydanticValidationError):
        GraphSpec.model_validate({"nodes": [{"id": "x", "kind": "merger"}]})


def test_node_defaults():
    splitter = SplitterNodeSpec(id="s")
    assert splitter.delimiter == "\n"
    assert splitter.parallel is True
    assert splitter.max_items == 10

    conditional = ConditionalNodeSpec(id="c")
    assert conditional.success_token == "PASS"
    assert conditional.max_iterations == 3
    assert conditional.current_iteration == 0
    assert conditional.loop_active is False

    collector = CollectorNodeSpec(id="m")
    assert collector.combine_method == CombineMethod.CONCATENATE
    assert collector.separator == "\n\n"
    assert collector.wait_for_all_inputs is True
    assert collector.collected_items == {}


def test_max_items_must_be_positive():
    with pytest.raises(PydanticValidationError):
        SplitterNodeSpec(id="s", max_items=0)


def test_status_is_derived_from_runtime_fields():
    node = NodeSpec(id="n")
    assert node.status == NodeStatus.IDLE

    node.has_been_processed = True
    assert node.status == NodeStatus.DONE

    node.last_error = "boom"
    assert node.status == NodeStatus.ERRORED

    node.processing = True
    assert node.status == NodeStatus.PROCESSING


def test_reset_clears_runtime_state():
    node = ConditionalNodeSpec(
        id="c",
        content="x",
        content_type=ContentType.TEXT,
        has_been_processed=True,
        last_error="e",
        current_iteration=2,
        loop_active=True,
        feedback_node="a",
    )
    node.reset()

    assert node.content is None
    assert node.content_type is None
    assert node.status == NodeStatus.IDLE
    assert node.current_iteration == 0
    assert node.loop_active is False
    assert node.feedback_node is None


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------


def test_connection_rejects_self_loop():
    with pytest.raises(PydanticValidationError):
        Connection(source="a", target="a")


def test_add_connection_rejects_self_loop(graph):
    with pytest.raises(GraphError):
        graph.add_connection("a", "a")


def test_add_connection_rejects_duplicate(graph):
    with pytest.raises(GraphError):
        graph.add_connection("a", "b")


def test_add_connection_requires_existing_nodes(graph):
    with pytest.raises(GraphError):
        graph.add_connection("a", "missing")
    with pytest.raises(GraphError):
        graph.add_connection("missing", "a")


def test_add_node_rejects_duplicate_id(graph):
    with pytest.raises(GraphError):
        graph.add_node(NodeSpec(id="a"))


def test_outgoing_and_incoming_keep_insertion_order(graph):
    assert [c.target for c in graph.get_outgoing("a")] == ["b", "c"]
    assert [c.source for c in graph.get_incoming("c")] == ["a", "b"]


def test_remove_connection(graph):
    removed = graph.remove_connection("a", "b")

    assert removed.id == "a->b"
    assert [c.target for c in graph.get_outgoing("a")] == ["c"]
    with pytest.raises(GraphError):
        graph.remove_connection("a", "b")


def test_remove_node_cascades_connections(graph):
    removed = graph.remove_node("b")

    assert {c.id for c in removed} == {"a->b", "b->c"}
    assert graph.get_node("b") is None
    assert all("b" not in (c.source, c.target) for c in graph.connections)
    assert [c.id for c in graph.connections] == ["a->c"]


# ---------------------------------------------------------------------------
# Execution guard
# ---------------------------------------------------------------------------


def test_mutation_blocked_while_executing(graph):
    graph.begin_execution()

    with pytest.raises(GraphBusyError):
        graph.add_node(NodeSpec(id="d"))
    with pytest.raises(GraphBusyError):
        graph.remove_node("a")
    with pytest.raises(GraphBusyError):
        graph.add_connection("c", "a")
    with pytest.raises(GraphBusyError):
        graph.remove_connection("a", "b")

    graph.end_execution()
    graph.add_node(NodeSpec(id="d"))
    assert graph.get_node("d") is not None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def test_validate_clean_graph(graph):
    assert graph.validate() == []


def test_validate_reports_broken_references():
    graph = GraphSpec(
        nodes=[NodeSpec(id="a"), NodeSpec(id="a")],
        connections=[Connection(source="a", target="ghost")],
    )

    errors = graph.validate()

    assert any("Duplicate node ID" in e for e in errors)
    assert any("missing target 'ghost'" in e for e in errors)
