"""
Tests for the graph module.
"""

import pytest

from genflow.core.errors import CycleError
from genflow.core.graph import (
    Edge,
    Node,
    Point2D,
    WorkflowGraph,
    detect_cycle,
    new_node_id,
    topological_sort,
)


def chain(*ids: str) -> WorkflowGraph:
    """Graph of text nodes linked in order."""
    graph = WorkflowGraph(nodes=[Node.create("text", node_id=i) for i in ids])
    for source, target in zip(ids, ids[1:]):
        graph.add_edge(Edge.create(source, "text-output", target, "text-input"))
    return graph


class TestPoint2D:
    """Tests for Point2D dataclass."""

    def test_default_values(self):
        p = Point2D()
        assert p.x == 0.0
        assert p.y == 0.0


class TestNode:
    """Tests for Node dataclass."""

    def test_create_node(self):
        node = Node.create("text")
        assert node.type == "text"
        assert node.id.startswith("node-")
        assert node.data == {}
        assert node.position is None

    def test_create_copies_data(self):
        data = {"value": "hi"}
        node = Node.create("text", data)
        data["value"] = "changed"
        assert node.get_parameter("value") == "hi"

    def test_ids_are_unique(self):
        assert new_node_id() != new_node_id()

    def test_get_parameter_default(self):
        node = Node.create("text")
        assert node.get_parameter("missing", "default") == "default"

    def test_runtime_state(self):
        node = Node.create("llm")
        node.mark_error("boom")
        assert node.data["error"] == "boom"

        node.mark_executing()
        assert node.is_executing
        assert "error" not in node.data

        node.mark_clean({"output": "done"})
        assert not node.is_executing
        assert node.data["output"] == "done"

    def test_round_trip_keeps_position(self):
        node = Node.create("text", {"value": "x"}, position=Point2D(12, 34), node_id="n1")
        restored = Node.from_dict(node.to_dict())
        assert restored.id == "n1"
        assert restored.data == {"value": "x"}
        assert restored.position == Point2D(12, 34)


class TestEdge:
    """Tests for Edge dataclass."""

    def test_create_argument_order(self):
        edge = Edge.create("a", "text-output", "b", "user-message-input")
        assert edge.source == "a"
        assert edge.source_handle == "text-output"
        assert edge.target == "b"
        assert edge.target_handle == "user-message-input"

    def test_dict_uses_camel_case_handles(self):
        edge = Edge.create("a", "out", "b", "in")
        data = edge.to_dict()
        assert data["sourceHandle"] == "out"
        assert data["targetHandle"] == "in"
        assert Edge.from_dict(data) == edge

    def test_missing_handles_become_empty(self):
        edge = Edge.from_dict({"id": "e1", "source": "a", "target": "b"})
        assert edge.source_handle == ""
        assert edge.target_handle == ""


class TestAlgorithms:
    """Tests for detect_cycle and topological_sort."""

    def test_no_cycle(self):
        graph = chain("a", "b", "c")
        assert not detect_cycle(graph.nodes, graph.edges)

    def test_cycle(self):
        nodes = [Node.create("text", node_id=i) for i in "abc"]
        edges = [
            Edge.create("a", "o", "b", "i"),
            Edge.create("b", "o", "c", "i"),
            Edge.create("c", "o", "a", "i"),
        ]
        assert detect_cycle(nodes, edges)

    def test_self_loop_is_a_cycle(self):
        nodes = [Node.create("text", node_id="a")]
        assert detect_cycle(nodes, [Edge.create("a", "o", "a", "i")])

    def test_topological_order_follows_edges(self):
        graph = chain("a", "b", "c")
        assert [n.id for n in topological_sort(graph.nodes, graph.edges)] == ["a", "b", "c"]

    def test_ties_keep_insertion_order(self):
        nodes = [Node.create("text", node_id=i) for i in ("z", "y", "x")]
        assert [n.id for n in topological_sort(nodes, [])] == ["z", "y", "x"]

    def test_diamond(self):
        nodes = [Node.create("text", node_id=i) for i in ("a", "b", "c", "d")]
        edges = [
            Edge.create("a", "o", "b", "i"),
            Edge.create("a", "o", "c", "i"),
            Edge.create("b", "o", "d", "i"),
            Edge.create("c", "o", "d", "i"),
        ]
        order = [n.id for n in topological_sort(nodes, edges)]
        assert order == ["a", "b", "c", "d"]

    def test_sort_raises_on_cycle(self):
        nodes = [Node.create("text", node_id=i) for i in "ab"]
        edges = [Edge.create("a", "o", "b", "i"), Edge.create("b", "o", "a", "i")]
        with pytest.raises(CycleError):
            topological_sort(nodes, edges)

    def test_edges_to_unknown_nodes_are_ignored(self):
        nodes = [Node.create("text", node_id="a")]
        edges = [Edge.create("ghost", "o", "a", "i")]
        assert [n.id for n in topological_sort(nodes, edges)] == ["a"]


class TestWorkflowGraph:
    """Tests for WorkflowGraph."""

    def test_add_and_remove_node(self):
        graph = chain("a", "b")
        assert "a" in graph
        assert len(graph) == 2

        removed = graph.remove_node("a")
        assert removed is not None and removed.id == "a"
        assert graph.edges == []
        assert graph.remove_node("a") is None

    def test_add_edge_requires_nodes(self):
        graph = chain("a")
        assert not graph.add_edge(Edge.create("a", "o", "ghost", "i"))

    def test_add_edge_rejects_cycle(self):
        graph = chain("a", "b", "c")
        assert not graph.add_edge(Edge.create("c", "text-output", "a", "text-input"))
        assert not graph.add_edge(Edge.create("a", "text-output", "a", "text-input"))
        assert len(graph.edges) == 2

    def test_add_edge_checks_types_when_given(self):
        graph = WorkflowGraph(nodes=[Node.create("text", node_id="a"), Node.create("crop-image", node_id="b")])
        edge = Edge.create("a", "text-output", "b", "image-input")
        assert not graph.add_edge(edge, source_type="text", target_type="image")
        assert graph.add_edge(edge, source_type="image", target_type="image")

    def test_constructor_keeps_edges_unvalidated(self):
        nodes = [Node.create("text", node_id=i) for i in "ab"]
        edges = [Edge.create("a", "o", "b", "i"), Edge.create("b", "o", "a", "i")]
        graph = WorkflowGraph(nodes, edges)
        assert len(graph.edges) == 2
        assert graph.has_cycle()
        with pytest.raises(CycleError):
            graph.execution_order()

    def test_incoming_and_outgoing_edges(self):
        graph = chain("a", "b", "c")
        assert [e.source for e in graph.incoming_edges("b")] == ["a"]
        assert [e.target for e in graph.outgoing_edges("b")] == ["c"]
        assert graph.incoming_edges("a") == []

    def test_upstream_and_downstream(self):
        graph = chain("a", "b", "c")
        assert graph.get_upstream_nodes("c") == {"a", "b"}
        assert graph.get_downstream_nodes("a") == {"b", "c"}

    def test_execution_order_subset_includes_upstream(self):
        graph = chain("a", "b", "c")
        graph.add_node(Node.create("text", node_id="d"))
        assert [n.id for n in graph.execution_order(["b"])] == ["a", "b"]

    def test_execution_order_subset_ignores_unknown_ids(self):
        graph = chain("a", "b")
        assert graph.execution_order(["ghost"]) == []

    def test_subset_still_detects_cycles_elsewhere(self):
        nodes = [Node.create("text", node_id=i) for i in ("a", "b", "c")]
        edges = [Edge.create("b", "o", "c", "i"), Edge.create("c", "o", "b", "i")]
        graph = WorkflowGraph(nodes, edges)
        with pytest.raises(CycleError):
            graph.execution_order(["a"])

    def test_serialization_round_trip(self):
        graph = chain("a", "b")
        restored = WorkflowGraph.from_dict(graph.to_dict())
        assert [n.id for n in restored.nodes] == ["a", "b"]
        assert restored.edges == graph.edges

    def test_clear(self):
        graph = chain("a", "b")
        graph.clear()
        assert len(graph) == 0
        assert graph.edges == []
