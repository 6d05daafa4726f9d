"""
Tests for workflow export/import and file persistence.
"""

import json

import pytest

from genflow.core.errors import WorkflowFormatError
from genflow.core.graph import Edge, Node, Point2D, WorkflowGraph
from genflow.core.workspace import (
    DEFAULT_IMPORT_NAME,
    WORKFLOW_FORMAT_VERSION,
    export_workflow,
    graph_summary,
    import_workflow,
    load_workflow,
    save_workflow,
)


@pytest.fixture
def graph():
    return WorkflowGraph(
        nodes=[
            Node.create("text", {"value": "a cat"}, Point2D(0, 0), node_id="prompt"),
            Node.create("llm", {"model": "gemini-2.5-flash"}, Point2D(300, 0), node_id="chat"),
        ],
        edges=[Edge.create("prompt", "text-output", "chat", "user-message-input")],
    )


class TestExport:

    def test_payload_shape(self, graph):
        data = json.loads(export_workflow("Demo", "A demo", graph))
        assert data["version"] == WORKFLOW_FORMAT_VERSION
        assert data["name"] == "Demo"
        assert data["description"] == "A demo"
        assert len(data["nodes"]) == 2
        assert data["edges"][0]["targetHandle"] == "user-message-input"
        assert "exportedAt" in data

    def test_import_restores_graph(self, graph):
        imported = import_workflow(export_workflow("Demo", None, graph))
        assert imported.name == "Demo"
        assert imported.description is None
        assert [n.id for n in imported.graph.nodes] == ["prompt", "chat"]
        assert imported.graph.get_node("chat").position == Point2D(300, 0)
        assert imported.graph.edges == graph.edges


class TestImport:

    def test_invalid_json(self):
        with pytest.raises(WorkflowFormatError, match="Failed to parse"):
            import_workflow("{not json")

    def test_missing_arrays(self):
        with pytest.raises(WorkflowFormatError, match="Invalid workflow format"):
            import_workflow(json.dumps({"nodes": []}))

    def test_not_an_object(self):
        with pytest.raises(WorkflowFormatError):
            import_workflow("[]")

    def test_node_without_type(self):
        text = json.dumps({"nodes": [{"id": "a"}], "edges": []})
        with pytest.raises(WorkflowFormatError):
            import_workflow(text)

    def test_node_data_not_an_object(self):
        text = json.dumps({"nodes": [{"id": "a", "type": "text", "data": ["abc"]}], "edges": []})
        with pytest.raises(WorkflowFormatError, match="Invalid workflow format"):
            import_workflow(text)

    def test_defaults_for_missing_metadata(self):
        imported = import_workflow(json.dumps({"nodes": [], "edges": []}))
        assert imported.name == DEFAULT_IMPORT_NAME
        assert imported.version == WORKFLOW_FORMAT_VERSION
        assert len(imported.graph) == 0


class TestFiles:

    def test_save_and_load(self, tmp_path, graph):
        path = save_workflow(graph, "demo", "saved", tmp_path / "demo.json")
        loaded = load_workflow(path)
        assert loaded.name == "demo"
        assert loaded.description == "saved"
        assert loaded.graph.get_node("prompt").data == {"value": "a cat"}

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_workflow(tmp_path / "nope.json")

    def test_summary(self, graph):
        assert graph_summary(graph) == {"nodes": 2, "edges": 1, "types": ["llm", "text"]}
