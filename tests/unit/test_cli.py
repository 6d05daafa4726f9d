import json

import pytest

from genflow.core.graph import Edge, Node, WorkflowGraph
from genflow.core.workspace import load_workflow, save_workflow
from genflow.main import main


@pytest.fixture
def text_workflow(tmp_path):
    graph = WorkflowGraph(nodes=[
        Node.create("text", {"value": "hello"}, node_id="source"),
        Node.create("text", node_id="sink"),
    ])
    graph.add_edge(Edge.create("source", "text-output", "sink", "text-input"))
    return save_workflow(graph, "echo", None, tmp_path / "echo.json")


@pytest.fixture
def llm_workflow(tmp_path):
    graph = WorkflowGraph(nodes=[
        Node.create("text", {"value": "hello"}, node_id="prompt"),
        Node.create("llm", node_id="chat"),
    ])
    graph.add_edge(Edge.create("prompt", "text-output", "chat", "user-message-input"))
    return save_workflow(graph, "chat", None, tmp_path / "chat.json")


def test_validate_prints_order(text_workflow, capsys):
    assert main(["validate", str(text_workflow)]) == 0
    out = capsys.readouterr().out
    assert '"echo" is valid: 2 nodes, 1 edges' in out
    assert "1. source (text)" in out


def test_validate_reports_unknown_type(tmp_path, capsys):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"nodes": [{"id": "x", "type": "teleport"}], "edges": []}))

    assert main(["validate", str(path)]) == 2
    assert "UNKNOWN_NODE_TYPE" in capsys.readouterr().err


def test_missing_file(tmp_path, capsys):
    assert main(["validate", str(tmp_path / "nope.json")]) == 2
    assert "not found" in capsys.readouterr().err


def test_estimate(llm_workflow, capsys):
    assert main(["estimate", str(llm_workflow), "--balance", "5000"]) == 0
    out = capsys.readouterr().out
    assert "Total: 1.0K" in out

    assert main(["estimate", str(llm_workflow), "--balance", "10"]) == 1
    assert "Insufficient credits" in capsys.readouterr().out


def test_nodes_listing(capsys):
    assert main(["nodes", "--category", "transform"]) == 0
    out = capsys.readouterr().out
    assert "crop-image" in out
    assert "llm" not in out


def test_run_local_workflow(text_workflow, tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("GENFLOW_CONFIG", str(tmp_path / "no-providers.json"))
    output = tmp_path / "out.json"

    assert main(["run", str(text_workflow), "--credits", "100", "--output", str(output)]) == 0

    out = capsys.readouterr().out
    assert ": completed" in out
    assert load_workflow(output).graph.get_node("sink").data["value"] == "hello"


def test_run_fails_without_credits(llm_workflow, tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("GENFLOW_CONFIG", str(tmp_path / "no-providers.json"))

    assert main(["run", str(llm_workflow), "--credits", "0"]) == 1
    out = capsys.readouterr().out
    assert "INSUFFICIENT_CREDITS" in out
    assert ": failed" in out
