"""
Workflow Persistence - Export and import workflows as JSON.

The serialized format matches what the editor produces: camelCase edge
handles, node positions, and a format version stamp.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from genflow.core.errors import WorkflowFormatError
from genflow.core.graph import Edge, Node, WorkflowGraph


WORKFLOW_FORMAT_VERSION = "1.0.0"
DEFAULT_IMPORT_NAME = "Imported Workflow"

# Default directory for saved workflows
WORKFLOW_DIR = Path.home() / ".local" / "share" / "genflow" / "workflows"


@dataclass
class ImportedWorkflow:
    """Result of parsing a serialized workflow."""
    name: str
    description: str | None
    graph: WorkflowGraph
    version: str = WORKFLOW_FORMAT_VERSION


def get_workflow_dir() -> Path:
    """Get the workflow storage directory, creating if needed."""
    WORKFLOW_DIR.mkdir(parents=True, exist_ok=True)
    return WORKFLOW_DIR


def export_workflow(
    name: str,
    description: str | None,
    graph: WorkflowGraph,
) -> str:
    """
    Serialize a workflow to a JSON string.

    Args:
        name: Workflow display name
        description: Optional description
        graph: The graph to serialize

    Returns:
        Pretty-printed JSON document
    """
    payload = {
        "version": WORKFLOW_FORMAT_VERSION,
        "name": name,
        "description": description,
        **graph.to_dict(),
        "exportedAt": datetime.now(timezone.utc).isoformat(),
    }
    return json.dumps(payload, indent=2)


def import_workflow(text: str) -> ImportedWorkflow:
    """
    Parse a workflow previously produced by ``export_workflow``.

    Raises:
        WorkflowFormatError: If the text is not JSON, or is missing the
            ``nodes``/``edges`` arrays, or a node/edge lacks required keys.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise WorkflowFormatError("Failed to parse workflow JSON") from e

    if not isinstance(data, dict):
        raise WorkflowFormatError("Invalid workflow format")

    nodes = data.get("nodes")
    edges = data.get("edges")
    if not isinstance(nodes, list) or not isinstance(edges, list):
        raise WorkflowFormatError("Invalid workflow format")

    try:
        graph = WorkflowGraph(
            nodes=[Node.from_dict(n) for n in nodes],
            edges=[Edge.from_dict(e) for e in edges],
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise WorkflowFormatError(f"Invalid workflow format: {e}") from e

    return ImportedWorkflow(
        name=data.get("name") or DEFAULT_IMPORT_NAME,
        description=data.get("description") or None,
        graph=graph,
        version=str(data.get("version", WORKFLOW_FORMAT_VERSION)),
    )


def save_workflow(
    graph: WorkflowGraph,
    name: str = "workflow",
    description: str | None = None,
    path: Path | None = None,
) -> Path:
    """
    Save a workflow to disk.

    Args:
        graph: The graph to save
        name: Workflow name (used for filename if path not specified)
        description: Optional description
        path: Optional specific path, otherwise uses default location

    Returns:
        Path where the workflow was saved
    """
    if path is None:
        path = get_workflow_dir() / f"{name}.json"

    with open(path, "w", encoding="utf-8") as f:
        f.write(export_workflow(name, description, graph))

    return path


def load_workflow(path: Path) -> ImportedWorkflow:
    """
    Load a workflow from disk.

    Raises:
        FileNotFoundError: If the file doesn't exist
        WorkflowFormatError: If the file content is invalid
    """
    if not path.exists():
        raise FileNotFoundError(f"Workflow not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        return import_workflow(f.read())


def graph_summary(graph: WorkflowGraph) -> dict[str, Any]:
    """Short description used by the CLI."""
    return {
        "nodes": len(graph),
        "edges": len(graph.edges),
        "types": sorted({node.type for node in graph.nodes}),
    }
