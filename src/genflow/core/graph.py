"""
Workflow Graph Model - Core data structures for the node-based workflow.

This module defines the fundamental building blocks:
- Node: A single processing unit referencing a registered node type
- Edge: A link between a source handle and a target handle
- WorkflowGraph: The complete graph containing nodes and edges

It also provides the graph algorithms used before execution:
- detect_cycle: DFS with a recursion stack
- topological_sort: Kahn's algorithm with a FIFO queue
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Iterable
from uuid import uuid4

from genflow.core.data_types import is_valid_connection
from genflow.core.errors import CycleError


def new_node_id() -> str:
    """Generate a new unique node ID."""
    return f"node-{uuid4().hex[:12]}"


def new_edge_id() -> str:
    """Generate a new unique edge ID."""
    return f"edge-{uuid4().hex[:12]}"


@dataclass
class Point2D:
    """2D point for node positioning on the canvas."""
    x: float = 0.0
    y: float = 0.0


@dataclass
class Edge:
    """
    A connection between two nodes.

    Connects an output handle of one node to an input handle of another.
    Handle ids resolve to data types through the node types' declarations.
    """
    id: str
    source: str
    target: str
    source_handle: str
    target_handle: str

    @classmethod
    def create(
        cls,
        source: str,
        source_handle: str,
        target: str,
        target_handle: str,
    ) -> Edge:
        """Factory method to create a new edge."""
        return cls(
            id=new_edge_id(),
            source=source,
            target=target,
            source_handle=source_handle,
            target_handle=target_handle,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "sourceHandle": self.source_handle,
            "targetHandle": self.target_handle,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Edge:
        return cls(
            id=str(data["id"]),
            source=str(data["source"]),
            target=str(data["target"]),
            source_handle=str(data.get("sourceHandle") or ""),
            target_handle=str(data.get("targetHandle") or ""),
        )


@dataclass
class Node:
    """
    A single node in the workflow graph.

    Nodes have:
    - A unique ID
    - A type (references a NodeConfig in the registry)
    - Data: parameter values plus runtime fields written during execution
    - An optional canvas position, carried through save/load unchanged
    """
    id: str
    type: str
    data: dict[str, Any] = field(default_factory=dict)
    position: Point2D | None = None

    @classmethod
    def create(
        cls,
        type: str,
        data: dict[str, Any] | None = None,
        position: Point2D | None = None,
        node_id: str | None = None,
    ) -> Node:
        """Factory method to create a new node."""
        return cls(
            id=node_id or new_node_id(),
            type=type,
            data=dict(data or {}),
            position=position,
        )

    def set_parameter(self, name: str, value: Any) -> None:
        self.data[name] = value

    def get_parameter(self, name: str, default: Any = None) -> Any:
        return self.data.get(name, default)

    # --- Runtime state ---

    @property
    def is_executing(self) -> bool:
        return bool(self.data.get("is_executing", False))

    def mark_executing(self) -> None:
        """Flag the node as running and clear any previous error."""
        self.data["is_executing"] = True
        self.data.pop("error", None)

    def mark_clean(self, outputs: dict[str, Any]) -> None:
        """Store the outputs of a successful execution."""
        self.data.update(outputs)
        self.data["is_executing"] = False
        self.data.pop("error", None)

    def mark_error(self, message: str) -> None:
        """Mark this node as failed with the given error message."""
        self.data["is_executing"] = False
        self.data["error"] = message

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "data": self.data,
        }
        if self.position is not None:
            result["position"] = {"x": self.position.x, "y": self.position.y}
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Node:
        pos = data.get("position")
        position = None
        if isinstance(pos, dict):
            position = Point2D(pos.get("x", 0.0), pos.get("y", 0.0))
        return cls(
            id=str(data["id"]),
            type=str(data["type"]),
            data=dict(data.get("data") or {}),
            position=position,
        )


# ============================================================================
# Graph algorithms
# ============================================================================

def _adjacency(nodes: Iterable[Node], edges: Iterable[Edge]) -> dict[str, list[str]]:
    """Build source -> [target] adjacency restricted to the given nodes."""
    adjacency: dict[str, list[str]] = {node.id: [] for node in nodes}
    for edge in edges:
        if edge.source in adjacency and edge.target in adjacency:
            adjacency[edge.source].append(edge.target)
    return adjacency


def detect_cycle(nodes: Iterable[Node], edges: Iterable[Edge]) -> bool:
    """
    Detect whether the graph contains a directed cycle.

    Depth-first search that tracks the current recursion stack; a neighbor
    already on the stack is a back-edge. A self-loop is a one-node cycle.
    Iterative so deep chains don't hit the interpreter recursion limit.

    Returns:
        True as soon as a cycle is found.
    """
    adjacency = _adjacency(nodes, edges)
    visited: set[str] = set()
    on_stack: set[str] = set()

    for root in adjacency:
        if root in visited:
            continue

        visited.add(root)
        on_stack.add(root)
        stack: list[tuple[str, int]] = [(root, 0)]

        while stack:
            node_id, index = stack[-1]
            neighbors = adjacency[node_id]

            if index == len(neighbors):
                stack.pop()
                on_stack.discard(node_id)
                continue

            stack[-1] = (node_id, index + 1)
            neighbor = neighbors[index]

            if neighbor in on_stack:
                return True
            if neighbor not in visited:
                visited.add(neighbor)
                on_stack.add(neighbor)
                stack.append((neighbor, 0))

    return False


def topological_sort(nodes: Iterable[Node], edges: Iterable[Edge]) -> list[Node]:
    """
    Get nodes in topological order for execution.

    Kahn's algorithm: seed a FIFO queue with the in-degree-0 nodes in input
    order, then repeatedly dequeue and release neighbors. Ties are broken by
    discovery order, so the result is deterministic for a fixed node order.
    Edges touching nodes outside ``nodes`` are ignored.

    Returns:
        List of nodes in execution order.

    Raises:
        CycleError: If the graph contains a cycle.
    """
    node_list = list(nodes)
    by_id = {node.id: node for node in node_list}
    adjacency = _adjacency(node_list, edges)

    in_degree: dict[str, int] = {node_id: 0 for node_id in adjacency}
    for targets in adjacency.values():
        for target in targets:
            in_degree[target] += 1

    queue: deque[str] = deque(
        node_id for node_id, degree in in_degree.items() if degree == 0
    )
    result: list[Node] = []

    while queue:
        node_id = queue.popleft()
        result.append(by_id[node_id])

        for neighbor in adjacency[node_id]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    if len(result) != len(by_id):
        raise CycleError("Workflow contains a cycle and cannot be executed")

    return result


# ============================================================================
# WorkflowGraph
# ============================================================================

class WorkflowGraph:
    """
    The complete node graph for a workflow.

    Contains nodes (in insertion order) and the edges between them.
    Provides methods for graph manipulation and execution ordering.
    """

    def __init__(
        self,
        nodes: Iterable[Node] | None = None,
        edges: Iterable[Edge] | None = None,
    ):
        self._nodes: dict[str, Node] = {}
        self._edges: list[Edge] = []
        for node in nodes or []:
            self.add_node(node)
        # Edges supplied up front are stored as-is; validation happens at
        # run time so a bad graph from an editor is reported, not dropped.
        self._edges.extend(edges or [])

    # --- Node operations ---

    @property
    def nodes(self) -> list[Node]:
        """Get all nodes in insertion order (copy of the list)."""
        return list(self._nodes.values())

    def add_node(self, node: Node) -> None:
        """Add a node to the graph."""
        self._nodes[node.id] = node

    def remove_node(self, node_id: str) -> Node | None:
        """
        Remove a node and all its edges.

        Returns the removed node, or None if not found.
        """
        node = self._nodes.pop(node_id, None)
        if node:
            self._edges = [
                edge for edge in self._edges
                if edge.source != node_id and edge.target != node_id
            ]
        return node

    def get_node(self, node_id: str) -> Node | None:
        """Get a node by ID."""
        return self._nodes.get(node_id)

    # --- Edge operations ---

    @property
    def edges(self) -> list[Edge]:
        """Get all edges (copy of the list)."""
        return list(self._edges)

    def add_edge(
        self,
        edge: Edge,
        source_type: str | None = None,
        target_type: str | None = None,
    ) -> bool:
        """
        Add an edge to the graph.

        When the handles' data types are given, the connection must also be
        type-compatible.

        Returns False if either node doesn't exist, if the edge would create
        a cycle, or if the handle types are incompatible.
        """
        if edge.source not in self._nodes or edge.target not in self._nodes:
            return False

        if source_type is not None and target_type is not None:
            if not is_valid_connection(source_type, target_type):
                return False

        if self._would_create_cycle(edge):
            return False

        self._edges.append(edge)
        return True

    def remove_edge(self, edge_id: str) -> Edge | None:
        """Remove an edge by ID."""
        for i, edge in enumerate(self._edges):
            if edge.id == edge_id:
                return self._edges.pop(i)
        return None

    def incoming_edges(self, node_id: str) -> list[Edge]:
        """Edges terminating on ``node_id``, in edge-list order."""
        return [edge for edge in self._edges if edge.target == node_id]

    def outgoing_edges(self, node_id: str) -> list[Edge]:
        """Edges leaving ``node_id``, in edge-list order."""
        return [edge for edge in self._edges if edge.source == node_id]

    # --- Graph analysis ---

    def has_cycle(self) -> bool:
        return detect_cycle(self._nodes.values(), self._edges)

    def execution_order(self, node_ids: Iterable[str] | None = None) -> list[Node]:
        """
        Get nodes in topological order.

        Args:
            node_ids: Restrict to these nodes plus everything upstream of
                them. None means the whole graph.

        Raises:
            CycleError: If the graph contains a cycle.
        """
        if node_ids is None:
            return topological_sort(self._nodes.values(), self._edges)

        wanted: set[str] = set()
        for node_id in node_ids:
            if node_id in self._nodes:
                wanted.add(node_id)
                wanted.update(self.get_upstream_nodes(node_id))

        # Sorting the whole graph first keeps cycle detection global.
        order = topological_sort(self._nodes.values(), self._edges)
        return [node for node in order if node.id in wanted]

    def get_upstream_nodes(self, node_id: str) -> set[str]:
        """Get all nodes that this node depends on (directly or indirectly)."""
        upstream: set[str] = set()
        to_visit = [node_id]

        while to_visit:
            current = to_visit.pop()
            for edge in self._edges:
                if edge.target == current and edge.source not in upstream:
                    upstream.add(edge.source)
                    to_visit.append(edge.source)

        return upstream

    def get_downstream_nodes(self, node_id: str) -> set[str]:
        """Get all nodes that depend on this node (directly or indirectly)."""
        downstream: set[str] = set()
        to_visit = [node_id]

        while to_visit:
            current = to_visit.pop()
            for edge in self._edges:
                if edge.source == current and edge.target not in downstream:
                    downstream.add(edge.target)
                    to_visit.append(edge.target)

        return downstream

    def _would_create_cycle(self, edge: Edge) -> bool:
        """Check if adding this edge would create a cycle."""
        if edge.source == edge.target:
            return True
        # Adding source->target closes a cycle iff source is reachable
        # from target already.
        return edge.source in self.get_downstream_nodes(edge.target)

    # --- Serialization ---

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [node.to_dict() for node in self._nodes.values()],
            "edges": [edge.to_dict() for edge in self._edges],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowGraph:
        return cls(
            nodes=[Node.from_dict(n) for n in data.get("nodes", [])],
            edges=[Edge.from_dict(e) for e in data.get("edges", [])],
        )

    # --- Utility ---

    def clear(self) -> None:
        """Remove all nodes and edges."""
        self._nodes.clear()
        self._edges.clear()

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes
