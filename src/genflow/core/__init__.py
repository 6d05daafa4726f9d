"""
Core module - Graph model, node catalog and execution events.

This module provides the fundamental building blocks for genflow:
- Graph: Workflow nodes, edges and ordering
- Data Types: Handle data types and connection rules
- Node Types: Node definitions and registry
- Events: Execution event bus

The orchestrator lives in ``genflow.core.execution`` and is imported
from there directly.
"""

from genflow.core.data_types import (
    HandleDataType,
    is_valid_connection,
)

from genflow.core.errors import (
    ConfigError,
    CycleError,
    IncompatibleConnectionError,
    InsufficientCreditsError,
    ValidationError,
    WorkflowError,
    WorkflowFormatError,
)

from genflow.core.events import (
    ExecutionEvent,
    ExecutionEventBus,
    ExecutionEventType,
)

from genflow.core.graph import (
    Edge,
    Node,
    Point2D,
    WorkflowGraph,
    detect_cycle,
    new_edge_id,
    new_node_id,
    topological_sort,
)

from genflow.core.node_types import (
    CostConfig,
    HandleDefinition,
    NodeCategory,
    NodeConfig,
    NodeRegistry,
)

__all__ = [
    # Data types
    "HandleDataType",
    "is_valid_connection",
    # Errors
    "ConfigError",
    "CycleError",
    "IncompatibleConnectionError",
    "InsufficientCreditsError",
    "ValidationError",
    "WorkflowError",
    "WorkflowFormatError",
    # Events
    "ExecutionEvent",
    "ExecutionEventBus",
    "ExecutionEventType",
    # Graph
    "Edge",
    "Node",
    "Point2D",
    "WorkflowGraph",
    "detect_cycle",
    "new_edge_id",
    "new_node_id",
    "topological_sort",
    # Node types
    "CostConfig",
    "HandleDefinition",
    "NodeCategory",
    "NodeConfig",
    "NodeRegistry",
]
