"""
Nodes package - Built-in node type catalog.

Node types are organized by category:
- input: Text, Image
- llm: Run LLM
- transform: Crop Image
"""

from genflow.core.node_types import NodeRegistry
from genflow.nodes.input import IMAGE_NODE, TEXT_NODE, register_input_nodes
from genflow.nodes.llm import LLM_NODE, register_llm_nodes
from genflow.nodes.transform import CROP_IMAGE_NODE, register_transform_nodes


def register_all_nodes(registry: NodeRegistry) -> NodeRegistry:
    """Register all built-in nodes into ``registry`` and return it."""
    register_input_nodes(registry)
    register_llm_nodes(registry)
    register_transform_nodes(registry)
    return registry


__all__ = [
    "CROP_IMAGE_NODE",
    "IMAGE_NODE",
    "LLM_NODE",
    "TEXT_NODE",
    "register_all_nodes",
]
