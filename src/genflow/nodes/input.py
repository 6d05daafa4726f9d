"""
Input Nodes - Nodes that provide literal data to the workflow.

Input nodes are evaluated locally: their outputs are their stored values,
so they never reserve credits or call a provider.
"""

from __future__ import annotations

from genflow.core.data_types import HandleDataType
from genflow.core.node_types import (
    FileParameter,
    HandleDefinition,
    NodeCategory,
    NodeConfig,
    NodeRegistry,
    TextParameter,
)


# Text node: literal text, also usable as a sink for upstream text
TEXT_NODE = NodeConfig(
    type="text",
    name="Text",
    description="Text input or display of upstream text",
    category=NodeCategory.INPUT,
    icon="Type",
    color="#10B981",
    inputs=[
        HandleDefinition(
            id="text-input",
            label="Text",
            data_type=HandleDataType.TEXT,
            key="value",
            description="Replaces the node's text when connected",
        ),
    ],
    outputs=[
        HandleDefinition(
            id="text-output",
            label="Text",
            data_type=HandleDataType.TEXT,
            key="value",
        ),
    ],
    parameters=[
        TextParameter(
            id="value",
            label="Text",
            multiline=True,
            default_value="",
            placeholder="Enter text...",
        ),
    ],
    tags=["prompt", "string", "input"],
)


# Image node: one or more image URLs
IMAGE_NODE = NodeConfig(
    type="image",
    name="Image",
    description="Image input from uploaded image URLs",
    category=NodeCategory.INPUT,
    icon="Image",
    color="#3B82F6",
    outputs=[
        HandleDefinition(
            id="image-output",
            label="Images",
            data_type=HandleDataType.IMAGE,
            key="images",
        ),
    ],
    parameters=[
        FileParameter(
            id="images",
            label="Images",
            multiple=True,
            accepted_formats=("png", "jpg", "jpeg", "webp", "gif"),
            max_size_mb=10,
            description="Uploaded image URLs",
        ),
    ],
    default_values={"images": []},
    tags=["upload", "picture", "photo"],
)


def register_input_nodes(registry: NodeRegistry) -> None:
    """Register all input node types."""
    registry.register(TEXT_NODE)
    registry.register(IMAGE_NODE)
