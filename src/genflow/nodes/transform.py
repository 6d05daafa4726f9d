"""
Transform Nodes - Local image operations.
"""

from __future__ import annotations

from genflow.core.data_types import HandleDataType
from genflow.core.node_types import (
    CostConfig,
    HandleDefinition,
    NodeCategory,
    NodeConfig,
    NodeRegistry,
    SliderParameter,
)


# Crop region is expressed in percent of the source image
CROP_IMAGE_NODE = NodeConfig(
    type="crop-image",
    name="Crop Image",
    description="Crop an image to a rectangular region",
    category=NodeCategory.TRANSFORM,
    icon="Crop",
    color="#14B8A6",
    provider_id="local-crop",
    inputs=[
        HandleDefinition(
            id="image-input",
            label="Image",
            data_type=HandleDataType.IMAGE,
            key="image_url",
            required=True,
        ),
    ],
    outputs=[
        HandleDefinition(
            id="image-output",
            label="Cropped Image",
            data_type=HandleDataType.IMAGE,
            key="output",
        ),
    ],
    parameters=[
        SliderParameter(id="x", label="X (%)", min=0, max=100, step=1, default_value=0, group="region"),
        SliderParameter(id="y", label="Y (%)", min=0, max=100, step=1, default_value=0, group="region"),
        SliderParameter(id="width", label="Width (%)", min=1, max=100, step=1, default_value=100, group="region"),
        SliderParameter(id="height", label="Height (%)", min=1, max=100, step=1, default_value=100, group="region"),
    ],
    cost_config=CostConfig(base_cost=1_000),
    tags=["crop", "resize", "image"],
)


def register_transform_nodes(registry: NodeRegistry) -> None:
    """Register transform node types."""
    registry.register(CROP_IMAGE_NODE)
