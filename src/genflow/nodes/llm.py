"""
LLM Node - Chat completion with optional system prompt and images.

Runs on Gemini by default and falls back to OpenRouter when Gemini is
unavailable or fails with a retryable error.
"""

from __future__ import annotations

from genflow.core.data_types import HandleDataType
from genflow.core.node_types import (
    CostConfig,
    HandleDefinition,
    NodeCategory,
    NodeConfig,
    NodeRegistry,
    NumberParameter,
    SelectOption,
    SelectParameter,
    SliderParameter,
)


GEMINI_MODELS: tuple[SelectOption, ...] = (
    SelectOption("gemini-2.5-flash", "Gemini 2.5 Flash", "Latest fast model with enhanced capabilities"),
    SelectOption("gemini-1.5-flash", "Gemini 1.5 Flash", "Fast and efficient model for most tasks"),
    SelectOption("gemini-1.5-pro", "Gemini 1.5 Pro", "Most capable model for complex tasks"),
    SelectOption("gemini-2.0-flash-exp", "Gemini 2.0 Flash (Experimental)", "Latest experimental flash model"),
)

DEFAULT_MODEL = "gemini-2.5-flash"


LLM_NODE = NodeConfig(
    type="llm",
    name="Run LLM",
    description="Generate text with a large language model",
    category=NodeCategory.AI_LLM,
    icon="Brain",
    color="#6366F1",
    provider_id="gemini",
    fallback_providers=["openrouter"],
    inputs=[
        HandleDefinition(
            id="system-prompt-input",
            label="System Prompt",
            data_type=HandleDataType.TEXT,
            key="system_prompt",
            description="Instructions that steer the model",
        ),
        HandleDefinition(
            id="user-message-input",
            label="User Message",
            data_type=HandleDataType.TEXT,
            key="user_message",
            required=True,
        ),
        HandleDefinition(
            id="image-input",
            label="Images",
            data_type=HandleDataType.IMAGE,
            key="images",
            multiple=True,
            description="Images passed to vision-capable models",
        ),
    ],
    outputs=[
        HandleDefinition(
            id="llm-output",
            label="Response",
            data_type=HandleDataType.TEXT,
            key="output",
        ),
    ],
    parameters=[
        SelectParameter(
            id="model",
            label="Model",
            options=GEMINI_MODELS,
            default_value=DEFAULT_MODEL,
            required=True,
        ),
        SliderParameter(
            id="temperature",
            label="Temperature",
            min=0,
            max=2,
            step=0.1,
            default_value=1,
            advanced=True,
        ),
        NumberParameter(
            id="max_tokens",
            label="Max Tokens",
            min=1,
            max=65536,
            step=1,
            advanced=True,
        ),
    ],
    cost_config=CostConfig(base_cost=1_000, per_input_token=1, per_output_token=3),
    tags=["gemini", "chat", "text", "vision", "ai"],
)


def register_llm_nodes(registry: NodeRegistry) -> None:
    """Register LLM node types."""
    registry.register(LLM_NODE)
