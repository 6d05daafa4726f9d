"""
Generation Providers.

This package provides adapters for the services that execute nodes:
- Google Gemini: chat completion
- OpenRouter: multi-model proxy, fallback for Gemini
- Local Crop: in-process image cropping

Usage:
    from genflow.providers import create_default_registry

    providers = create_default_registry(node_registry)
    providers.load_config()
    result = await providers.execute_with_fallback("llm", input)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from genflow.providers.base import (
    AuthenticationError,
    ContentModerationError,
    GenerationError,
    Provider,
    ProviderConfig,
    ProviderError,
    ProviderErrorCode,
    ProviderErrorInfo,
    ProviderExecuteOptions,
    ProviderOutput,
    ProviderResult,
    RateLimitError,
)
from genflow.providers.crop import CropImageProvider
from genflow.providers.gemini import GeminiProvider
from genflow.providers.openrouter import OpenRouterProvider
from genflow.providers.registry import NodeProviderMapping, ProviderRegistry

if TYPE_CHECKING:
    from genflow.core.node_types import NodeRegistry


BUILTIN_PROVIDERS: list[type[Provider]] = [
    GeminiProvider,
    OpenRouterProvider,
    CropImageProvider,
]


def create_default_registry(node_registry: NodeRegistry | None = None) -> ProviderRegistry:
    """
    Build a ProviderRegistry with every built-in provider registered.

    When a node registry is given, its provider chains are mapped too.
    """
    registry = ProviderRegistry(node_registry)
    for provider_cls in BUILTIN_PROVIDERS:
        registry.register(provider_cls())
    if node_registry is not None:
        registry.map_node_configs(node_registry)
    return registry


__all__ = [
    # Base classes
    "Provider",
    "ProviderConfig",
    "ProviderErrorCode",
    "ProviderErrorInfo",
    "ProviderExecuteOptions",
    "ProviderOutput",
    "ProviderResult",
    # Exceptions
    "ProviderError",
    "AuthenticationError",
    "RateLimitError",
    "GenerationError",
    "ContentModerationError",
    # Registry
    "NodeProviderMapping",
    "ProviderRegistry",
    "create_default_registry",
    "BUILTIN_PROVIDERS",
    # Providers
    "GeminiProvider",
    "OpenRouterProvider",
    "CropImageProvider",
]
