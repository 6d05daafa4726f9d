"""
Provider Registry - Provider instances, node mappings and fallback execution.

This module manages:
- Registration of provider instances
- Node type -> ordered provider chain mappings
- Fallback-chain execution
- Provider configuration loading
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping

from genflow.providers.base import (
    Provider,
    ProviderConfig,
    ProviderError,
    ProviderErrorCode,
    ProviderErrorInfo,
    ProviderExecuteOptions,
    ProviderResult,
)

if TYPE_CHECKING:
    from genflow.core.node_types import NodeRegistry


logger = logging.getLogger(__name__)


def default_config_path() -> Path:
    """Provider config location; GENFLOW_CONFIG overrides the default."""
    override = os.environ.get("GENFLOW_CONFIG")
    if override:
        return Path(override)
    return Path.home() / ".config" / "genflow" / "providers.json"


@dataclass
class NodeProviderMapping:
    """Ordered provider chain for one node type."""
    node_type: str
    primary: str
    fallbacks: list[str] = field(default_factory=list)

    @property
    def chain(self) -> list[str]:
        return [self.primary, *self.fallbacks]


class ProviderRegistry:
    """
    Registry of provider instances and the chains that use them.

    Construct one per process (or per test) and hand it to the orchestrator.
    An optional NodeRegistry supplies cost estimates when the primary
    provider declares no pricing of its own.
    """

    def __init__(
        self,
        node_registry: NodeRegistry | None = None,
        retryable_overrides: Mapping[ProviderErrorCode | str, bool] | None = None,
    ):
        self._providers: dict[str, Provider] = {}
        self._mappings: dict[str, NodeProviderMapping] = {}
        self._configs: dict[str, ProviderConfig] = {}
        self._node_registry = node_registry
        self._retryable_overrides: dict[ProviderErrorCode, bool] = {
            ProviderErrorCode(code): flag
            for code, flag in (retryable_overrides or {}).items()
        }

    # -------------------------------------------------------------------------
    # Provider Registration
    # -------------------------------------------------------------------------

    def register(self, provider: Provider) -> None:
        """Register a provider under its own id. Re-registering overwrites."""
        if provider.id in self._providers:
            logger.warning(f'Provider "{provider.id}" is already registered. Overwriting.')
        self._providers[provider.id] = provider

    def get(self, provider_id: str) -> Provider | None:
        """Get a provider by id."""
        return self._providers.get(provider_id)

    def has(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def unregister(self, provider_id: str) -> Provider | None:
        return self._providers.pop(provider_id, None)

    def get_all_providers(self) -> list[Provider]:
        return list(self._providers.values())

    def clear(self) -> None:
        """Remove all providers and mappings."""
        self._providers.clear()
        self._mappings.clear()

    # -------------------------------------------------------------------------
    # Node Mappings
    # -------------------------------------------------------------------------

    def set_node_mapping(
        self,
        node_type: str,
        primary: str,
        fallbacks: list[str] | None = None,
    ) -> None:
        """Declare the ordered provider chain for a node type."""
        self._mappings[node_type] = NodeProviderMapping(node_type, primary, list(fallbacks or []))

    def get_providers_for_node(self, node_type: str) -> list[str]:
        """Provider ids to try for ``node_type``, primary first."""
        mapping = self._mappings.get(node_type)
        return mapping.chain if mapping else []

    def get_all_node_mappings(self) -> list[NodeProviderMapping]:
        return list(self._mappings.values())

    def map_node_configs(self, node_registry: NodeRegistry) -> None:
        """Register the chains declared on node configs (``provider_id`` + fallbacks)."""
        for config in node_registry.get_all():
            if config.provider_id is not None and config.type not in self._mappings:
                self.set_node_mapping(config.type, config.provider_id, config.fallback_providers)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute_with_fallback(
        self,
        node_type: str,
        input: Mapping[str, Any],
        options: ProviderExecuteOptions | None = None,
    ) -> ProviderResult:
        """
        Execute ``node_type`` on the first provider in its chain that succeeds.

        Unregistered or unavailable providers are skipped. A retryable
        failure moves on to the next provider; a non-retryable one aborts
        the chain.

        Returns:
            The first successful result, or a failed result whose message
            lists every provider tried and why it failed. Skipped providers
            are named only when none was tried.

        Raises:
            ProviderError: No providers are configured for the node type, or
                a provider failed with a non-retryable error.
        """
        provider_ids = self.get_providers_for_node(node_type)
        if not provider_ids:
            raise ProviderError(
                f'No providers configured for node type "{node_type}"',
                ProviderErrorCode.PROVIDER_UNAVAILABLE,
                provider_id="registry",
                retryable=False,
            )

        errors: list[tuple[str, str]] = []
        skipped: list[tuple[str, str]] = []
        start = time.monotonic()

        for provider_id in provider_ids:
            provider = self._providers.get(provider_id)
            if provider is None:
                logger.warning(f'Provider "{provider_id}" not found in registry')
                skipped.append((provider_id, "not registered"))
                continue

            try:
                if not await provider.is_available():
                    logger.warning(f'Provider "{provider_id}" is not available, trying next')
                    skipped.append((provider_id, "not available"))
                    continue

                validated = provider.validate_input(input)
                result = await self._execute_with_retries(provider, validated, options)
                if result.success:
                    return result

                error = self._reclassify(result.error, provider_id)
                if not error.retryable:
                    raise error.to_exception(provider_id)
                errors.append((provider_id, error.message))
                logger.warning(f'Provider "{provider_id}" failed: {error.message}')

            except ProviderError as e:
                if not e.retryable:
                    raise
                errors.append((provider_id, e.message))
                logger.warning(f'Provider "{provider_id}" failed: {e.message}')
            except Exception as e:
                wrapped = ProviderError(
                    str(e) or type(e).__name__,
                    ProviderErrorCode.UNKNOWN_ERROR,
                    provider_id=provider_id,
                    retryable=True,
                )
                errors.append((provider_id, wrapped.message))
                logger.warning(f'Provider "{provider_id}" failed: {wrapped.message}')

        if errors:
            summary = "; ".join(f"{pid}: {message}" for pid, message in errors)
        else:
            reasons = "; ".join(f"{pid}: {message}" for pid, message in skipped)
            summary = f"no provider available ({reasons})"
        return ProviderResult(
            success=False,
            provider=errors[0][0] if errors else "registry",
            error=ProviderErrorInfo(
                code=ProviderErrorCode.PROVIDER_UNAVAILABLE,
                message=f"All providers failed: {summary}",
                retryable=False,
            ),
            duration_ms=int((time.monotonic() - start) * 1000),
            credits_used=0,
        )

    async def _execute_with_retries(
        self,
        provider: Provider,
        input: dict[str, Any],
        options: ProviderExecuteOptions | None,
    ) -> ProviderResult:
        """Call a provider, repeating retryable failures up to its max_retries."""
        result = await provider.execute(input, options)
        attempts = provider.config.max_retries
        while not result.success and attempts > 0:
            error = self._reclassify(result.error, provider.id)
            if not error.retryable:
                break
            attempts -= 1
            logger.info(f'Retrying provider "{provider.id}" after: {error.message}')
            result = await provider.execute(input, options)
        return result

    def _reclassify(self, error: ProviderErrorInfo | None, provider_id: str) -> ProviderErrorInfo:
        if error is None:
            return ProviderErrorInfo(ProviderErrorCode.UNKNOWN_ERROR, "Unknown error", True)
        override = self._retryable_overrides.get(error.code)
        if override is None or override == error.retryable:
            return error
        logger.debug(f"Reclassifying {error.code} from {provider_id} as retryable={override}")
        return ProviderErrorInfo(error.code, error.message, override)

    # -------------------------------------------------------------------------
    # Cost
    # -------------------------------------------------------------------------

    def estimate_cost(self, node_type: str, input: Mapping[str, Any]) -> int:
        """
        Estimate credits for ``node_type`` using the primary provider only.

        Fallbacks are assumed to cost the same. A provider without its own
        pricing defers to the node catalog. Returns 0 when nothing is mapped
        or the input does not validate.
        """
        provider_ids = self.get_providers_for_node(node_type)
        if not provider_ids:
            return 0

        provider = self._providers.get(provider_ids[0])
        if provider is None:
            return 0

        try:
            validated = provider.validate_input(input)
        except ProviderError:
            return 0

        estimate = provider.estimate_cost(validated)
        if estimate is None and self._node_registry is not None:
            estimate = self._node_registry.estimate_cost(node_type, validated)
        return estimate or 0

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def get_config(self, provider_id: str) -> ProviderConfig:
        """Get the loaded configuration for a provider."""
        return self._configs.get(provider_id, ProviderConfig())

    def load_config(self, path: Path | None = None) -> None:
        """
        Load provider configurations, node mappings and retry overrides.

        Registered providers receive their config immediately; providers
        registered later can look it up with ``get_config``. A malformed
        file is logged and leaves the registry unchanged.
        """
        if path is None:
            path = default_config_path()

        if not path.exists():
            return

        try:
            with open(path) as f:
                data = json.load(f)

            configs = {
                pid: ProviderConfig.from_dict(cfg)
                for pid, cfg in data.get("providers", {}).items()
            }
            mappings = [
                NodeProviderMapping(m["node_type"], m["primary"], list(m.get("fallbacks", [])))
                for m in data.get("node_mappings", [])
            ]
            overrides = {
                ProviderErrorCode(code): bool(flag)
                for code, flag in data.get("retryable_overrides", {}).items()
            }
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to load provider config from {path}: {e}")
            return

        self._configs.update(configs)
        for provider_id, config in configs.items():
            provider = self._providers.get(provider_id)
            if provider is not None:
                provider.config = config
                if config.base_url:
                    provider.base_url = config.base_url
        for mapping in mappings:
            self._mappings[mapping.node_type] = mapping
        self._retryable_overrides.update(overrides)

        logger.info(
            "Loaded provider config from %s (%d providers, %d mappings)",
            path, len(configs), len(mappings),
        )
