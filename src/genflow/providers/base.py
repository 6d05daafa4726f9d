"""
Provider Base - Abstract base class, result types and error taxonomy.

This module provides the foundation for all generation providers:
- ProviderErrorCode / ProviderError: Error codes with a retryable flag
- ProviderResult: Standardized success/failure wrapper
- ProviderConfig / ProviderExecuteOptions: Configuration and call options
- Provider: Abstract base class for provider implementations
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Mapping

import aiohttp
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from genflow.core.node_types import CostConfig, estimate_cost_from_config, format_validation_error
from genflow.credits.calculator import UsageMetrics, calculate_actual_cost


logger = logging.getLogger(__name__)


# ============================================================================
# Errors
# ============================================================================

class ProviderErrorCode(StrEnum):
    """Machine-readable provider failure codes."""
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_OUTPUT = "INVALID_OUTPUT"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    CONTENT_MODERATION = "CONTENT_MODERATION"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


# Default retryability per code. Only used to fill in the flag when an
# error is created; fallback decisions read the error's own flag.
DEFAULT_RETRYABLE: dict[ProviderErrorCode, bool] = {
    ProviderErrorCode.RATE_LIMITED: True,
    ProviderErrorCode.TIMEOUT: True,
    ProviderErrorCode.INVALID_INPUT: False,
    ProviderErrorCode.INVALID_OUTPUT: True,
    ProviderErrorCode.AUTHENTICATION_FAILED: True,
    ProviderErrorCode.QUOTA_EXCEEDED: True,
    ProviderErrorCode.PROVIDER_UNAVAILABLE: True,
    ProviderErrorCode.CONTENT_MODERATION: False,
    ProviderErrorCode.UNKNOWN_ERROR: True,
}


class ProviderError(Exception):
    """Base exception for provider errors."""
    default_code: ProviderErrorCode = ProviderErrorCode.UNKNOWN_ERROR

    def __init__(
        self,
        message: str,
        code: ProviderErrorCode | str | None = None,
        *,
        provider_id: str | None = None,
        retryable: bool | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = ProviderErrorCode(code) if code is not None else self.default_code
        self.provider_id = provider_id
        self.retryable = DEFAULT_RETRYABLE[self.code] if retryable is None else retryable

    def to_info(self) -> ProviderErrorInfo:
        return ProviderErrorInfo(code=self.code, message=self.message, retryable=self.retryable)


class AuthenticationError(ProviderError):
    """API key invalid or missing."""
    default_code = ProviderErrorCode.AUTHENTICATION_FAILED


class RateLimitError(ProviderError):
    """Rate limit exceeded."""
    default_code = ProviderErrorCode.RATE_LIMITED

    def __init__(self, message: str, retry_after: float | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class GenerationError(ProviderError):
    """Error during generation."""
    pass


class ContentModerationError(ProviderError):
    """Request or output rejected by the provider's safety filters."""
    default_code = ProviderErrorCode.CONTENT_MODERATION


# ============================================================================
# Results, config and options
# ============================================================================

@dataclass(frozen=True)
class ProviderErrorInfo:
    """Error details carried by a failed ProviderResult."""
    code: ProviderErrorCode
    message: str
    retryable: bool

    def to_exception(self, provider_id: str | None = None) -> ProviderError:
        return ProviderError(
            self.message,
            self.code,
            provider_id=provider_id,
            retryable=self.retryable,
        )


@dataclass
class ProviderResult:
    """
    Result wrapper for provider executions.

    Attributes:
        success: Whether the execution succeeded
        provider: Provider that handled this request
        data: Output values keyed by output field, if successful
        error: Error information, if failed
        duration_ms: Execution duration in milliseconds
        credits_used: Actual cost reported by the provider, or None if the
            provider does not report one
    """
    success: bool
    provider: str
    data: dict[str, Any] | None = None
    error: ProviderErrorInfo | None = None
    duration_ms: int = 0
    credits_used: int | None = None

    @classmethod
    def failure(
        cls,
        provider: str,
        error: ProviderError,
        duration_ms: int = 0,
    ) -> ProviderResult:
        return cls(
            success=False,
            provider=provider,
            error=error.to_info(),
            duration_ms=duration_ms,
            credits_used=0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "provider": self.provider,
            "data": self.data,
            "error": None if self.error is None else {
                "code": self.error.code.value,
                "message": self.error.message,
                "retryable": self.error.retryable,
            },
            "duration_ms": self.duration_ms,
            "credits_used": self.credits_used,
        }


@dataclass
class ProviderConfig:
    """Configuration for a provider."""
    api_key: str = ""
    api_key_env_var: str | None = None  # Read the key from the environment
    enabled: bool = True
    base_url: str | None = None  # Override default URL
    default_model: str | None = None
    default_timeout_ms: int = 120_000
    max_retries: int = 0  # Extra attempts on retryable failures
    supports_webhooks: bool = False
    rate_limit_rpm: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProviderConfig:
        return cls(
            api_key=data.get("api_key", ""),
            api_key_env_var=data.get("api_key_env_var"),
            enabled=data.get("enabled", True),
            base_url=data.get("base_url"),
            default_model=data.get("default_model"),
            default_timeout_ms=int(data.get("default_timeout_ms", 120_000)),
            max_retries=int(data.get("max_retries", 0)),
            supports_webhooks=data.get("supports_webhooks", False),
            rate_limit_rpm=data.get("rate_limit_rpm"),
            extra=dict(data.get("extra", {})),
        )


@dataclass
class ProviderExecuteOptions:
    """Options for a single provider call."""
    timeout_ms: int | None = None  # Override default timeout
    webhook_url: str | None = None
    request_id: str | None = None
    signal: asyncio.Event | None = None  # Set to abort an in-flight call


@dataclass
class ProviderOutput:
    """What a provider's generate() hands back to execute()."""
    data: dict[str, Any]
    credits_used: int | None = None


# ============================================================================
# Provider
# ============================================================================

class Provider(ABC):
    """
    Abstract base class for generation providers.

    Each provider handles communication with a specific API. Subclasses
    implement ``generate()``; ``execute()`` wraps it with timing, timeout,
    abort handling and error-to-result conversion.
    """

    # Provider identification
    id: str = ""
    name: str = ""
    base_url: str = ""
    api_key_env_var: str = ""  # Default env var for the API key
    requires_api_key: bool = True

    # Pydantic model validating this provider's input
    input_model: type[BaseModel] | None = None

    # Pricing, when the provider's cost differs from the node catalog's
    pricing: CostConfig | None = None

    # Cooldown applied after a rate limit without a retry_after hint
    default_cooldown_s: float = 60.0

    def __init__(self, config: ProviderConfig | None = None):
        self.config = config or ProviderConfig()
        if self.config.base_url:
            self.base_url = self.config.base_url
        self._cooldown_until = 0.0
        self._request_times: deque[float] = deque()

    @property
    def api_key(self) -> str:
        if self.config.api_key:
            return self.config.api_key
        env_var = self.config.api_key_env_var or self.api_key_env_var
        return os.environ.get(env_var, "") if env_var else ""

    @property
    def is_configured(self) -> bool:
        """Check if provider has necessary configuration."""
        return not self.requires_api_key or bool(self.api_key)

    # --- Contract used by the registry ---

    def validate_input(self, input: Mapping[str, Any]) -> dict[str, Any]:
        """
        Validate raw input against this provider's schema.

        Returns:
            Normalized input

        Raises:
            ProviderError: INVALID_INPUT (not retryable) on schema failure
        """
        if self.input_model is None:
            return dict(input)
        try:
            return self.input_model.model_validate(dict(input)).model_dump()
        except PydanticValidationError as e:
            raise ProviderError(
                f"Invalid input for {self.id}: {format_validation_error(e)}",
                ProviderErrorCode.INVALID_INPUT,
                provider_id=self.id,
                retryable=False,
            ) from e

    def estimate_cost(self, input: Mapping[str, Any]) -> int | None:
        """Credits this provider expects to charge, or None to defer to the node catalog."""
        if self.pricing is None:
            return None
        return estimate_cost_from_config(self.pricing, input)

    def cost_from_usage(self, input_tokens: int, output_tokens: int) -> int | None:
        """Actual credits for a call from reported token usage, if priced."""
        if self.pricing is None:
            return None
        return calculate_actual_cost(
            self.pricing,
            UsageMetrics(input_tokens=input_tokens, output_tokens=output_tokens),
        )

    async def is_available(self) -> bool:
        """Check if the provider can accept a request right now."""
        if not self.config.enabled or not self.is_configured:
            return False
        now = time.monotonic()
        if now < self._cooldown_until:
            return False
        if self.config.rate_limit_rpm:
            self._prune_requests(now)
            if len(self._request_times) >= self.config.rate_limit_rpm:
                return False
        return True

    async def execute(
        self,
        input: Mapping[str, Any],
        options: ProviderExecuteOptions | None = None,
    ) -> ProviderResult:
        """
        Run one request and wrap the outcome in a ProviderResult.

        Provider errors, timeouts, transport errors and aborts become failed
        results. Anything else propagates to the caller.
        """
        options = options or ProviderExecuteOptions()
        start = time.monotonic()
        if self.config.rate_limit_rpm:
            self._prune_requests(start)
            self._request_times.append(start)

        def elapsed_ms() -> int:
            return int((time.monotonic() - start) * 1000)

        timeout_ms = options.timeout_ms or self.config.default_timeout_ms
        try:
            output = await self._run_abortable(input, options, timeout_ms / 1000)
        except RateLimitError as e:
            self._cooldown_until = time.monotonic() + (e.retry_after or self.default_cooldown_s)
            return ProviderResult.failure(self.id, e, elapsed_ms())
        except ProviderError as e:
            return ProviderResult.failure(self.id, e, elapsed_ms())
        except asyncio.TimeoutError:
            error = ProviderError(
                f"{self.name or self.id} timed out after {timeout_ms} ms",
                ProviderErrorCode.TIMEOUT,
                provider_id=self.id,
            )
            return ProviderResult.failure(self.id, error, elapsed_ms())
        except aiohttp.ClientError as e:
            error = ProviderError(
                f"{self.name or self.id} request failed: {e}",
                ProviderErrorCode.PROVIDER_UNAVAILABLE,
                provider_id=self.id,
            )
            return ProviderResult.failure(self.id, error, elapsed_ms())

        return ProviderResult(
            success=True,
            provider=self.id,
            data=output.data,
            duration_ms=elapsed_ms(),
            credits_used=output.credits_used,
        )

    @abstractmethod
    async def generate(
        self,
        input: Mapping[str, Any],
        options: ProviderExecuteOptions,
    ) -> ProviderOutput:
        """
        Perform the provider call.

        Args:
            input: Validated input
            options: Call options

        Returns:
            ProviderOutput with output values and reported cost

        Raises:
            AuthenticationError: Invalid API key
            RateLimitError: Rate limit exceeded
            GenerationError: Generation failed
        """
        ...

    # --- Internals ---

    async def _run_abortable(
        self,
        input: Mapping[str, Any],
        options: ProviderExecuteOptions,
        timeout_s: float,
    ) -> ProviderOutput:
        """Run generate() under a timeout, cancelling it if the signal fires."""
        if options.signal is None:
            return await asyncio.wait_for(self.generate(input, options), timeout_s)

        if options.signal.is_set():
            raise self._aborted()

        work = asyncio.ensure_future(self.generate(input, options))
        abort = asyncio.ensure_future(options.signal.wait())
        try:
            done, _ = await asyncio.wait(
                {work, abort},
                timeout=timeout_s,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            abort.cancel()

        if work in done:
            return work.result()

        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass

        if abort in done:
            raise self._aborted()
        raise asyncio.TimeoutError()

    def _aborted(self) -> ProviderError:
        return ProviderError(
            "Execution cancelled",
            ProviderErrorCode.UNKNOWN_ERROR,
            provider_id=self.id,
            retryable=False,
        )

    def _prune_requests(self, now: float) -> None:
        while self._request_times and now - self._request_times[0] > 60:
            self._request_times.popleft()

    def get_headers(self) -> dict[str, str]:
        """Get default headers for API requests."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
