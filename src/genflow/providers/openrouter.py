"""
OpenRouter Provider - Multi-model proxy.

OpenRouter exposes many chat models behind an OpenAI-compatible
chat completions endpoint. Used as the fallback for Gemini chat nodes.

API Reference: https://openrouter.ai/docs/api-reference/chat-completion
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import aiohttp

from genflow.core.node_types import CostConfig
from genflow.providers.base import (
    AuthenticationError,
    ContentModerationError,
    GenerationError,
    Provider,
    ProviderError,
    ProviderErrorCode,
    ProviderExecuteOptions,
    ProviderOutput,
    RateLimitError,
)
from genflow.providers.schemas import ChatInput


logger = logging.getLogger(__name__)


def openrouter_model(model: str) -> str:
    """Map a bare model name to OpenRouter's vendor-prefixed form."""
    if "/" in model:
        return model
    if model.startswith("gemini"):
        return f"google/{model}"
    return model


class OpenRouterProvider(Provider):
    """
    OpenRouter chat provider.

    Images are passed through as ``image_url`` content parts; OpenRouter
    accepts both http links and data URLs.
    """

    id = "openrouter"
    name = "OpenRouter"
    base_url = "https://openrouter.ai/api/v1"
    api_key_env_var = "OPENROUTER_API_KEY"

    input_model = ChatInput
    pricing = CostConfig(base_cost=1000, per_input_token=1, per_output_token=3)

    def get_headers(self) -> dict[str, str]:
        """OpenRouter headers."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": "https://genflow.local",
            "X-Title": "genflow",
        }

    async def generate(
        self,
        input: Mapping[str, Any],
        options: ProviderExecuteOptions,
    ) -> ProviderOutput:
        """Run a chat completion through OpenRouter."""
        url = f"{self.base_url}/chat/completions"
        body = self.build_body(input)
        logger.debug(f"OpenRouter request: model={body['model']}")

        response = await self._post(url, body)
        return self._parse_response(response)

    def build_body(self, input: Mapping[str, Any]) -> dict[str, Any]:
        """Assemble the chat completions request body."""
        content: list[dict[str, Any]] = [
            {"type": "image_url", "image_url": {"url": url}}
            for url in input.get("images", [])
        ]
        content.append({"type": "text", "text": input["user_message"]})

        messages: list[dict[str, Any]] = []
        if input.get("system_prompt"):
            messages.append({"role": "system", "content": input["system_prompt"]})
        messages.append({"role": "user", "content": content})

        model = input.get("model") or self.config.default_model or "gemini-2.5-flash"
        body: dict[str, Any] = {
            "model": openrouter_model(model),
            "messages": messages,
        }
        if input.get("temperature") is not None:
            body["temperature"] = input["temperature"]
        if input.get("max_tokens") is not None:
            body["max_tokens"] = input["max_tokens"]
        return body

    def _parse_response(self, data: dict) -> ProviderOutput:
        """Parse OpenRouter response."""
        choices = data.get("choices", [])
        if not choices:
            raise ProviderError(
                "OpenRouter returned no choices",
                ProviderErrorCode.INVALID_OUTPUT,
                provider_id=self.id,
            )

        choice = choices[0]
        if choice.get("finish_reason") == "content_filter":
            raise ContentModerationError("Response blocked by content filter", provider_id=self.id)

        content = choice.get("message", {}).get("content")
        if isinstance(content, list):
            content = "".join(
                item.get("text", "")
                for item in content
                if isinstance(item, dict) and item.get("type") == "text"
            )
        if not content:
            raise ProviderError(
                "OpenRouter response contained no text",
                ProviderErrorCode.INVALID_OUTPUT,
                provider_id=self.id,
            )

        usage = data.get("usage", {})
        credits_used = self.cost_from_usage(
            usage.get("prompt_tokens", 0),
            usage.get("completion_tokens", 0),
        )
        return ProviderOutput(data={"output": content}, credits_used=credits_used)

    async def _post(self, url: str, body: dict) -> dict:
        """Make POST request."""
        async with aiohttp.ClientSession() as session:
            async with session.post(
                url,
                json=body,
                headers=self.get_headers(),
            ) as resp:
                data = await resp.json(content_type=None)
                self._check_error(resp.status, data or {})
                return data

    def _check_error(self, status: int, data: dict) -> None:
        """Check for API errors."""
        if status < 400:
            return

        error_msg = data.get("error", {})
        if isinstance(error_msg, dict):
            error_msg = error_msg.get("message", "Unknown error")

        if status == 401:
            raise AuthenticationError("Invalid OpenRouter API key", provider_id=self.id)
        elif status == 402:
            raise GenerationError(
                f"OpenRouter credits exhausted: {error_msg}",
                ProviderErrorCode.QUOTA_EXCEEDED,
                provider_id=self.id,
            )
        elif status == 429:
            raise RateLimitError("OpenRouter rate limit exceeded", provider_id=self.id)
        elif status == 400:
            raise GenerationError(
                f"OpenRouter error: {error_msg}",
                ProviderErrorCode.INVALID_INPUT,
                provider_id=self.id,
            )
        elif status >= 500:
            raise GenerationError(
                f"OpenRouter unavailable ({status}): {error_msg}",
                ProviderErrorCode.PROVIDER_UNAVAILABLE,
                provider_id=self.id,
            )
        else:
            raise GenerationError(f"OpenRouter error: {error_msg}", provider_id=self.id)
