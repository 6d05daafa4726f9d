"""
Google Gemini Provider - Chat completion via :generateContent.

Supports text prompts with an optional system instruction and image
attachments (sent inline as base64).

API Reference: https://ai.google.dev/api/generate-content
"""

from __future__ import annotations

import base64
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
from genflow.providers.media import fetch_image
from genflow.providers.schemas import ChatInput


logger = logging.getLogger(__name__)

# Finish reasons that mean the output was withheld by safety filters
BLOCKED_FINISH_REASONS = {"SAFETY", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII"}


class GeminiProvider(Provider):
    """
    Google Gemini chat provider.

    The API key travels in the query string rather than a bearer header.
    """

    id = "gemini"
    name = "Google Gemini"
    base_url = "https://generativelanguage.googleapis.com/v1beta"
    api_key_env_var = "GEMINI_API_KEY"

    input_model = ChatInput
    pricing = CostConfig(base_cost=1000, per_input_token=1, per_output_token=3)

    async def generate(
        self,
        input: Mapping[str, Any],
        options: ProviderExecuteOptions,
    ) -> ProviderOutput:
        """Send one chat turn to Gemini and return its text."""
        model = input.get("model") or self.config.default_model or "gemini-2.5-flash"
        url = f"{self.base_url}/models/{model}:generateContent"

        parts: list[dict[str, Any]] = []
        for image_url in input.get("images", []):
            content, mime_type = await fetch_image(image_url)
            parts.append({
                "inlineData": {
                    "mimeType": mime_type,
                    "data": base64.b64encode(content).decode(),
                }
            })
        parts.append({"text": input["user_message"]})

        body = self.build_body(input, parts)
        logger.debug(f"Gemini request: model={model}, images={len(parts) - 1}")

        response = await self._post(url, body)
        return self._parse_response(response)

    def build_body(self, input: Mapping[str, Any], parts: list[dict[str, Any]]) -> dict[str, Any]:
        """Assemble the generateContent request body."""
        body: dict[str, Any] = {
            "contents": [{"role": "user", "parts": parts}],
        }

        if input.get("system_prompt"):
            body["systemInstruction"] = {"parts": [{"text": input["system_prompt"]}]}

        generation_config: dict[str, Any] = {}
        if input.get("temperature") is not None:
            generation_config["temperature"] = input["temperature"]
        if input.get("max_tokens") is not None:
            generation_config["maxOutputTokens"] = input["max_tokens"]
        if generation_config:
            body["generationConfig"] = generation_config

        return body

    def _parse_response(self, data: dict) -> ProviderOutput:
        """Parse a generateContent response into output text and credits."""
        block_reason = data.get("promptFeedback", {}).get("blockReason")
        if block_reason:
            raise ContentModerationError(
                f"Prompt blocked by Gemini: {block_reason}",
                provider_id=self.id,
            )

        candidates = data.get("candidates", [])
        if not candidates:
            raise ProviderError(
                "Gemini returned no candidates",
                ProviderErrorCode.INVALID_OUTPUT,
                provider_id=self.id,
            )

        candidate = candidates[0]
        texts = [
            part["text"]
            for part in candidate.get("content", {}).get("parts", [])
            if "text" in part
        ]
        if not texts:
            if candidate.get("finishReason") in BLOCKED_FINISH_REASONS:
                raise ContentModerationError(
                    f"Response blocked by Gemini: {candidate['finishReason']}",
                    provider_id=self.id,
                )
            raise ProviderError(
                "Gemini response contained no text",
                ProviderErrorCode.INVALID_OUTPUT,
                provider_id=self.id,
            )

        usage = data.get("usageMetadata", {})
        credits_used = self.cost_from_usage(
            usage.get("promptTokenCount", 0),
            usage.get("candidatesTokenCount", 0),
        )
        return ProviderOutput(data={"output": "".join(texts)}, credits_used=credits_used)

    async def _post(self, url: str, body: dict) -> dict:
        """Make POST request with JSON body and API key in query string."""
        url_with_key = f"{url}?key={self.api_key}"

        async with aiohttp.ClientSession() as session:
            async with session.post(
                url_with_key,
                json=body,
                headers={"Content-Type": "application/json"},
            ) as resp:
                data = await resp.json(content_type=None)
                self._check_error(resp.status, data or {})
                return data

    def _check_error(self, status: int, data: dict) -> None:
        """Check for API errors."""
        if status < 400:
            return

        error_msg = data.get("error", {}).get("message", "Unknown error")
        if status in (401, 403):
            raise AuthenticationError("Invalid Google API key", provider_id=self.id)
        elif status == 429:
            raise RateLimitError("Google API rate limit exceeded", retry_after=60, provider_id=self.id)
        elif status == 400:
            if "API key" in error_msg:
                raise AuthenticationError(f"Google API error: {error_msg}", provider_id=self.id)
            raise GenerationError(
                f"Google API error: {error_msg}",
                ProviderErrorCode.INVALID_INPUT,
                provider_id=self.id,
            )
        elif status >= 500:
            raise GenerationError(
                f"Google API unavailable ({status}): {error_msg}",
                ProviderErrorCode.PROVIDER_UNAVAILABLE,
                provider_id=self.id,
            )
        else:
            raise GenerationError(f"Google API error: {error_msg}", provider_id=self.id)
