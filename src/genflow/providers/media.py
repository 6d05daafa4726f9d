"""
Media helpers - Fetch and encode images referenced by URL.

Images travel between nodes as URLs: either http(s) links or ``data:``
URLs carrying base64 content.
"""

from __future__ import annotations

import base64
import binascii

import aiohttp

from genflow.providers.base import ProviderError, ProviderErrorCode


def parse_data_url(url: str) -> tuple[bytes, str]:
    """
    Decode a base64 ``data:`` URL.

    Returns:
        (content bytes, mime type)

    Raises:
        ProviderError: INVALID_INPUT if the URL is malformed
    """
    try:
        header, payload = url.split(",", 1)
    except ValueError as e:
        raise ProviderError("Malformed data URL", ProviderErrorCode.INVALID_INPUT) from e

    if not header.startswith("data:") or ";base64" not in header:
        raise ProviderError("Only base64 data URLs are supported", ProviderErrorCode.INVALID_INPUT)

    mime_type = header[len("data:"):].split(";", 1)[0] or "application/octet-stream"
    try:
        return base64.b64decode(payload, validate=True), mime_type
    except binascii.Error as e:
        raise ProviderError("Invalid base64 in data URL", ProviderErrorCode.INVALID_INPUT) from e


def to_data_url(content: bytes, mime_type: str = "image/png") -> str:
    """Encode bytes as a base64 data URL."""
    return f"data:{mime_type};base64,{base64.b64encode(content).decode()}"


async def fetch_image(url: str, timeout_s: float = 60.0) -> tuple[bytes, str]:
    """
    Load an image from a data URL or download it over HTTP.

    Returns:
        (content bytes, mime type)

    Raises:
        ProviderError: INVALID_INPUT for unusable URLs or a non-2xx download
    """
    if url.startswith("data:"):
        return parse_data_url(url)

    if not url.startswith(("http://", "https://")):
        raise ProviderError(f"Unsupported image URL: {url[:64]}", ProviderErrorCode.INVALID_INPUT)

    timeout = aiohttp.ClientTimeout(total=timeout_s)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        async with session.get(url) as resp:
            if resp.status >= 400:
                raise ProviderError(
                    f"Failed to fetch image ({resp.status}): {url[:64]}",
                    ProviderErrorCode.INVALID_INPUT,
                )
            content = await resp.read()
            mime_type = resp.content_type or "image/png"
            return content, mime_type
