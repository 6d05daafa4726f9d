"""
Local Crop Provider - Crop an image by percentage region with Pillow.

Runs in-process, needs no API key and reports no cost of its own; the
node's base cost is charged.
"""

from __future__ import annotations

import asyncio
import logging
import math
from io import BytesIO
from typing import Any, Mapping

from PIL import Image, UnidentifiedImageError

from genflow.providers.base import (
    Provider,
    ProviderError,
    ProviderErrorCode,
    ProviderExecuteOptions,
    ProviderOutput,
)
from genflow.providers.media import fetch_image, to_data_url
from genflow.providers.schemas import CropInput


logger = logging.getLogger(__name__)


def crop_box(
    image_width: int,
    image_height: int,
    x: float,
    y: float,
    width: float,
    height: float,
) -> tuple[int, int, int, int]:
    """
    Convert a percentage crop region to a pixel box.

    Pixel values are floored.

    Returns:
        (left, top, right, bottom) suitable for ``Image.crop``

    Raises:
        ProviderError: INVALID_INPUT for an empty region or one that runs
            past the image edge
    """
    crop_width = math.floor(image_width * width / 100)
    crop_height = math.floor(image_height * height / 100)
    crop_x = math.floor(image_width * x / 100)
    crop_y = math.floor(image_height * y / 100)

    if crop_width <= 0 or crop_height <= 0:
        raise ProviderError(
            f"Invalid crop dimensions: width={crop_width}, height={crop_height}",
            ProviderErrorCode.INVALID_INPUT,
            retryable=False,
        )

    if crop_x + crop_width > image_width or crop_y + crop_height > image_height:
        raise ProviderError(
            "Crop region exceeds image boundaries: "
            f"crop({crop_x},{crop_y},{crop_width},{crop_height}) > "
            f"image({image_width},{image_height})",
            ProviderErrorCode.INVALID_INPUT,
            retryable=False,
        )

    return crop_x, crop_y, crop_x + crop_width, crop_y + crop_height


def crop_image_bytes(content: bytes, x: float, y: float, width: float, height: float) -> bytes:
    """Crop encoded image bytes and return the result as PNG."""
    try:
        img = Image.open(BytesIO(content))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ProviderError(
            f"Could not decode image: {e}",
            ProviderErrorCode.INVALID_INPUT,
            retryable=False,
        ) from e

    box = crop_box(img.width, img.height, x, y, width, height)
    cropped = img.crop(box)

    buf = BytesIO()
    cropped.save(buf, format="PNG")
    return buf.getvalue()


class CropImageProvider(Provider):
    """In-process image cropping."""

    id = "local-crop"
    name = "Local Crop"
    requires_api_key = False

    input_model = CropInput

    async def generate(
        self,
        input: Mapping[str, Any],
        options: ProviderExecuteOptions,
    ) -> ProviderOutput:
        content, _ = await fetch_image(input["image_url"])
        logger.debug(
            "Cropping %d bytes at x=%s%% y=%s%% %sx%s%%",
            len(content), input["x"], input["y"], input["width"], input["height"],
        )

        try:
            png = await asyncio.to_thread(
                crop_image_bytes,
                content,
                input["x"],
                input["y"],
                input["width"],
                input["height"],
            )
        except ProviderError as e:
            e.provider_id = self.id
            raise

        return ProviderOutput(data={"output": to_data_url(png, "image/png")})
