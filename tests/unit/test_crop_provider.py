from io import BytesIO

import pytest
from PIL import Image

from genflow.providers.base import ProviderError, ProviderErrorCode
from genflow.providers.crop import CropImageProvider, crop_box, crop_image_bytes
from genflow.providers.media import parse_data_url, to_data_url


def png_bytes(width: int, height: int, color=(255, 0, 0)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def test_crop_box_floors_percentages():
    assert crop_box(101, 51, 10, 10, 50, 50) == (10, 5, 60, 30)


def test_crop_box_full_image():
    assert crop_box(640, 480, 0, 0, 100, 100) == (0, 0, 640, 480)


def test_crop_box_rejects_empty_region():
    with pytest.raises(ProviderError) as exc:
        crop_box(10, 10, 0, 0, 5, 50)
    assert exc.value.code is ProviderErrorCode.INVALID_INPUT
    assert exc.value.retryable is False
    assert exc.value.message == "Invalid crop dimensions: width=0, height=5"


def test_crop_box_rejects_region_past_edge():
    with pytest.raises(ProviderError) as exc:
        crop_box(100, 100, 60, 0, 50, 100)
    assert exc.value.message == (
        "Crop region exceeds image boundaries: crop(60,0,50,100) > image(100,100)"
    )


def test_crop_image_bytes_returns_png_of_region():
    cropped = Image.open(BytesIO(crop_image_bytes(png_bytes(200, 100), 25, 0, 50, 50)))
    assert cropped.format == "PNG"
    assert cropped.size == (100, 50)


def test_crop_image_bytes_rejects_garbage():
    with pytest.raises(ProviderError) as exc:
        crop_image_bytes(b"not an image", 0, 0, 100, 100)
    assert exc.value.code is ProviderErrorCode.INVALID_INPUT


def test_data_url_helpers():
    url = to_data_url(b"\x89PNG", "image/png")
    assert url.startswith("data:image/png;base64,")
    assert parse_data_url(url) == (b"\x89PNG", "image/png")

    with pytest.raises(ProviderError):
        parse_data_url("data:image/png,rawtext")
    with pytest.raises(ProviderError):
        parse_data_url("no comma here")


@pytest.mark.asyncio
async def test_provider_crops_data_url():
    provider = CropImageProvider()
    assert provider.is_configured

    source = to_data_url(png_bytes(40, 20))
    result = await provider.execute({"image_url": source, "x": 50, "y": 0, "width": 50, "height": 100})

    assert result.success
    assert result.provider == "local-crop"
    assert result.credits_used is None
    content, mime_type = parse_data_url(result.data["output"])
    assert mime_type == "image/png"
    assert Image.open(BytesIO(content)).size == (20, 20)


@pytest.mark.asyncio
async def test_provider_reports_bad_region_as_failure():
    provider = CropImageProvider()
    source = to_data_url(png_bytes(40, 20))

    result = await provider.execute({"image_url": source, "x": 80, "y": 0, "width": 50, "height": 100})

    assert not result.success
    assert result.error.code is ProviderErrorCode.INVALID_INPUT
    assert result.error.retryable is False


@pytest.mark.asyncio
async def test_provider_rejects_unsupported_url():
    result = await CropImageProvider().execute({"image_url": "ftp://example.com/a.png", "x": 0, "y": 0, "width": 100, "height": 100})
    assert not result.success
    assert result.error.code is ProviderErrorCode.INVALID_INPUT
