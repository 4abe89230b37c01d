"""Tests for the deterministic image primitives."""

import struct
import zlib
from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from smart_resizer.services.gemini_http_client import mime_for_format
from smart_resizer.services.image_processing import (
    MAX_MASTER_PIXELS,
    MasterImageError,
    best_crop_window,
    image_size,
    read_master_image,
    reduced_aspect_ratio,
    resize_with_padding,
    smart_crop,
)


def _encode(image: Image.Image, fmt: str = "PNG") -> bytes:
    buffer = BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def _solid(width: int, height: int, color=(200, 30, 30), fmt: str = "PNG") -> bytes:
    return _encode(Image.new("RGB", (width, height), color=color), fmt)


def test_reduced_aspect_ratio():
    assert reduced_aspect_ratio(1920, 1080) == "16:9"
    assert reduced_aspect_ratio(1080, 1080) == "1:1"
    assert reduced_aspect_ratio(2520, 1080) == "7:3"


def test_read_master_image_metadata():
    master = read_master_image(_solid(640, 360, fmt="JPEG"))

    assert (master.width, master.height) == (640, 360)
    assert master.format == "JPEG"
    assert master.aspect_ratio == "16:9"
    assert master.ratio == pytest.approx(640 / 360)


@pytest.mark.parametrize("payload", [b"", b"not an image at all", _solid(40, 40)[:30]])
def test_read_master_image_rejects_garbage(payload):
    with pytest.raises(MasterImageError):
        read_master_image(payload)


def test_read_master_image_rejects_unsupported_container():
    gif = _encode(Image.new("P", (20, 20)), "GIF")
    with pytest.raises(MasterImageError, match="Unsupported"):
        read_master_image(gif)


@pytest.mark.parametrize("target", [(1080, 1080), (1080, 1920), (1920, 1080), (300, 250)])
def test_smart_crop_produces_exact_dimensions(target):
    output = smart_crop(_solid(800, 450), *target)
    assert image_size(output) == target


@pytest.mark.parametrize("target", [(1080, 1080), (1080, 1350), (728, 90)])
def test_padding_produces_exact_dimensions(target):
    output = resize_with_padding(_solid(800, 450), *target)
    assert image_size(output) == target


def test_padding_keeps_whole_image_on_background():
    """A 2:1 red image padded into a square gets white bars top and bottom."""
    output = resize_with_padding(_solid(200, 100, color=(255, 0, 0)), 100, 100, "#FFFFFF")
    image = Image.open(BytesIO(output)).convert("RGB")

    assert image.getpixel((50, 2)) == (255, 255, 255)
    assert image.getpixel((50, 97)) == (255, 255, 255)
    assert image.getpixel((50, 50)) == (255, 0, 0)
    assert image.getpixel((2, 50)) == (255, 0, 0)


def test_padding_uses_configured_color():
    output = resize_with_padding(_solid(200, 100), 100, 100, "#102030")
    image = Image.open(BytesIO(output)).convert("RGB")
    assert image.getpixel((50, 0)) == (0x10, 0x20, 0x30)


def test_crop_window_follows_saliency():
    """The window lands on the salient region along the free axis."""
    saliency = np.zeros((100, 300), dtype=np.float64)
    saliency[:, 220:280] = 1.0

    x, y = best_crop_window(saliency, 300, 100, 100, 100)

    assert y == 0
    assert x <= 220 and x + 100 >= 280


def test_crop_window_vertical_axis():
    saliency = np.zeros((300, 100), dtype=np.float64)
    saliency[10:60, :] = 1.0

    x, y = best_crop_window(saliency, 100, 300, 100, 100)

    assert x == 0
    assert y <= 10


def test_crop_window_centers_without_saliency():
    assert best_crop_window(None, 300, 100, 100, 100) == (100, 0)
    uniform = np.ones((100, 300), dtype=np.float64)
    assert best_crop_window(uniform, 300, 100, 100, 100) == (100, 0)


def test_crop_window_no_free_axis():
    saliency = np.ones((100, 100), dtype=np.float64)
    assert best_crop_window(saliency, 100, 100, 100, 100) == (0, 0)


def _png_with_header_size(width: int, height: int) -> bytes:
    """A tiny real PNG whose IHDR is rewritten to claim another size."""
    data = bytearray(_solid(4, 4))
    # Signature (8) + chunk length (4) + b"IHDR" (4), then width and height.
    data[16:24] = struct.pack(">II", width, height)
    data[29:33] = struct.pack(">I", zlib.crc32(bytes(data[12:29])) & 0xFFFFFFFF)
    return bytes(data)


def test_read_master_image_rejects_decompression_bomb():
    with pytest.raises(MasterImageError, match="too large"):
        read_master_image(_png_with_header_size(30000, 30000))


def test_read_master_image_enforces_pixel_cap():
    side = int(MAX_MASTER_PIXELS ** 0.5) + 100
    with pytest.raises(MasterImageError, match="too large"):
        read_master_image(_png_with_header_size(side, side))


def test_read_master_image_accepts_mpo_jpeg():
    """Camera JPEGs with a multi-picture extension are read as JPEG."""
    first = Image.new("RGB", (64, 48), color=(10, 200, 30))
    second = Image.new("RGB", (64, 48), color=(200, 10, 30))
    buffer = BytesIO()
    first.save(buffer, format="MPO", save_all=True, append_images=[second])
    payload = buffer.getvalue()
    with Image.open(BytesIO(payload)) as opened:
        assert opened.format == "MPO"

    master = read_master_image(payload)

    assert master.format == "JPEG"
    assert mime_for_format(master.format) == "image/jpeg"
    assert (master.width, master.height) == (64, 48)
    assert image_size(smart_crop(payload, 32, 32)) == (32, 32)
