"""
Deterministic image primitives used by the crop and padding executors.

Images travel between components as encoded bytes; decoding happens here
into BGR OpenCV arrays, and every output is re-encoded as PNG.
"""

from __future__ import annotations

import logging
from io import BytesIO
from math import gcd

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from smart_resizer.models.jobs import MasterImage

logger = logging.getLogger(__name__)

# Upper bound on window positions evaluated along the free axis.
_MAX_CROP_CANDIDATES = 96

# Containers both Pillow and OpenCV can read.
SUPPORTED_FORMATS = ("PNG", "JPEG", "WEBP", "BMP", "TIFF")
# Pillow names JPEGs with a multi-picture extension "MPO"; OpenCV reads the first frame.
_FORMAT_ALIASES = {"MPO": "JPEG"}
# Largest master accepted, in pixels. Stays below Pillow's decompression bomb limit.
MAX_MASTER_PIXELS = 50_000_000


class MasterImageError(ValueError):
    """Raised when uploaded bytes are not a decodable raster image."""


def reduced_aspect_ratio(width: int, height: int) -> str:
    divisor = gcd(width, height)
    return f"{width // divisor}:{height // divisor}"


def read_master_image(data: bytes) -> MasterImage:
    """
    Validate an upload and derive its metadata.

    Pillow identifies the container and dimensions without a full decode;
    `verify()` then checks the payload for truncation or corruption.
    """
    if not data:
        raise MasterImageError("Master image is empty.")
    try:
        with Image.open(BytesIO(data)) as opened:
            width, height = opened.size
            image_format = _FORMAT_ALIASES.get(opened.format, opened.format or "UNKNOWN")
            opened.verify()
    except Image.DecompressionBombError as exc:
        raise MasterImageError(f"Master image is too large: {exc}") from exc
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise MasterImageError(f"Master image could not be decoded: {exc}") from exc

    if image_format not in SUPPORTED_FORMATS:
        raise MasterImageError(
            f"Unsupported master image format {image_format}; expected one of {', '.join(SUPPORTED_FORMATS)}."
        )
    if width <= 0 or height <= 0:
        raise MasterImageError(f"Master image has invalid dimensions {width}x{height}.")
    if width * height > MAX_MASTER_PIXELS:
        raise MasterImageError(
            f"Master image is too large: {width}x{height} exceeds {MAX_MASTER_PIXELS} pixels."
        )

    return MasterImage(
        data=bytes(data),
        width=width,
        height=height,
        format=image_format,
        aspect_ratio=reduced_aspect_ratio(width, height),
    )


def decode_image(data: bytes) -> np.ndarray:
    """Decode encoded bytes into a BGR array."""
    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise MasterImageError("OpenCV could not decode the image payload.")
    return image


def encode_png(image: np.ndarray) -> bytes:
    ok, encoded = cv2.imencode(".png", image)
    if not ok:
        raise RuntimeError("PNG encoding failed.")
    return encoded.tobytes()


def hex_to_bgr(color: str) -> tuple[int, int, int]:
    value = color.lstrip("#")
    if len(value) != 6:
        raise ValueError(f"Expected a #RRGGBB colour, got {color!r}")
    r, g, b = (int(value[i : i + 2], 16) for i in (0, 2, 4))
    return b, g, r


def _interpolation(scale: float) -> int:
    return cv2.INTER_AREA if scale < 1.0 else cv2.INTER_LANCZOS4


def compute_saliency_map(image: np.ndarray) -> np.ndarray | None:
    """
    Spectral-residual saliency in [0, 1], same shape as the image.

    Returns None if the OpenCV build lacks the saliency module or the
    computation fails; callers fall back to a center crop.
    """
    try:
        detector = cv2.saliency.StaticSaliencySpectralResidual_create()
        success, saliency_map = detector.computeSaliency(image)
    except (AttributeError, cv2.error) as exc:
        logger.warning("Saliency computation unavailable: %s", exc)
        return None
    if not success or saliency_map is None:
        logger.warning("Saliency computation failed; using center crop.")
        return None
    # Flat images give log(0) in the spectral residual; treat those as no signal.
    return np.nan_to_num(saliency_map.astype(np.float64), nan=0.0, posinf=0.0, neginf=0.0)


def best_crop_window(
    saliency_map: np.ndarray | None,
    image_width: int,
    image_height: int,
    crop_width: int,
    crop_height: int,
) -> tuple[int, int]:
    """
    Return the (x, y) origin of the crop window holding the most saliency.

    Only one axis can move, since the window spans the full other dimension
    after a cover-resize. Window sums come from an integral image; ties go to
    the position closest to the center so uniform images crop centrally.
    """
    center_x = (image_width - crop_width) // 2
    center_y = (image_height - crop_height) // 2
    if saliency_map is None:
        return center_x, center_y

    integral = cv2.integral(saliency_map)

    def window_sum(x: int, y: int) -> float:
        return float(
            integral[y + crop_height, x + crop_width]
            - integral[y, x + crop_width]
            - integral[y + crop_height, x]
            + integral[y, x]
        )

    if image_width > crop_width:
        span = image_width - crop_width
        candidates = [(x, 0) for x in _axis_positions(span)]
        center = (center_x, 0)
    elif image_height > crop_height:
        span = image_height - crop_height
        candidates = [(0, y) for y in _axis_positions(span)]
        center = (0, center_y)
    else:
        return 0, 0

    candidates.append(center)
    best = max(
        candidates,
        key=lambda pos: (
            round(window_sum(*pos), 6),
            -abs(pos[0] - center[0]) - abs(pos[1] - center[1]),
        ),
    )
    return best


def _axis_positions(span: int) -> list[int]:
    step = max(1, span // _MAX_CROP_CANDIDATES)
    positions = list(range(0, span + 1, step))
    if positions[-1] != span:
        positions.append(span)
    return positions


def smart_crop(data: bytes, target_width: int, target_height: int) -> bytes:
    """
    Cover the target frame and crop the excess where it matters least.

    The crop window is sized in source coordinates so that scaling it yields
    exactly the target dimensions, then placed on the saliency peak.
    """
    image = decode_image(data)
    h, w = image.shape[:2]

    scale = max(target_width / w, target_height / h)
    crop_w = min(w, max(1, round(target_width / scale)))
    crop_h = min(h, max(1, round(target_height / scale)))

    saliency_map = compute_saliency_map(image) if (crop_w < w or crop_h < h) else None
    x, y = best_crop_window(saliency_map, w, h, crop_w, crop_h)
    logger.debug("Smart crop window (%d, %d, %d, %d) on %dx%d", x, y, crop_w, crop_h, w, h)

    cropped = image[y : y + crop_h, x : x + crop_w]
    resized = cv2.resize(cropped, (target_width, target_height), interpolation=_interpolation(scale))
    return encode_png(resized)


def resize_with_padding(data: bytes, target_width: int, target_height: int, background: str = "#FFFFFF") -> bytes:
    """
    Fit the whole image inside the target frame and pad the rest.

    The resized image is centered on a solid canvas; nothing is cropped.
    """
    image = decode_image(data)
    h, w = image.shape[:2]

    scale = min(target_width / w, target_height / h)
    new_w = min(target_width, max(1, round(w * scale)))
    new_h = min(target_height, max(1, round(h * scale)))
    resized = cv2.resize(image, (new_w, new_h), interpolation=_interpolation(scale))

    output = np.empty((target_height, target_width, 3), dtype=np.uint8)
    output[:, :] = hex_to_bgr(background)

    offset_x = (target_width - new_w) // 2
    offset_y = (target_height - new_h) // 2
    output[offset_y : offset_y + new_h, offset_x : offset_x + new_w] = resized
    return encode_png(output)


def image_size(data: bytes) -> tuple[int, int]:
    """Return (width, height) of encoded image bytes."""
    with Image.open(BytesIO(data)) as opened:
        return opened.size
