from __future__ import annotations

import logging
from typing import List

import cv2
import numpy as np
import pytesseract
from PIL import Image

from smart_resizer.models.jobs import DetectedContent, MasterImage
from smart_resizer.services.image_processing import MasterImageError, decode_image

logger = logging.getLogger(__name__)

# Tesseract confidence is in [0, 100].
MIN_WORD_CONFIDENCE = 60.0
PALETTE_SIZE = 5
# Longest side used for colour clustering.
_PALETTE_SAMPLE_SIDE = 128


def _detect_text_lines(image: np.ndarray) -> List[str]:
    """
    Read text from the master using Tesseract's word-level output.

    Words are grouped back into lines by Tesseract's block/paragraph/line
    numbers. If the Tesseract engine is not installed this degrades to an
    empty list rather than failing the job.
    """
    try:
        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        data = pytesseract.image_to_data(Image.fromarray(rgb), output_type=pytesseract.Output.DICT)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Text detection failed via Tesseract: %s", exc)
        return []

    lines: dict[tuple[int, int, int], List[str]] = {}
    for i, word in enumerate(data.get("text", [])):
        if not word or word.isspace():
            continue
        try:
            conf = float(data["conf"][i])
        except (KeyError, ValueError, TypeError):
            continue
        if conf < MIN_WORD_CONFIDENCE:
            continue
        key = (int(data["block_num"][i]), int(data["par_num"][i]), int(data["line_num"][i]))
        lines.setdefault(key, []).append(word.strip())
    return [" ".join(words) for _, words in sorted(lines.items())]


def _dominant_colors(image: np.ndarray, count: int = PALETTE_SIZE) -> List[str]:
    """Cluster pixels with k-means and return cluster centres by frequency."""
    h, w = image.shape[:2]
    scale = min(1.0, _PALETTE_SAMPLE_SIDE / max(h, w))
    small = cv2.resize(image, (max(1, int(w * scale)), max(1, int(h * scale))), interpolation=cv2.INTER_AREA)
    pixels = small.reshape(-1, 3).astype(np.float32)
    k = min(count, len(np.unique(pixels, axis=0)))
    if k == 0:
        return []

    criteria = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, 20, 1.0)
    # Fixed seed keeps the palette stable across runs.
    cv2.setRNGSeed(0)
    _, labels, centers = cv2.kmeans(pixels, k, None, criteria, 3, cv2.KMEANS_PP_CENTERS)
    counts = np.bincount(labels.flatten(), minlength=k)

    palette: List[str] = []
    for index in np.argsort(counts)[::-1]:
        b, g, r = (int(round(c)) for c in centers[index])
        color = f"#{r:02X}{g:02X}{b:02X}"
        if color not in palette:
            palette.append(color)
    return palette


def analyze_master(master: MasterImage) -> DetectedContent:
    """
    Extract text and colour palette from the master image.

    Analysis is best effort: any failure yields an empty result so the job can
    still proceed. Deterministic transforms never depend on it.
    """
    try:
        image = decode_image(master.data)
    except MasterImageError as exc:
        logger.warning("Content analysis skipped, master could not be decoded: %s", exc)
        return DetectedContent()

    texts = _detect_text_lines(image)
    try:
        palette = _dominant_colors(image)
    except cv2.error as exc:
        logger.warning("Palette extraction failed: %s", exc)
        palette = []

    logger.info("Content analysis: %d text lines, %d palette colours", len(texts), len(palette))
    return DetectedContent(texts=texts, color_palette=palette)
