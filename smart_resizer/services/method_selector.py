from __future__ import annotations

import logging

from smart_resizer.api.v1.schemas import ProcessingMethod
from smart_resizer.config import ConfigurationError, ResizerSettings
from smart_resizer.models.jobs import FormatPreset

logger = logging.getLogger(__name__)


class MethodSelector:
    """
    Pick a processing method from the aspect-ratio change alone.

    The absolute difference between source and target width/height ratios is
    compared against two ordered thresholds:

    - delta < crop_threshold     -> crop (near-identical ratios)
    - delta < padding_threshold  -> padding (letterbox keeps all content)
    - otherwise                  -> ai_regenerate (needs recomposition)

    A delta exactly on a threshold belongs to the upper tier. Results are never
    cached: each master image brings its own ratio.
    """

    def __init__(self, crop_threshold: float, padding_threshold: float) -> None:
        if not 0 < crop_threshold < padding_threshold:
            raise ConfigurationError(
                f"Thresholds must satisfy 0 < crop ({crop_threshold}) < padding ({padding_threshold})"
            )
        self.crop_threshold = crop_threshold
        self.padding_threshold = padding_threshold

    @classmethod
    def from_settings(cls, settings: ResizerSettings) -> MethodSelector:
        return cls(settings.crop_threshold, settings.padding_threshold)

    @staticmethod
    def ratio_delta(source_width: int, source_height: int, preset: FormatPreset) -> float:
        if source_width <= 0 or source_height <= 0:
            raise ValueError(f"Invalid source dimensions {source_width}x{source_height}")
        return abs(source_width / source_height - preset.width / preset.height)

    def select_for_delta(self, delta: float) -> ProcessingMethod:
        if delta < self.crop_threshold:
            return ProcessingMethod.CROP
        if delta < self.padding_threshold:
            return ProcessingMethod.PADDING
        return ProcessingMethod.AI_REGENERATE

    def select(self, source_width: int, source_height: int, preset: FormatPreset) -> ProcessingMethod:
        delta = self.ratio_delta(source_width, source_height, preset)
        method = self.select_for_delta(delta)
        logger.debug(
            "Method for %s (%dx%d -> %dx%d, delta=%.4f): %s",
            preset.id,
            source_width,
            source_height,
            preset.width,
            preset.height,
            delta,
            method.value,
        )
        return method
