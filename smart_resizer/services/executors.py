"""
Strategies that turn the master image into one target format.

Each executor takes the shared, read-only master and a preset and returns PNG
bytes at exactly the preset's dimensions. Executors raise on failure; turning
exceptions into failed results is the format task runner's job.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Mapping, Optional, Protocol

from smart_resizer.api.v1.schemas import ProcessingMethod
from smart_resizer.config import ResizerSettings
from smart_resizer.models.jobs import DetectedContent, FormatPreset, MasterImage
from smart_resizer.services.format_presets import safe_zone_pixels
from smart_resizer.services.gemini_http_client import (
    GeminiHTTPClient,
    GenerationError,
    GenerationErrorCode,
    mime_for_format,
    nearest_supported_ratio,
)
from smart_resizer.services.image_processing import (
    image_size,
    reduced_aspect_ratio,
    resize_with_padding,
    smart_crop,
)

logger = logging.getLogger(__name__)


class ImageGenerator(Protocol):
    """Outbound contract of the generative collaborator."""

    def generate(
        self,
        prompt: str,
        image: bytes,
        aspect_ratio: str,
        timeout: float,
        mime_type: str = "image/png",
    ) -> bytes: ...


class RegenerationFailedError(RuntimeError):
    """Raised when the collaborator could not produce an image, retries included."""

    def __init__(self, last_error: GenerationError, attempts: int) -> None:
        self.last_error = last_error
        self.attempts = attempts
        noun = "attempt" if attempts == 1 else "attempts"
        super().__init__(f"AI regeneration failed after {attempts} {noun}: {last_error}")


class TransformExecutor(ABC):
    method: ProcessingMethod

    @abstractmethod
    def execute(
        self,
        master: MasterImage,
        preset: FormatPreset,
        content: DetectedContent | None = None,
    ) -> bytes:
        """Produce PNG bytes for `preset` from `master`."""


class CropExecutor(TransformExecutor):
    method = ProcessingMethod.CROP

    def execute(self, master, preset, content=None):
        return smart_crop(master.data, preset.width, preset.height)


class PaddingExecutor(TransformExecutor):
    method = ProcessingMethod.PADDING

    def __init__(self, background: str = "#FFFFFF") -> None:
        self.background = background

    def execute(self, master, preset, content=None):
        return resize_with_padding(master.data, preset.width, preset.height, self.background)


def build_regeneration_prompt(preset: FormatPreset, content: DetectedContent | None = None) -> str:
    """Compose the recomposition instructions sent with the master image."""
    ratio = preset.ratio or reduced_aspect_ratio(preset.width, preset.height)
    margins = safe_zone_pixels(preset)
    content = content or DetectedContent()

    if content.texts:
        text_lines = "\n".join(f'{i}. "{text}"' for i, text in enumerate(content.texts, start=1))
        text_section = (
            "MANDATORY TEXT TO KEEP (copy exactly, same hierarchy and style):\n"
            f"{text_lines}\n"
            "Every word must appear and be spelled exactly as shown."
        )
    else:
        text_section = "Keep any text from the original exactly as written."

    if content.color_palette:
        color_section = f"COLOR PALETTE: {', '.join(content.color_palette)}"
    else:
        color_section = "Use the original colors."

    return (
        f"Recompose this advertisement to a {ratio} aspect ratio "
        f"({preset.width}x{preset.height} pixels) for {preset.id}.\n\n"
        f"{text_section}\n\n"
        f"{color_section}\n\n"
        "SAFE ZONE MARGINS:\n"
        f"- Top: {margins['top']}px\n"
        f"- Bottom: {margins['bottom']}px\n"
        f"- Left: {margins['left']}px\n"
        f"- Right: {margins['right']}px\n"
        "Keep all text, logos and products inside these margins.\n\n"
        "REQUIREMENTS:\n"
        "1. Preserve brand elements, logos and product shots.\n"
        "2. Extend or rearrange the background so the image fills the whole frame.\n"
        "3. No letterbox bars, borders or blank padding.\n"
        "4. Do not add text that was not in the original."
    )


class AIRegenerateExecutor(TransformExecutor):
    """
    Delegate recomposition to the generative collaborator.

    Auth and malformed-request failures are final. Every other failure class
    is retried until `max_attempts` calls have been made, sleeping
    `attempt * retry_delay` between calls (timeouts use `timeout_retry_delay`
    as the base). Exhaustion raises RegenerationFailedError; no outer layer
    retries again.
    """

    method = ProcessingMethod.AI_REGENERATE

    def __init__(
        self,
        generator: ImageGenerator,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
        timeout_retry_delay: float = 5.0,
        request_timeout: float = 120.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.generator = generator
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.timeout_retry_delay = timeout_retry_delay
        self.request_timeout = request_timeout
        self._sleep = sleep

    def backoff_delay(self, attempt: int, error: GenerationError) -> float:
        base = self.timeout_retry_delay if error.code is GenerationErrorCode.TIMEOUT else self.retry_delay
        return attempt * base

    def execute(self, master, preset, content=None):
        prompt = build_regeneration_prompt(preset, content)
        aspect_ratio = nearest_supported_ratio(preset.width, preset.height)
        mime_type = mime_for_format(master.format)

        last_error: Optional[GenerationError] = None
        attempt = 0
        for attempt in range(1, self.max_attempts + 1):
            try:
                generated = self.generator.generate(
                    prompt=prompt,
                    image=master.data,
                    aspect_ratio=aspect_ratio,
                    timeout=self.request_timeout,
                    mime_type=mime_type,
                )
            except GenerationError as exc:
                last_error = exc
                if not exc.retryable:
                    logger.error("AI regeneration for %s failed without retry: %s", preset.id, exc)
                    break
                if attempt == self.max_attempts:
                    logger.error(
                        "AI regeneration for %s failed on final attempt %d/%d: %s",
                        preset.id,
                        attempt,
                        self.max_attempts,
                        exc,
                    )
                    break
                delay = self.backoff_delay(attempt, exc)
                logger.warning(
                    "AI regeneration for %s failed (attempt %d/%d): %s. Retrying in %.1fs",
                    preset.id,
                    attempt,
                    self.max_attempts,
                    exc,
                    delay,
                )
                self._sleep(delay)
                continue

            logger.info("AI regeneration for %s succeeded on attempt %d", preset.id, attempt)
            return self._fit_to_target(generated, preset)

        raise RegenerationFailedError(last_error, attempt)

    @staticmethod
    def _fit_to_target(generated: bytes, preset: FormatPreset) -> bytes:
        # The model picks its own output resolution; trim it to the exact frame.
        if image_size(generated) == (preset.width, preset.height):
            return generated
        return smart_crop(generated, preset.width, preset.height)


def build_executors(
    settings: ResizerSettings,
    generator: ImageGenerator | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[ProcessingMethod, TransformExecutor]:
    """Wire the three executors from settings."""
    generator = generator or GeminiHTTPClient.from_settings(settings)
    executors: Mapping[ProcessingMethod, TransformExecutor] = {
        ProcessingMethod.CROP: CropExecutor(),
        ProcessingMethod.PADDING: PaddingExecutor(settings.padding_color),
        ProcessingMethod.AI_REGENERATE: AIRegenerateExecutor(
            generator,
            max_attempts=settings.ai_max_attempts,
            retry_delay=settings.ai_retry_delay,
            timeout_retry_delay=settings.ai_timeout_retry_delay,
            request_timeout=settings.ai_request_timeout,
            sleep=sleep,
        ),
    }
    return dict(executors)
