"""
Runtime configuration for the resize orchestrator.

Every tunable policy constant lives here and is read from the environment
(optionally populated from a `.env` file by `smart_resizer.main`). Method
selection thresholds in particular are policy, not facts about images, so they
must never be hardcoded at call sites.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping

logger = logging.getLogger(__name__)

# Client-side polling conventions for consumers of the job API.
POLL_INTERVAL_SECONDS = 5
POLL_TIMEOUT_SECONDS = 600

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


class ConfigurationError(ValueError):
    """Raised when an environment value cannot be used as configuration."""


@dataclass(frozen=True, slots=True)
class ResizerSettings:
    # Method selection.
    crop_threshold: float = 0.2
    padding_threshold: float = 0.5
    # Intra-job parallelism (K).
    max_concurrency: int = 3
    # Generative collaborator retry policy.
    ai_max_attempts: int = 3
    ai_retry_delay: float = 2.0
    ai_timeout_retry_delay: float = 5.0
    ai_request_timeout: float = 120.0
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash-image"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    # Deterministic transforms.
    padding_color: str = "#FFFFFF"
    # Storage.
    storage_dir: Path = Path("storage/results")
    public_base_url: str = "http://localhost:8000/files"
    presets_file: Path | None = None

    def __post_init__(self) -> None:
        if not 0 < self.crop_threshold < self.padding_threshold:
            raise ConfigurationError(
                f"crop_threshold ({self.crop_threshold}) must be positive and below "
                f"padding_threshold ({self.padding_threshold})"
            )
        if self.max_concurrency < 1:
            raise ConfigurationError("max_concurrency must be at least 1")
        if self.ai_max_attempts < 1:
            raise ConfigurationError("ai_max_attempts must be at least 1")
        if self.ai_retry_delay < 0 or self.ai_timeout_retry_delay < 0:
            raise ConfigurationError("retry delays must not be negative")
        if self.ai_request_timeout <= 0:
            raise ConfigurationError("ai_request_timeout must be positive")
        if not _HEX_COLOR.match(self.padding_color):
            raise ConfigurationError(f"padding_color must look like #RRGGBB, got {self.padding_color!r}")

    def with_overrides(self, **changes) -> ResizerSettings:
        return replace(self, **changes)


def _read(env: Mapping[str, str], key: str, cast, default):
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except ValueError as exc:
        raise ConfigurationError(f"Invalid value for {key}: {raw!r}") from exc


def load_settings(env: Mapping[str, str] | None = None) -> ResizerSettings:
    """
    Build settings from environment variables.

    Args:
        env: Mapping to read from. Defaults to `os.environ`.

    Raises:
        ConfigurationError: if a value cannot be parsed or violates a constraint.
    """
    env = os.environ if env is None else env
    defaults = ResizerSettings()
    presets_file = env.get("RESIZER_PRESETS_FILE")

    settings = ResizerSettings(
        crop_threshold=_read(env, "RESIZER_CROP_THRESHOLD", float, defaults.crop_threshold),
        padding_threshold=_read(env, "RESIZER_PADDING_THRESHOLD", float, defaults.padding_threshold),
        max_concurrency=_read(env, "RESIZER_MAX_CONCURRENCY", int, defaults.max_concurrency),
        ai_max_attempts=_read(env, "RESIZER_AI_MAX_ATTEMPTS", int, defaults.ai_max_attempts),
        ai_retry_delay=_read(env, "RESIZER_AI_RETRY_DELAY", float, defaults.ai_retry_delay),
        ai_timeout_retry_delay=_read(
            env, "RESIZER_AI_TIMEOUT_RETRY_DELAY", float, defaults.ai_timeout_retry_delay
        ),
        ai_request_timeout=_read(env, "RESIZER_AI_REQUEST_TIMEOUT", float, defaults.ai_request_timeout),
        gemini_api_key=env.get("GEMINI_API_KEY") or None,
        gemini_model=env.get("RESIZER_GEMINI_MODEL") or defaults.gemini_model,
        padding_color=env.get("RESIZER_PADDING_COLOR") or defaults.padding_color,
        storage_dir=Path(env.get("RESIZER_STORAGE_DIR") or defaults.storage_dir),
        public_base_url=(env.get("RESIZER_PUBLIC_BASE_URL") or defaults.public_base_url).rstrip("/"),
        presets_file=Path(presets_file) if presets_file else None,
    )
    logger.info(
        "Resizer settings loaded: thresholds crop<%.3f padding<%.3f, K=%d, AI attempts=%d",
        settings.crop_threshold,
        settings.padding_threshold,
        settings.max_concurrency,
        settings.ai_max_attempts,
    )
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY not set. Formats routed to ai_regenerate will fail.")
    return settings
