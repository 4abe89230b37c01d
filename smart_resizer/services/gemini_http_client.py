"""
Direct HTTP client for the Gemini image model.

Talks to the `generateContent` REST endpoint with `requests`. One call is one
attempt: this module only classifies failures, while retry and backoff policy
belongs to the AI regenerate executor.
"""

from __future__ import annotations

import base64
import logging
import math
from enum import Enum
from typing import Any, Optional

import requests

from smart_resizer.config import ResizerSettings

logger = logging.getLogger(__name__)

_MIME_BY_FORMAT = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
}


def mime_for_format(image_format: str) -> str:
    return _MIME_BY_FORMAT.get(image_format.upper(), "image/png")


# Aspect ratios accepted by `imageConfig.aspectRatio`; anything else is a 400.
SUPPORTED_ASPECT_RATIOS = ("1:1", "2:3", "3:2", "3:4", "4:3", "4:5", "5:4", "9:16", "16:9", "21:9")


def nearest_supported_ratio(width: int, height: int) -> str:
    """Closest supported aspect ratio to width:height, compared on a log scale."""
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid dimensions {width}x{height}")
    target = math.log(width / height)

    def distance(label: str) -> float:
        w, h = (int(part) for part in label.split(":"))
        return abs(math.log(w / h) - target)

    return min(SUPPORTED_ASPECT_RATIOS, key=distance)


class GenerationErrorCode(str, Enum):
    AUTH = "auth"
    MALFORMED_REQUEST = "malformed_request"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    SERVER_ERROR = "server_error"

    @property
    def retryable(self) -> bool:
        return self not in (GenerationErrorCode.AUTH, GenerationErrorCode.MALFORMED_REQUEST)


class GenerationError(RuntimeError):
    """Typed failure from the generative collaborator."""

    def __init__(self, code: GenerationErrorCode, message: str, http_status: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status

    @property
    def retryable(self) -> bool:
        return self.code.retryable

    def __str__(self) -> str:
        status = f" (HTTP {self.http_status})" if self.http_status else ""
        return f"[{self.code.value}] {self.message}{status}"


def classify_status(status_code: int) -> GenerationErrorCode:
    if status_code in (401, 403):
        return GenerationErrorCode.AUTH
    if status_code == 429:
        return GenerationErrorCode.RATE_LIMITED
    if status_code == 408:
        return GenerationErrorCode.TIMEOUT
    if 400 <= status_code < 500:
        return GenerationErrorCode.MALFORMED_REQUEST
    return GenerationErrorCode.SERVER_ERROR


class GeminiHTTPClient:
    """
    Minimal Gemini image client.

    `generate()` sends a text prompt plus one reference image and returns the
    bytes of the first image part in the response.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gemini-2.5-flash-image",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        session: requests.Session | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._http = session or requests

    @classmethod
    def from_settings(cls, settings: ResizerSettings) -> GeminiHTTPClient:
        return cls(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
        )

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _build_payload(self, prompt: str, image: bytes, mime_type: str, aspect_ratio: str) -> dict[str, Any]:
        return {
            "contents": [
                {
                    "parts": [
                        {"text": prompt},
                        {
                            "inline_data": {
                                "mime_type": mime_type,
                                "data": base64.b64encode(image).decode("utf-8"),
                            }
                        },
                    ]
                }
            ],
            "generationConfig": {
                "responseModalities": ["IMAGE"],
                "imageConfig": {"aspectRatio": aspect_ratio},
            },
        }

    def generate(
        self,
        prompt: str,
        image: bytes,
        aspect_ratio: str,
        timeout: float,
        mime_type: str = "image/png",
    ) -> bytes:
        """
        Run one generation request.

        Raises:
            GenerationError: classified failure; see `GenerationErrorCode`.
        """
        if not self.is_available():
            raise GenerationError(GenerationErrorCode.AUTH, "GEMINI_API_KEY is not configured")

        url = f"{self.base_url}/models/{self.model}:generateContent"
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}
        payload = self._build_payload(prompt, image, mime_type, aspect_ratio)

        logger.info("Calling Gemini %s (aspect ratio %s, prompt %d chars)", self.model, aspect_ratio, len(prompt))
        try:
            response = self._http.post(url, headers=headers, json=payload, timeout=timeout)
        except requests.exceptions.Timeout as exc:
            raise GenerationError(GenerationErrorCode.TIMEOUT, f"Request timed out after {timeout}s") from exc
        except requests.exceptions.RequestException as exc:
            raise GenerationError(GenerationErrorCode.SERVER_ERROR, f"Request failed: {exc}") from exc

        if response.status_code >= 400:
            raise GenerationError(
                classify_status(response.status_code),
                self._error_detail(response),
                http_status=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise GenerationError(
                GenerationErrorCode.SERVER_ERROR,
                "Response body is not valid JSON",
                http_status=response.status_code,
            ) from exc
        return self._extract_image(body)

    @staticmethod
    def _error_detail(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200] or f"HTTP {response.status_code}"
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        return str(body)[:200]

    @staticmethod
    def _extract_image(body: dict[str, Any]) -> bytes:
        candidates = body.get("candidates") or []
        if not candidates:
            raise GenerationError(GenerationErrorCode.SERVER_ERROR, "No image candidates in response")

        parts = (candidates[0].get("content") or {}).get("parts") or []
        for part in parts:
            # The REST API has used both snake_case and camelCase keys.
            inline = part.get("inline_data") or part.get("inlineData")
            if inline and inline.get("data"):
                return base64.b64decode(inline["data"])

        finish_reason = candidates[0].get("finishReason", "unknown")
        raise GenerationError(
            GenerationErrorCode.SERVER_ERROR,
            f"No image data found in response (finish reason: {finish_reason})",
        )
