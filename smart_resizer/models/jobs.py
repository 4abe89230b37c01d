from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List
from uuid import uuid4

from smart_resizer.api.v1.schemas import FormatStatus, JobStatus, ProcessingMethod


def utcnow() -> datetime:
    """Return an explicit, timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


@dataclass(frozen=True, slots=True)
class MasterImage:
    """
    The uploaded source creative plus metadata derived from it once.

    Instances are shared read-only between every format task of a job, so the
    dataclass is frozen and holds immutable `bytes`.
    """

    data: bytes = field(repr=False)
    width: int
    height: int
    # Encoded container format as reported by Pillow, e.g. "PNG" or "JPEG".
    format: str
    # Reduced-fraction ratio, e.g. "16:9" for 1920x1080.
    aspect_ratio: str

    @property
    def ratio(self) -> float:
        return self.width / self.height

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(frozen=True, slots=True)
class SafeZone:
    """
    Margins inside the target frame where text and logos must stay.

    Values are fractions of the target dimension in [0, 0.5).
    """

    top: float = 0.0
    bottom: float = 0.0
    left: float = 0.0
    right: float = 0.0

    @classmethod
    def uniform(cls, value: float) -> SafeZone:
        return cls(top=value, bottom=value, left=value, right=value)


@dataclass(frozen=True, slots=True)
class FormatPreset:
    """Immutable target format specification from the preset registry."""

    id: str
    platform: str
    width: int
    height: int
    safe_zone: SafeZone = field(default_factory=SafeZone)
    ratio: str = ""
    description: str = ""
    usage: str = ""

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height


@dataclass(slots=True)
class DetectedContent:
    """
    Text and colour information extracted from the master image.

    Only the AI regeneration prompt consumes this; deterministic transforms
    ignore it.
    """

    texts: List[str] = field(default_factory=list)
    # Dominant colours as "#RRGGBB", most frequent first.
    color_palette: List[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class StoredObject:
    """Location of an artifact written to durable storage."""

    path: str
    public_url: str


@dataclass(slots=True)
class ResizeJob:
    """
    Internal representation of a multi-format resize job.

    This is intentionally separate from API schemas so we can evolve internal
    fields without breaking the polling contract.
    """

    id: str
    client_id: str
    user_id: str
    master: MasterImage
    # Distinct format identifiers in first-requested order.
    formats_requested: List[str]
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    detected_content: DetectedContent | None = None


@dataclass(slots=True)
class FormatResult:
    """
    Outcome of one (job, format) pair.

    Platform and dimensions are copied from the preset when the row is created
    so the record stays stable even if the registry changes later.
    """

    job_id: str
    format_id: str
    platform: str
    width: int
    height: int
    id: str = field(default_factory=new_id)
    status: FormatStatus = FormatStatus.PROCESSING
    method: ProcessingMethod | None = None
    location: StoredObject | None = None
    error_message: str | None = None
    processing_time_ms: int | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def start(cls, job_id: str, preset: FormatPreset) -> FormatResult:
        return cls(
            job_id=job_id,
            format_id=preset.id,
            platform=preset.platform,
            width=preset.width,
            height=preset.height,
        )

    def complete(self, method: ProcessingMethod, location: StoredObject, elapsed_ms: int) -> None:
        self.status = FormatStatus.COMPLETED
        self.method = method
        self.location = location
        self.error_message = None
        self.processing_time_ms = elapsed_ms
        self.updated_at = utcnow()

    def fail(self, message: str, elapsed_ms: int, method: ProcessingMethod | None = None) -> None:
        self.status = FormatStatus.FAILED
        self.method = method
        self.location = None
        self.error_message = message
        self.processing_time_ms = elapsed_ms
        self.updated_at = utcnow()
