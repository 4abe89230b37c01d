from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, PositiveInt


class JobStatus(str, Enum):
    """Lifecycle states for a resize job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class FormatStatus(str, Enum):
    """Lifecycle states for a single format within a job."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not FormatStatus.PROCESSING


class ProcessingMethod(str, Enum):
    """How a format was produced from the master image."""

    CROP = "crop"
    PADDING = "padding"
    AI_REGENERATE = "ai_regenerate"


class SafeZoneView(BaseModel):
    """Safe-zone margins as fractions of the target frame."""

    model_config = ConfigDict(from_attributes=True)

    top: float = Field(default=0.0, ge=0.0, lt=0.5)
    bottom: float = Field(default=0.0, ge=0.0, lt=0.5)
    left: float = Field(default=0.0, ge=0.0, lt=0.5)
    right: float = Field(default=0.0, ge=0.0, lt=0.5)


class FormatPresetView(BaseModel):
    """Public description of a target format preset."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Format identifier, e.g. 'social_story'.")
    platform: str = Field(..., description="Platform label, e.g. 'standard' or 'meta'.")
    width: PositiveInt = Field(..., description="Target width in pixels.")
    height: PositiveInt = Field(..., description="Target height in pixels.")
    ratio: str = Field(..., description="Human-readable ratio label, e.g. '9:16'.")
    safe_zone: SafeZoneView = Field(default_factory=SafeZoneView)
    description: str = ""
    usage: str = ""


class FormatListResponse(BaseModel):
    """Available presets plus the quick-selection packs."""

    formats: List[FormatPresetView] = Field(default_factory=list)
    packs: Dict[str, List[str]] = Field(default_factory=dict)
    total_count: int = Field(..., description="Number of presets returned.")


class JobCreateResponse(BaseModel):
    """Response returned when a new job is accepted."""

    job_id: str = Field(..., description="Server-generated unique job identifier.")
    status: JobStatus = Field(
        default=JobStatus.PENDING,
        description="Initial status of the job (always 'pending' on creation).",
    )
    formats_requested: List[str] = Field(
        default_factory=list,
        description="Distinct format identifiers that will be produced.",
    )
    master_aspect_ratio: str = Field(..., description="Reduced aspect ratio of the master, e.g. '16:9'.")
    created_at: str = Field(..., description="Job creation timestamp in ISO 8601 format (UTC).")


class JobSummary(BaseModel):
    """Lightweight view of a job suitable for listings."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Unique job identifier.")
    status: JobStatus = Field(..., description="Current lifecycle status for the job.")


class FormatResultView(BaseModel):
    """Per-format outcome exposed to pollers."""

    format_id: str
    platform: str
    width: PositiveInt
    height: PositiveInt
    status: FormatStatus
    method: ProcessingMethod | None = None
    result_url: str | None = None
    error_message: str | None = None
    processing_time_ms: int | None = None


class JobProgress(BaseModel):
    """Aggregate counters derived from the per-format results."""

    total: int
    completed: int
    failed: int
    pending: int
    percent: int = Field(..., ge=0, le=100)


class JobDetail(BaseModel):
    """Polling payload for a single job."""

    job_id: str
    status: JobStatus
    formats_requested: List[str] = Field(default_factory=list)
    created_at: str = Field(..., description="Job creation timestamp in ISO 8601 format (UTC).")
    completed_at: str | None = Field(
        default=None,
        description="Terminal transition timestamp in ISO 8601 format (UTC), if any.",
    )
    progress: JobProgress
    format_results: List[FormatResultView] = Field(
        default_factory=list,
        description="Unordered per-format results; key them by format_id.",
    )
