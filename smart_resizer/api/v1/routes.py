import json
import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status

from smart_resizer.api.v1.schemas import (
    FormatListResponse,
    FormatPresetView,
    FormatResultView,
    JobCreateResponse,
    JobDetail,
    JobSummary,
)
from smart_resizer.models.jobs import FormatResult, ResizeJob
from smart_resizer.services.format_presets import FormatPresetRegistry
from smart_resizer.services.jobs import (
    InvalidSubmissionError,
    JobNotFoundError,
    JobStatusStore,
    compute_progress,
    submit_job,
)
from smart_resizer.services.worker import JobWorker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1")


def get_store(request: Request) -> JobStatusStore:
    return request.app.state.job_store


def get_registry(request: Request) -> FormatPresetRegistry:
    return request.app.state.registry


def get_worker(request: Request) -> JobWorker:
    return request.app.state.worker


def _result_view(result: FormatResult) -> FormatResultView:
    return FormatResultView(
        format_id=result.format_id,
        platform=result.platform,
        width=result.width,
        height=result.height,
        status=result.status,
        method=result.method,
        result_url=result.location.public_url if result.location else None,
        error_message=result.error_message,
        processing_time_ms=result.processing_time_ms,
    )


def build_job_detail(job: ResizeJob, results: list[FormatResult]) -> JobDetail:
    return JobDetail(
        job_id=job.id,
        status=job.status,
        formats_requested=job.formats_requested,
        created_at=job.created_at.isoformat(),
        completed_at=job.completed_at.isoformat() if job.completed_at else None,
        progress=compute_progress(job, results),
        format_results=[_result_view(result) for result in results],
    )


@router.get("/health", tags=["health"])
async def health_check() -> dict:
    """API v1 health check endpoint."""
    return {"status": "ok", "api_version": "v1"}


@router.get(
    "/formats",
    response_model=FormatListResponse,
    tags=["formats"],
    summary="List available target formats",
)
async def list_formats(
    platform: str | None = Query(default=None, description="Only return presets for this platform."),
    registry: FormatPresetRegistry = Depends(get_registry),
) -> FormatListResponse:
    presets = registry.by_platform(platform) if platform else registry.presets()
    return FormatListResponse(
        formats=[FormatPresetView.model_validate(preset) for preset in presets],
        packs={name: list(ids) for name, ids in registry.packs.items()},
        total_count=len(presets),
    )


@router.post(
    "/jobs",
    response_model=JobCreateResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["jobs"],
    summary="Create a new multi-format resize job",
)
async def create_job(
    master_image: UploadFile = File(..., description="Master creative (PNG, JPEG, WEBP, BMP or TIFF)."),
    formats: str = Form(
        ...,
        description='JSON-encoded list of format identifiers, e.g. ["social_square","social_story"].',
    ),
    client_id: str = Form(..., min_length=1),
    user_id: str = Form(..., min_length=1),
    store: JobStatusStore = Depends(get_store),
    registry: FormatPresetRegistry = Depends(get_registry),
    worker: JobWorker = Depends(get_worker),
) -> JobCreateResponse:
    """
    Accept a job and queue it for background processing.

    The response is returned as soon as the submission has been validated;
    poll `GET /api/v1/jobs/{job_id}` for progress and results.
    """
    try:
        format_ids = json.loads(formats)
    except json.JSONDecodeError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid `formats` payload. Expected a JSON list of format identifiers.",
        ) from exc
    if not isinstance(format_ids, list) or not all(isinstance(item, str) for item in format_ids):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid `formats` payload. Expected a JSON list of format identifiers.",
        )

    data = await master_image.read()
    try:
        job = await submit_job(
            store,
            registry,
            client_id=client_id,
            user_id=user_id,
            master_bytes=data,
            format_ids=format_ids,
        )
    except InvalidSubmissionError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    await worker.enqueue(job.id)
    return JobCreateResponse(
        job_id=job.id,
        status=job.status,
        formats_requested=job.formats_requested,
        master_aspect_ratio=job.master.aspect_ratio,
        created_at=job.created_at.isoformat(),
    )


@router.get(
    "/jobs/{job_id}",
    response_model=JobDetail,
    tags=["jobs"],
    summary="Get status and results for a job",
)
async def get_job(job_id: str, store: JobStatusStore = Depends(get_store)) -> JobDetail:
    """
    Polling endpoint. Partial results are visible while the job is processing.

    Clients are expected to poll every few seconds until the status is
    `completed` or `failed`.
    """
    try:
        job, results = await store.snapshot(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found.") from exc
    return build_job_detail(job, results)


@router.get(
    "/jobs",
    response_model=list[JobSummary],
    tags=["jobs"],
    summary="List jobs (development use)",
)
async def list_jobs(store: JobStatusStore = Depends(get_store)) -> list[JobSummary]:
    """
    List all known jobs.

    Intended primarily for development and debugging; in a real multi-tenant
    system, this would be scoped to the caller.
    """
    jobs = await store.list_jobs()
    return [JobSummary.model_validate(job) for job in jobs]
