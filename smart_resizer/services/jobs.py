from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Dict, Iterable, List, Tuple

from smart_resizer.api.v1.schemas import FormatStatus, JobProgress, JobStatus
from smart_resizer.models.jobs import DetectedContent, FormatResult, ResizeJob, new_id, utcnow
from smart_resizer.services.format_presets import FormatPresetRegistry, UnknownFormatError
from smart_resizer.services.image_processing import MasterImageError, read_master_image

logger = logging.getLogger(__name__)


class InvalidSubmissionError(ValueError):
    """Raised when a job submission is rejected before any work is dispatched."""


class JobNotFoundError(LookupError):
    """Raised when a job identifier is not known to the store."""


class JobStateError(RuntimeError):
    """Raised on an illegal job state transition, e.g. mutating a terminal job."""


class JobStatusStore:
    """
    Simple in-memory store for jobs and their per-format results.

    Jobs and results are copied on the way in and out, so callers only ever
    see committed state. Each format task writes only its own row, keyed by
    (job id, format id); a re-run of the same pair replaces that row.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, ResizeJob] = {}
        self._results: Dict[str, Dict[str, FormatResult]] = {}
        self._lock = threading.Lock()

    async def add_job(self, job: ResizeJob) -> ResizeJob:
        with self._lock:
            if job.id in self._jobs:
                raise JobStateError(f"Job {job.id} already exists")
            self._jobs[job.id] = replace(job)
            self._results[job.id] = {}
        return job

    async def get_job(self, job_id: str) -> ResizeJob | None:
        """Retrieve a job by its identifier, if it exists."""
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job is not None else None

    async def list_jobs(self) -> List[ResizeJob]:
        """Return all known jobs. Intended for debugging and admin tooling."""
        with self._lock:
            return [replace(job) for job in self._jobs.values()]

    def _require(self, job_id: str) -> ResizeJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def update_job_status(self, job_id: str, status: JobStatus) -> ResizeJob:
        """
        Move a job to `status`. Terminal statuses also stamp `completed_at`.

        Terminal jobs are frozen: any further transition raises JobStateError.
        """
        with self._lock:
            job = self._require(job_id)
            if job.status.is_terminal:
                raise JobStateError(f"Job {job_id} is already {job.status.value}")
            job.status = status
            if status.is_terminal:
                job.completed_at = utcnow()
            logger.debug("Job %s -> %s", job_id, status.value)
            return replace(job)

    async def set_detected_content(self, job_id: str, content: DetectedContent) -> None:
        with self._lock:
            self._require(job_id).detected_content = content

    async def save_format_result(self, result: FormatResult) -> None:
        with self._lock:
            self._require(result.job_id)
            self._results[result.job_id][result.format_id] = replace(result)

    async def get_format_result(self, job_id: str, format_id: str) -> FormatResult | None:
        with self._lock:
            result = self._results.get(job_id, {}).get(format_id)
            return replace(result) if result is not None else None

    async def list_format_results(self, job_id: str) -> List[FormatResult]:
        """Per-format results of a job; order carries no meaning."""
        with self._lock:
            self._require(job_id)
            return [replace(result) for result in self._results[job_id].values()]

    async def snapshot(self, job_id: str) -> Tuple[ResizeJob, List[FormatResult]]:
        """Job and its results read under one lock, for polling."""
        with self._lock:
            job = self._require(job_id)
            results = [replace(result) for result in self._results[job_id].values()]
            return replace(job), results


def compute_progress(job: ResizeJob, results: Iterable[FormatResult]) -> JobProgress:
    total = len(job.formats_requested)
    completed = failed = 0
    for result in results:
        if result.status is FormatStatus.COMPLETED:
            completed += 1
        elif result.status is FormatStatus.FAILED:
            failed += 1
    percent = round(completed / total * 100) if total else 0
    return JobProgress(
        total=total,
        completed=completed,
        failed=failed,
        pending=total - completed - failed,
        percent=percent,
    )


async def submit_job(
    store: JobStatusStore,
    registry: FormatPresetRegistry,
    *,
    client_id: str,
    user_id: str,
    master_bytes: bytes,
    format_ids: Iterable[str],
    job_id: str | None = None,
) -> ResizeJob:
    """
    Validate a submission and persist it as a pending job.

    Input problems (undecodable image, unknown or missing formats) reject the
    whole submission here, before any format work exists.
    """
    requested = list(format_ids)
    if not requested:
        raise InvalidSubmissionError("At least one format is required.")
    try:
        formats = registry.resolve(requested)
    except UnknownFormatError as exc:
        raise InvalidSubmissionError(str(exc)) from exc
    try:
        master = read_master_image(master_bytes)
    except MasterImageError as exc:
        raise InvalidSubmissionError(str(exc)) from exc

    job = ResizeJob(
        id=job_id or new_id(),
        client_id=client_id,
        user_id=user_id,
        master=master,
        formats_requested=formats,
    )
    await store.add_job(job)
    logger.info(
        "Accepted job %s: %dx%d %s master, %d formats",
        job.id,
        master.width,
        master.height,
        master.format,
        len(formats),
    )
    return job
