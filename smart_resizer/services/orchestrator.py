"""
Job orchestration: fan a job out into per-format tasks and aggregate them.

A job's formats run concurrently, at most `max_concurrency` at a time. Each
format task owns exactly one FormatResult row and never raises: whatever goes
wrong inside it is recorded on that row, so sibling formats are unaffected.
The job's final status is derived only from the complete set of results.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Iterable, List, Mapping

from smart_resizer.api.v1.schemas import FormatStatus, JobStatus, ProcessingMethod
from smart_resizer.config import ResizerSettings
from smart_resizer.models.jobs import DetectedContent, FormatPreset, FormatResult, MasterImage, ResizeJob
from smart_resizer.services.content_analysis import analyze_master
from smart_resizer.services.executors import ImageGenerator, TransformExecutor, build_executors
from smart_resizer.services.format_presets import FormatPresetRegistry
from smart_resizer.services.jobs import JobNotFoundError, JobStatusStore
from smart_resizer.services.method_selector import MethodSelector
from smart_resizer.services.storage import LocalObjectStorage, ObjectStorage, result_path

logger = logging.getLogger(__name__)

Analyzer = Callable[[MasterImage], DetectedContent]


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def aggregate_status(results: Iterable[FormatResult], expected: int) -> JobStatus:
    """A job is completed only if every requested format completed."""
    results = list(results)
    if len(results) == expected and all(r.status is FormatStatus.COMPLETED for r in results):
        return JobStatus.COMPLETED
    return JobStatus.FAILED


class FormatTaskRunner:
    """Process one (job, preset) pair end to end."""

    def __init__(
        self,
        store: JobStatusStore,
        selector: MethodSelector,
        executors: Mapping[ProcessingMethod, TransformExecutor],
        storage: ObjectStorage,
    ) -> None:
        missing = [m.value for m in ProcessingMethod if m not in executors]
        if missing:
            raise ValueError(f"No executor registered for: {', '.join(missing)}")
        self.store = store
        self.selector = selector
        self.executors = dict(executors)
        self.storage = storage

    async def run(
        self,
        job: ResizeJob,
        preset: FormatPreset,
        content: DetectedContent | None = None,
    ) -> FormatResult:
        started = time.monotonic()
        result = FormatResult.start(job.id, preset)
        await self.store.save_format_result(result)

        method: ProcessingMethod | None = None
        try:
            method = self.selector.select(job.master.width, job.master.height, preset)
            executor = self.executors[method]
            logger.info("Job %s: processing %s via %s", job.id, preset.id, method.value)

            output = await asyncio.to_thread(executor.execute, job.master, preset, content)
            stored = await asyncio.to_thread(self.storage.put, result_path(job.id, preset.id), output)
        except Exception as exc:  # noqa: BLE001
            elapsed = _elapsed_ms(started)
            logger.error("Job %s: format %s failed after %dms: %s", job.id, preset.id, elapsed, exc)
            result.fail(str(exc) or exc.__class__.__name__, elapsed, method=method)
        else:
            elapsed = _elapsed_ms(started)
            logger.info("Job %s: format %s completed in %dms", job.id, preset.id, elapsed)
            result.complete(method, stored, elapsed)

        await self.store.save_format_result(result)
        return result


class BatchOrchestrator:
    """
    Drive a pending job to a terminal status.

    Content analysis runs once per job before fan-out and its result is shared
    read-only by every format task.
    """

    def __init__(
        self,
        store: JobStatusStore,
        registry: FormatPresetRegistry,
        runner: FormatTaskRunner,
        max_concurrency: int = 3,
        analyzer: Analyzer | None = analyze_master,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.store = store
        self.registry = registry
        self.runner = runner
        self.max_concurrency = max_concurrency
        self.analyzer = analyzer

    async def _analyze(self, job: ResizeJob) -> DetectedContent:
        if self.analyzer is None:
            return DetectedContent()
        try:
            content = await asyncio.to_thread(self.analyzer, job.master)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Job %s: content analysis failed, continuing without it: %s", job.id, exc)
            return DetectedContent()
        await self.store.set_detected_content(job.id, content)
        return content

    async def process_job(self, job: ResizeJob) -> JobStatus:
        """
        Run every requested format and return the job's terminal status.

        Never raises for per-format failures. An unexpected error in the
        orchestration itself marks the job failed.
        """
        started = time.monotonic()
        current = await self.store.get_job(job.id)
        if current is None:
            raise JobNotFoundError(job.id)
        if current.status.is_terminal:
            logger.warning("Job %s is already %s; not reprocessing", job.id, current.status.value)
            return current.status

        try:
            await self.store.update_job_status(job.id, JobStatus.PROCESSING)
            presets = [self.registry.get(format_id) for format_id in job.formats_requested]
            content = await self._analyze(job)

            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def bounded(preset: FormatPreset) -> FormatResult:
                async with semaphore:
                    return await self.runner.run(job, preset, content)

            results: List[FormatResult] = await asyncio.gather(*(bounded(p) for p in presets))
            status = aggregate_status(results, expected=len(presets))
        except Exception:
            logger.exception("Job %s: orchestration failed", job.id)
            status = JobStatus.FAILED

        await self.store.update_job_status(job.id, status)
        logger.info(
            "Job %s finished as %s in %dms (%d formats)",
            job.id,
            status.value,
            _elapsed_ms(started),
            len(job.formats_requested),
        )
        return status


def build_orchestrator(
    settings: ResizerSettings,
    store: JobStatusStore,
    registry: FormatPresetRegistry,
    storage: ObjectStorage | None = None,
    generator: ImageGenerator | None = None,
    analyzer: Analyzer | None = analyze_master,
) -> BatchOrchestrator:
    """Wire selector, executors, storage and runner from settings."""
    storage = storage or LocalObjectStorage(settings.storage_dir, settings.public_base_url)
    runner = FormatTaskRunner(
        store=store,
        selector=MethodSelector.from_settings(settings),
        executors=build_executors(settings, generator=generator),
        storage=storage,
    )
    return BatchOrchestrator(
        store=store,
        registry=registry,
        runner=runner,
        max_concurrency=settings.max_concurrency,
        analyzer=analyzer,
    )
