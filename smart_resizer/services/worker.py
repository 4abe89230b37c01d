from __future__ import annotations

import asyncio
import logging

from smart_resizer.services.jobs import JobStatusStore
from smart_resizer.services.orchestrator import BatchOrchestrator

logger = logging.getLogger(__name__)


class JobWorker:
    """
    In-process worker that processes queued jobs one at a time.

    Parallelism happens inside a job (across its formats), never across jobs
    within one worker.
    """

    def __init__(self, store: JobStatusStore, orchestrator: BatchOrchestrator) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="job-worker")
        logger.info("Job worker started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Job worker stopped")

    async def enqueue(self, job_id: str) -> None:
        await self._queue.put(job_id)
        logger.debug("Queued job %s (%d waiting)", job_id, self._queue.qsize())

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                await self.process(job_id)
            except Exception:
                logger.exception("Worker failed on job %s", job_id)
            finally:
                self._queue.task_done()

    async def process(self, job_id: str) -> None:
        job = await self.store.get_job(job_id)
        if job is None:
            logger.warning("Dropping queued job %s: not found", job_id)
            return
        if job.status.is_terminal:
            logger.info("Skipping job %s: already %s", job_id, job.status.value)
            return
        await self.orchestrator.process_job(job)
