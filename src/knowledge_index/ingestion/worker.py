"""
Ingestion Worker Pool

A fixed number of worker coroutines consume the ``IngestionQueue``. Each job
runs in its own task so it can be cancelled on its own (cancel-by-document)
while the worker that picked it up keeps going. Stopping the pool cancels
every worker and every running job.

Terminal job states:

- Completed: the pipeline reported success
- Failed: the pipeline reported failure, or the content could not be read
- Cancelled: the job task was cancelled, or the job was cancelled while queued
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from ..storage.base import ContentSource
from ..storage.models import content_key
from .models import (
    IngestionJob,
    IngestionJobState,
    IngestionJobStatus,
    IngestionPhase,
    IngestionResult,
    ProgressUpdate,
)
from .pipeline import IngestionPipeline
from .progress import LoggingProgressObserver, ProgressDispatcher
from .queue import IngestionQueue

logger = logging.getLogger("kb.worker")


def _update_from(status: IngestionJobStatus) -> ProgressUpdate:
    return ProgressUpdate(
        job_id=status.job_id,
        document_id=status.document_id,
        state=status.state,
        current_phase=status.current_phase,
        percent_complete=status.percent_complete,
        error_message=status.error_message,
        started_at=status.started_at,
        completed_at=status.completed_at,
    )


class WorkerPool:
    def __init__(
        self,
        queue: IngestionQueue,
        pipeline: IngestionPipeline,
        content_source: ContentSource,
        worker_count: int = 4,
        progress: Optional[ProgressDispatcher] = None,
    ) -> None:
        self._queue = queue
        self._pipeline = pipeline
        self._content = content_source
        self._worker_count = worker_count
        self._progress = progress or ProgressDispatcher(LoggingProgressObserver())
        self._workers: List[asyncio.Task] = []
        self._shutdown = asyncio.Event()

    @property
    def running(self) -> bool:
        return bool(self._workers) and not self._shutdown.is_set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._workers:
            return

        self._shutdown.clear()
        self._workers = [
            asyncio.create_task(self._worker_loop(n), name=f"ingestion-worker-{n}")
            for n in range(self._worker_count)
        ]
        logger.info("Started %d ingestion workers", self._worker_count)

    async def stop(self) -> None:
        """
        Signal shutdown, cancel running jobs and workers, and wait for them.
        """
        if not self._workers:
            return

        self._shutdown.set()
        for task in self._queue.running_tasks():
            task.cancel()
        for worker in self._workers:
            worker.cancel()

        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        await self._progress.drain()
        logger.info("Ingestion workers stopped")

    # ------------------------------------------------------------------
    # Worker loop
    # ------------------------------------------------------------------

    async def _worker_loop(self, number: int) -> None:
        logger.debug("Ingestion worker %d started", number)

        while not self._shutdown.is_set():
            job = await self._queue.dequeue()
            try:
                await self._run(job)
            except asyncio.CancelledError:
                logger.debug("Ingestion worker %d cancelled", number)
                raise
            except Exception:
                # Never let one job take the worker down.
                logger.exception("Unexpected error running job %s", job.job_id)
            finally:
                self._queue.task_done()

    async def _run(self, job: IngestionJob) -> None:
        if not self._queue.statuses.start(job.job_id):
            logger.info("Skipping job %s (cancelled before start)", job.job_id)
            return

        self._publish(self._queue.statuses.get(job.job_id))

        task = asyncio.create_task(self._execute(job), name=f"ingestion-job-{job.job_id}")
        self._queue.register_running(job.job_id, task)
        try:
            # wait() leaves the job task alone if this worker is cancelled.
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            self._finish(job, IngestionJobState.CANCELLED, "Shutdown")
            raise
        finally:
            self._queue.unregister_running(job.job_id)

        if task.cancelled():
            self._finish(job, IngestionJobState.CANCELLED)
            return

        exc = task.exception()
        if exc is not None:
            self._finish(job, IngestionJobState.FAILED, str(exc) or type(exc).__name__)
            raise exc

        result: IngestionResult = task.result()
        if result.success:
            self._finish(job, IngestionJobState.COMPLETED)
        else:
            self._finish(job, IngestionJobState.FAILED, result.error_message)

    async def _execute(self, job: IngestionJob) -> IngestionResult:
        def on_phase(phase: IngestionPhase, percent: float) -> None:
            self._publish(self._queue.statuses.set_phase(job.job_id, phase, percent))

        try:
            stream = await self._content.open(content_key(job.options.scope_id, job.path))
        except Exception as exc:
            message = f"Could not read content: {exc}"
            logger.error("Job %s: %s", job.job_id, message)
            await self._pipeline.mark_failed(job.document_id, message)
            return IngestionResult(document_id=job.document_id, success=False, error_message=message)

        try:
            return await self._pipeline.ingest(
                stream,
                document_id=job.document_id,
                path=job.path,
                options=job.options,
                on_phase=on_phase,
            )
        finally:
            stream.close()

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    def _finish(
        self,
        job: IngestionJob,
        state: IngestionJobState,
        error_message: Optional[str] = None,
    ) -> None:
        status = self._queue.statuses.finish(job.job_id, state, error_message)
        if status is None:
            return

        logger.info("Job %s for document %s: %s", job.job_id, job.document_id, state.value)
        self._publish(status)

    def _publish(self, status: Optional[IngestionJobStatus]) -> None:
        if status is not None:
            self._progress.publish(_update_from(status))
