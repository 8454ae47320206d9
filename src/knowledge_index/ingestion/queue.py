"""
Ingestion Queue

A bounded FIFO of ``IngestionJob`` plus the two pieces of shared job state:

- job id -> ``IngestionJobStatus`` (point lookups, listing, cleanup)
- document id -> id of that document's current job (cancel-by-document)

Enqueueing never blocks indefinitely: when the queue is at capacity the
caller gets ``EnqueueOutcome.QUEUE_FULL`` right away, or after at most
``enqueue_timeout`` seconds when a timeout is configured.

Thread Safety
-------------
Both maps are guarded by one RLock. Status objects are copied on read, so
callers never observe a status being mutated by a worker.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import timedelta
from threading import RLock
from typing import Dict, List, Optional

from ..storage.models import utcnow
from .models import (
    EnqueueOutcome,
    IngestionJob,
    IngestionJobState,
    IngestionJobStatus,
    IngestionPhase,
)

logger = logging.getLogger("kb.queue")


class JobStatusStore:
    def __init__(self) -> None:
        self._lock = RLock()
        self._statuses: Dict[str, IngestionJobStatus] = {}
        self._document_jobs: Dict[str, str] = {}

    def add(self, job: IngestionJob) -> Optional[str]:
        """Register a queued job; returns the document's previous job id."""
        with self._lock:
            previous = self._document_jobs.get(job.document_id)
            self._statuses[job.job_id] = IngestionJobStatus(
                job_id=job.job_id,
                document_id=job.document_id,
                batch_id=job.batch_id,
            )
            self._document_jobs[job.document_id] = job.job_id
            return previous

    def discard(self, job: IngestionJob, previous: Optional[str] = None) -> None:
        with self._lock:
            self._statuses.pop(job.job_id, None)
            if self._document_jobs.get(job.document_id) == job.job_id:
                if previous and previous in self._statuses:
                    self._document_jobs[job.document_id] = previous
                else:
                    del self._document_jobs[job.document_id]

    def get(self, job_id: str) -> Optional[IngestionJobStatus]:
        with self._lock:
            status = self._statuses.get(job_id)
            return replace(status) if status else None

    def list_statuses(self) -> List[IngestionJobStatus]:
        with self._lock:
            statuses = [replace(s) for s in self._statuses.values()]
        statuses.sort(key=lambda s: s.queued_at)
        return statuses

    def current_job(self, document_id: str) -> Optional[str]:
        with self._lock:
            return self._document_jobs.get(document_id)

    def start(self, job_id: str) -> bool:
        """
        Move a queued job to Processing. Returns False if the job is unknown
        or already terminal (e.g. cancelled while it waited).
        """
        with self._lock:
            status = self._statuses.get(job_id)
            if status is None or status.state != IngestionJobState.QUEUED:
                return False
            status.state = IngestionJobState.PROCESSING
            status.started_at = utcnow()
            return True

    def set_phase(self, job_id: str, phase: IngestionPhase, percent: float) -> Optional[IngestionJobStatus]:
        with self._lock:
            status = self._statuses.get(job_id)
            if status is None or status.state.is_terminal:
                return None
            status.current_phase = phase
            status.percent_complete = percent
            return replace(status)

    def finish(
        self,
        job_id: str,
        state: IngestionJobState,
        error_message: Optional[str] = None,
    ) -> Optional[IngestionJobStatus]:
        """
        Record the terminal state of a job. Only the first call for a job id
        has any effect; later calls return None.
        """
        with self._lock:
            status = self._statuses.get(job_id)
            if status is None or status.state.is_terminal:
                return None

            status.state = state
            status.error_message = error_message
            status.completed_at = utcnow()
            if state == IngestionJobState.COMPLETED:
                status.current_phase = IngestionPhase.COMPLETE
                status.percent_complete = 100.0

            if self._document_jobs.get(status.document_id) == job_id:
                del self._document_jobs[status.document_id]
            return replace(status)

    def cleanup(self, max_age: timedelta) -> int:
        """Forget terminal statuses completed more than ``max_age`` ago."""
        cutoff = utcnow() - max_age
        with self._lock:
            expired = [
                job_id
                for job_id, s in self._statuses.items()
                if s.state.is_terminal and s.completed_at and s.completed_at < cutoff
            ]
            for job_id in expired:
                del self._statuses[job_id]
        return len(expired)


class IngestionQueue:
    def __init__(self, capacity: int = 1000, enqueue_timeout: float = 0.0) -> None:
        self.capacity = capacity
        self._enqueue_timeout = enqueue_timeout
        self._queue: "asyncio.Queue[IngestionJob]" = asyncio.Queue(maxsize=capacity)
        self._lock = RLock()
        self._running: Dict[str, asyncio.Task] = {}
        self.statuses = JobStatusStore()

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    async def enqueue(self, job: IngestionJob) -> EnqueueOutcome:
        # Register first so a worker can never dequeue a job without a status.
        previous = self.statuses.add(job)
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            if self._enqueue_timeout <= 0 or not await self._put_with_timeout(job):
                self.statuses.discard(job, previous)
                logger.warning(
                    "Ingestion queue full (%d); rejected job %s for document %s",
                    self.capacity,
                    job.job_id,
                    job.document_id,
                )
                return EnqueueOutcome.QUEUE_FULL

        logger.info(
            "Job enqueued: %s for document %s (queue size: %d)",
            job.job_id,
            job.document_id,
            self._queue.qsize(),
        )
        return EnqueueOutcome.ACCEPTED

    async def _put_with_timeout(self, job: IngestionJob) -> bool:
        try:
            await asyncio.wait_for(self._queue.put(job), self._enqueue_timeout)
            return True
        except asyncio.TimeoutError:
            return False

    # ------------------------------------------------------------------
    # Consumers
    # ------------------------------------------------------------------

    async def dequeue(self) -> IngestionJob:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    def qsize(self) -> int:
        return self._queue.qsize()

    async def join(self) -> None:
        """Wait until every enqueued job has been picked up and finished."""
        await self._queue.join()

    def register_running(self, job_id: str, task: asyncio.Task) -> None:
        with self._lock:
            self._running[job_id] = task

    def unregister_running(self, job_id: str) -> None:
        with self._lock:
            self._running.pop(job_id, None)

    def running_tasks(self) -> List[asyncio.Task]:
        with self._lock:
            return list(self._running.values())

    # ------------------------------------------------------------------
    # Queries and cancellation
    # ------------------------------------------------------------------

    def get_status(self, job_id: str) -> Optional[IngestionJobStatus]:
        return self.statuses.get(job_id)

    def cancel_for_document(self, document_id: str) -> bool:
        """
        Cancel the current job of a document.

        A queued job is marked Cancelled and skipped when dequeued; a running
        job has its task cancelled. Returns False when there is nothing to
        cancel, including when the job finished just before this call.
        """
        with self._lock:
            job_id = self.statuses.current_job(document_id)
            if job_id is None:
                return False

            status = self.statuses.get(job_id)
            if status is None or status.state.is_terminal:
                return False

            if status.state == IngestionJobState.QUEUED:
                cancelled = self.statuses.finish(job_id, IngestionJobState.CANCELLED) is not None
            else:
                task = self._running.get(job_id)
                cancelled = task is not None and not task.done() and task.cancel()

        if cancelled:
            logger.info("Cancelled job %s for document %s", job_id, document_id)
        return cancelled
