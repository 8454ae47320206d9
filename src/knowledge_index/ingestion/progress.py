"""
Progress Reporting

Workers push ``ProgressUpdate`` snapshots to a ``ProgressObserver``. Delivery
is best-effort: every update is sent from its own detached task with a
timeout, and observer errors are logged and dropped. A slow or broken
observer never holds up ingestion.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, Set

from .models import ProgressUpdate

logger = logging.getLogger("kb.progress")


class ProgressObserver(Protocol):
    async def publish(self, update: ProgressUpdate) -> None: ...


class LoggingProgressObserver:
    """Default observer: writes each update to the log at DEBUG level."""

    async def publish(self, update: ProgressUpdate) -> None:
        logger.debug(
            "Job %s [%s] %s %.0f%%",
            update.job_id,
            update.state.value,
            update.current_phase.value if update.current_phase else "-",
            update.percent_complete,
        )


class ProgressDispatcher:
    def __init__(self, observer: ProgressObserver, timeout: float = 2.0) -> None:
        self._observer = observer
        self._timeout = timeout
        self._pending: Set[asyncio.Task] = set()

    def publish(self, update: ProgressUpdate) -> None:
        """
        Schedule delivery and return immediately. Must be called from within
        a running event loop.
        """
        task = asyncio.create_task(self._deliver(update))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, update: ProgressUpdate) -> None:
        try:
            await asyncio.wait_for(self._observer.publish(update), self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Progress observer timed out for job %s", update.job_id)
        except Exception as exc:
            logger.warning("Progress observer failed for job %s: %s", update.job_id, exc)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (each bounded by the timeout)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
