"""Cleanup scheduler - periodic removal of stale instances.

Every interval, instances in STOPPED or ERROR whose last state change is
older than auto_cleanup_hours are deleted through Orchestrator.delete(),
the same path a client uses. RUNNING instances are never touched.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from openzt_manager.core.errors import ManagerError, NotFoundError
from openzt_manager.core.models import Instance, InstanceState, utc_now
from openzt_manager.core.orchestrator import Orchestrator
from openzt_manager.logging_schema import LogEvent
from openzt_manager.metrics import CLEANUP_DELETED_TOTAL

logger = logging.getLogger(__name__)

_RECLAIMABLE = (InstanceState.STOPPED, InstanceState.ERROR)


class CleanupScheduler:
    """Background task deleting stopped/errored instances past the threshold."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        auto_cleanup_hours: float,
        interval_seconds: float,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._orchestrator = orchestrator
        self._threshold = timedelta(hours=auto_cleanup_hours)
        self._interval = interval_seconds
        self._clock = clock
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _candidates(self, instances: list[Instance]) -> list[Instance]:
        cutoff = self._clock() - self._threshold
        return [
            i
            for i in instances
            if i.state in _RECLAIMABLE and i.last_state_change_at < cutoff
        ]

    async def tick(self) -> int:
        """Run one scan. Returns the number of instances deleted."""
        # list() reconciles, so freshly exited containers become candidates
        # once they have aged past the threshold
        candidates = self._candidates(await self._orchestrator.list())
        if not candidates:
            return 0

        logger.info(
            "Cleanup scan found %d stale instances",
            len(candidates),
            extra={"event": LogEvent.CLEANUP_STARTED, "count": len(candidates)},
        )

        deleted = 0
        failed = 0
        for instance in candidates:
            try:
                await self._orchestrator.delete(instance.id)
            except NotFoundError:
                # Deleted concurrently by a client
                continue
            except Exception as e:
                error = e.message if isinstance(e, ManagerError) else str(e)
                logger.warning(
                    "Cleanup failed for instance %s: %s",
                    instance.id,
                    error,
                    extra={
                        "event": LogEvent.CLEANUP_FAILED,
                        "instance_id": instance.id,
                        "error": error,
                    },
                )
                failed += 1
                continue
            deleted += 1
            CLEANUP_DELETED_TOTAL.inc()

        logger.info(
            "Cleanup scan completed",
            extra={
                "event": LogEvent.CLEANUP_COMPLETED,
                "deleted": deleted,
                "failed": failed,
            },
        )
        return deleted

    async def run(self) -> None:
        """Scan every interval until stop() is called."""
        logger.info(
            "Cleanup scheduler started",
            extra={
                "event": LogEvent.APP_STARTED,
                "interval_seconds": self._interval,
                "threshold_hours": self._threshold.total_seconds() / 3600,
            },
        )
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(
                    "Error in cleanup tick: %s",
                    e,
                    extra={"event": LogEvent.CLEANUP_FAILED},
                )

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Cleanup scheduler stopped", extra={"event": LogEvent.APP_STOPPED})

    def start(self) -> asyncio.Task[None]:
        """Launch run() as a background task."""
        if self._task is not None and not self._task.done():
            return self._task
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run(), name="openzt-cleanup")
        return self._task

    async def stop(self) -> None:
        """Signal the loop to exit and wait for it.

        A scan in progress finishes its current delete before the loop exits.
        """
        self._stop_event.set()
        if self._task is None:
            return
        try:
            await self._task
        finally:
            self._task = None
