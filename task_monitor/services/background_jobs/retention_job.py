"""
Retention Job Scheduler

Background job that periodically deletes jobs in terminal states
(done and/or failed) together with their tasks and dependency edges.

Key Features:
- First sweep shortly after start, then one sweep per configured interval
- Completed and failed branches run independently; one failing never
  blocks the other or stops the scheduler
- Manual trigger sharing the same sweep routine and result shape
- Sweeps are serialized, so a manual trigger never overlaps a scheduled sweep
- stop() prevents future sweeps but lets an in-flight sweep finish

Usage:
    scheduler = RetentionScheduler(record_service, settings)

    # Start the scheduler (application startup)
    scheduler.start()

    # Manually trigger a sweep
    result = await scheduler.trigger_manual_sweep()

    # Stop the scheduler (application shutdown)
    await scheduler.stop()
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from task_monitor.core.config import Settings, settings as default_settings
from task_monitor.services.record_service import RecordService

logger = logging.getLogger(__name__)

SCHEDULED = "scheduled"
MANUAL = "manual"


class RetentionScheduler:
    """Stopped/Running state machine around a single cancellable asyncio task."""

    def __init__(self, record_service: RecordService, settings: Settings = default_settings):
        self.record_service = record_service
        self.enabled = settings.AUTO_CLEAR_ENABLED
        self.interval_seconds = settings.AUTO_CLEAR_INTERVAL_SECONDS
        self.initial_delay_seconds = settings.AUTO_CLEAR_INITIAL_DELAY_SECONDS
        self.clear_completed = settings.AUTO_CLEAR_COMPLETED
        self.clear_failed = settings.AUTO_CLEAR_FAILED

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._sweep_lock = asyncio.Lock()
        self._next_run_at: Optional[datetime] = None
        self._last_run_at: Optional[datetime] = None
        self._last_result: Optional[Dict[str, Any]] = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """
        Start the scheduler.

        Must be called from a running event loop (e.g. application startup).
        Does nothing when auto-clear is disabled or the scheduler is already running.
        """
        if not self.enabled:
            logger.info("Retention scheduler is disabled (AUTO_CLEAR_ENABLED=False)")
            return

        if self._running:
            logger.warning("Retention scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._scheduler_loop())
        logger.info(
            f"Retention scheduler started (interval: {self.interval_seconds}s, "
            f"first sweep in {self.initial_delay_seconds}s, "
            f"clear_completed={self.clear_completed}, clear_failed={self.clear_failed})"
        )

    async def stop(self) -> None:
        """
        Stop the scheduler. Idempotent.

        Only future sweeps are cancelled; a sweep already in progress runs to
        completion in the background. Await wait_for_inflight() to join it.
        """
        if not self._running:
            return

        self._running = False
        self._next_run_at = None

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Retention scheduler stopped")

    async def wait_for_inflight(self) -> None:
        """Wait for a scheduled sweep that is still running, e.g. after stop()."""
        inflight = self._inflight
        if inflight is None or inflight.done():
            return
        logger.info("Waiting for in-flight retention sweep to finish")
        try:
            await inflight
        except Exception as e:
            logger.error(f"In-flight retention sweep failed: {e}", exc_info=True)

    async def _scheduler_loop(self) -> None:
        delay = self.initial_delay_seconds

        while self._running:
            self._next_run_at = datetime.now(timezone.utc) + timedelta(seconds=delay)
            await asyncio.sleep(delay)
            if not self._running:
                break

            self._next_run_at = None
            # Shield the sweep so stop() cannot interrupt it halfway
            self._inflight = asyncio.ensure_future(self.sweep(trigger=SCHEDULED))
            try:
                await asyncio.shield(self._inflight)
            except Exception as e:
                logger.error(f"Error in retention scheduler loop: {e}", exc_info=True)

            delay = self.interval_seconds

    async def _clear_branch(
        self, name: str, clear: Callable[[], Awaitable[Dict[str, Any]]]
    ) -> Dict[str, Any]:
        try:
            result = await clear()
        except Exception as e:
            logger.warning(f"Error clearing {name} jobs: {e}")
            return {"error": str(e)}

        count = result.get("deleted_jobs_count", 0)
        logger.info(f"Cleared {count} {name} jobs")
        return {
            "deleted_jobs_count": count,
            "deleted_job_ids": result.get("deleted_job_ids", []),
        }

    async def sweep(self, trigger: str = SCHEDULED) -> Dict[str, Any]:
        """
        Run one retention sweep over the enabled branches.

        Returns:
            Dictionary containing:
            - trigger: "scheduled" or "manual"
            - started_at / finished_at: ISO timestamps
            - duration_seconds: float
            - total_deleted: int
            - completed / failed: per-branch result (present only when the
              branch is enabled): {deleted_jobs_count, deleted_job_ids} or {error}
        """
        async with self._sweep_lock:
            started = datetime.now(timezone.utc)
            logger.info(f"Performing retention sweep (trigger={trigger})")

            result: Dict[str, Any] = {"trigger": trigger}
            total_deleted = 0

            if self.clear_completed:
                result["completed"] = await self._clear_branch(
                    "completed", self.record_service.clear_completed_jobs
                )
                total_deleted += result["completed"].get("deleted_jobs_count", 0)

            if self.clear_failed:
                result["failed"] = await self._clear_branch(
                    "failed", self.record_service.clear_failed_jobs
                )
                total_deleted += result["failed"].get("deleted_jobs_count", 0)

            finished = datetime.now(timezone.utc)
            result.update({
                "total_deleted": total_deleted,
                "started_at": started.isoformat(),
                "finished_at": finished.isoformat(),
                "duration_seconds": (finished - started).total_seconds(),
            })

            if total_deleted > 0:
                logger.info(f"Retention sweep completed: {total_deleted} total jobs cleared")
            else:
                logger.info("Retention sweep completed: no jobs to clear")

            self._last_run_at = finished
            self._last_result = result
            return result

    async def trigger_manual_sweep(self) -> Dict[str, Any]:
        """Run a sweep now, independent of the schedule."""
        logger.info("Manual retention sweep triggered")
        return await self.sweep(trigger=MANUAL)

    def status(self) -> Dict[str, Any]:
        """
        Get the current status of the retention scheduler.

        Returns:
            Dictionary containing enabled/running flags, interval, enabled
            branches, next_run_at (None when stopped), last_run_at,
            last_result and whether a sweep is currently in progress.
        """
        next_run_at = self._next_run_at if self._running else None
        return {
            "enabled": self.enabled,
            "running": self._running,
            "interval_seconds": self.interval_seconds,
            "initial_delay_seconds": self.initial_delay_seconds,
            "clear_completed": self.clear_completed,
            "clear_failed": self.clear_failed,
            "next_run_at": next_run_at.isoformat() if next_run_at else None,
            "last_run_at": self._last_run_at.isoformat() if self._last_run_at else None,
            "last_result": self._last_result,
            "sweep_in_progress": self._sweep_lock.locked(),
        }
