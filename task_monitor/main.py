"""
Service container: builds the pool, record service and retention scheduler once.

Consumers (an HTTP layer, scripts, tests) receive references from the
container instead of reading module-level service handles.

Usage:
    container = ServiceContainer.from_settings(settings)
    await container.startup()
    ...
    result = await container.record_service.list_jobs_with_stats()
    status = container.retention_scheduler.status()
    ...
    await container.shutdown()
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict

from task_monitor.core.config import Settings
from task_monitor.services.background_jobs.retention_job import RetentionScheduler
from task_monitor.services.database import DatabasePool
from task_monitor.services.record_service import RecordService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    pool: DatabasePool
    record_service: RecordService
    retention_scheduler: RetentionScheduler

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceContainer":
        return cls.from_pool(DatabasePool.from_settings(settings), settings)

    @classmethod
    def from_pool(cls, pool: DatabasePool, settings: Settings) -> "ServiceContainer":
        record_service = RecordService(pool, settings)
        retention_scheduler = RetentionScheduler(record_service, settings)
        return cls(
            settings=settings,
            pool=pool,
            record_service=record_service,
            retention_scheduler=retention_scheduler,
        )

    async def startup(self) -> None:
        """
        Verify connectivity, probe optional capabilities and start the scheduler.

        Connectivity failure is logged but does not abort startup; the
        capability probe raises StoreError if the schema cannot be inspected.
        """
        logger.info(f"Starting {self.settings.PROJECT_NAME} ({self.settings.ENVIRONMENT})")

        if not await self.record_service.ping():
            logger.warning("Database is not reachable at startup")

        capabilities = await self.record_service.probe_capabilities()
        logger.info(f"Store capabilities: {capabilities}")

        self.retention_scheduler.start()

    async def shutdown(self) -> None:
        await self.retention_scheduler.stop()
        # A sweep holds a pooled connection until it commits
        await self.retention_scheduler.wait_for_inflight()
        await self.pool.dispose()
        logger.info(f"{self.settings.PROJECT_NAME} shut down")

    async def health_check(self) -> Dict[str, Any]:
        connected = await self.record_service.ping()
        return {
            "status": "healthy" if connected else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "database": "connected" if connected else "disconnected",
            "environment": self.settings.ENVIRONMENT,
            "retention": self.retention_scheduler.status(),
        }
