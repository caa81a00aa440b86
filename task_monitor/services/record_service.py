"""
Record Service - Reads and transactional deletes over jobs, tasks and task dependencies.

Tables:
- jobs: one row per job (id, state, error, user_id, reported)
- tasks: many per job, keyed by (job_id, task_id)
- task_deps: precedence edges (job_id, pre_task_id, post_task_id); optional
- streams: read-only

Deletes always run task_deps -> tasks -> jobs inside a single transaction, so
no dependency edge can outlive the tasks it references and a failure leaves
nothing half-deleted.

Whether task_deps exists is decided once by probe_capabilities() (schema
introspection).

Usage:
    service = RecordService(pool, settings)
    await service.probe_capabilities()

    page = await service.list_jobs_with_stats({"state": "failed"}, {"limit": 20})
    await service.delete_job(42)
    summary = await service.clear_by_state(JobState.DONE)
"""
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from task_monitor.core.config import Settings, settings as default_settings
from task_monitor.core.errors import (
    CapabilityUnavailableError,
    InvalidStateError,
    NotFoundError,
    StoreError,
)
from task_monitor.core.query_builder import query
from task_monitor.core.validation import (
    validate_job_id,
    validate_pagination,
    validate_search_params,
    validate_task_id,
)
from task_monitor.schemas.job import TERMINAL_STATES, JobState, Pagination
from task_monitor.services.database import DatabasePool

logger = logging.getLogger(__name__)

DEPENDENCY_TABLE = "task_deps"

JOB_COLUMNS = ["id", "state", "error", "user_id", "reported"]

TASK_COLUMNS = [
    "task_id", "state", "progress", "retries", "max_retries", "timeout_secs",
    "waiting_on", "error", "created_at", "started_at", "updated_at", "task_def",
    "prerequisites", "output",
]

JOB_STATS_COLUMNS = [f"j.{column}" for column in JOB_COLUMNS] + [
    "COUNT(t.task_id) AS task_count",
    "COUNT(CASE WHEN t.state = 'done' THEN 1 END) AS completed_tasks",
    "COUNT(CASE WHEN t.state = 'running' THEN 1 END) AS running_tasks",
    "COUNT(CASE WHEN t.state = 'pending' THEN 1 END) AS pending_tasks",
    "COUNT(CASE WHEN t.state = 'failed' THEN 1 END) AS failed_tasks",
]

STREAM_COLUMNS = ["id", "job_id", "created_at", "updated_at"]


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class RecordService:
    """Domain operations over job/task records."""

    def __init__(self, pool: DatabasePool, settings: Settings = default_settings):
        self.pool = pool
        self.default_limit = settings.PAGINATION_DEFAULT_LIMIT
        self.max_limit = settings.PAGINATION_MAX_LIMIT
        # None until probed
        self.supports_dependencies: Optional[bool] = None

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    async def probe_capabilities(self) -> Dict[str, bool]:
        """
        Inspect the schema for optional tables.

        Called once at startup; the result is cached on the service.
        """
        self.supports_dependencies = await self.pool.has_table(DEPENDENCY_TABLE)
        if self.supports_dependencies:
            logger.info(f"Dependency tracking available ({DEPENDENCY_TABLE} table found)")
        else:
            logger.warning(
                f"{DEPENDENCY_TABLE} table not found - dependency edges will be "
                f"reported empty and skipped during deletes"
            )
        return {"dependencies": self.supports_dependencies}

    async def _dependencies_available(self) -> bool:
        if self.supports_dependencies is None:
            await self.probe_capabilities()
        return bool(self.supports_dependencies)

    async def _require_dependencies(self) -> None:
        if not await self._dependencies_available():
            raise CapabilityUnavailableError(DEPENDENCY_TABLE)

    def _pagination(self, pagination: Union[Pagination, Mapping[str, Any], None]) -> Pagination:
        if isinstance(pagination, Pagination):
            pagination = pagination.model_dump()
        pagination = pagination or {}
        return validate_pagination(
            pagination.get("limit"),
            pagination.get("offset"),
            default_limit=self.default_limit,
            max_limit=self.max_limit,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_jobs_with_stats(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        pagination: Union[Pagination, Mapping[str, Any], None] = None,
    ) -> Dict[str, Any]:
        """
        List jobs with per-state task counts.

        Args:
            filters: Optional job_id (+ partial), state, user_id. Unknown or
                invalid filters are ignored.
            pagination: Optional limit/offset

        Returns:
            Dictionary containing:
            - jobs: list of job rows with task_count, completed_tasks,
              running_tasks, pending_tasks, failed_tasks
            - pagination: {limit, offset, count}
            - applied_filters: the filters that were used

        Raises:
            InvalidPaginationError: If limit/offset are out of bounds
            StoreError: On database failure
        """
        page = self._pagination(pagination)
        search = validate_search_params(filters)

        builder = (
            query()
            .select(JOB_STATS_COLUMNS)
            .from_("jobs j")
            .join("tasks t", "j.id = t.job_id")
            .group_by([f"j.{column}" for column in JOB_COLUMNS])
            .order_by("j.id", "DESC")
            .limit(page.limit)
            .offset(page.offset)
        )

        if search.job_id:
            if search.partial:
                builder.where("j.id::text ILIKE ?", f"%{_escape_like(search.job_id)}%")
            else:
                builder.where("j.id::text = ?", search.job_id)

        if search.state is not None:
            builder.where("j.state = ?", search.state.value)

        if search.user_id:
            builder.where("j.user_id::text = ?", search.user_id)

        sql, params = builder.build()
        jobs = await self.pool.execute(sql, params)

        return {
            "jobs": jobs,
            "pagination": {"limit": page.limit, "offset": page.offset, "count": len(jobs)},
            "applied_filters": search.applied(),
        }

    async def get_job_detail(self, job_id: Any) -> Dict[str, Any]:
        """
        Get a job with all of its tasks, oldest first.

        Raises:
            NotFoundError: If the job does not exist
        """
        job_id = validate_job_id(job_id)

        sql, params = query().select(JOB_COLUMNS).from_("jobs").where("id = ?", job_id).build()
        job_rows = await self.pool.execute(sql, params)
        if not job_rows:
            raise NotFoundError("Job", job_id)

        sql, params = (
            query()
            .select(TASK_COLUMNS)
            .from_("tasks")
            .where("job_id = ?", job_id)
            .order_by("created_at", "ASC")
            .build()
        )
        tasks = await self.pool.execute(sql, params)

        return {"job": job_rows[0], "tasks": tasks, "task_count": len(tasks)}

    async def get_job_dependencies(self, job_id: Any) -> Dict[str, Any]:
        """Precedence edges for a job. Empty when the deployment has no task_deps table."""
        job_id = validate_job_id(job_id)

        try:
            await self._require_dependencies()
        except CapabilityUnavailableError as e:
            logger.debug(f"Skipping dependency lookup for job {job_id}: {e}")
            return {"dependencies": [], "count": 0}

        sql, params = (
            query()
            .select(["pre_task_id", "post_task_id"])
            .from_(DEPENDENCY_TABLE)
            .where("job_id = ?", job_id)
            .build()
        )
        dependencies = await self.pool.execute(sql, params)
        return {"dependencies": dependencies, "count": len(dependencies)}

    async def list_streams(
        self, pagination: Union[Pagination, Mapping[str, Any], None] = None
    ) -> Dict[str, Any]:
        page = self._pagination(pagination)
        sql, params = (
            query()
            .select(STREAM_COLUMNS)
            .from_("streams")
            .order_by("created_at", "DESC")
            .limit(page.limit)
            .offset(page.offset)
            .build()
        )
        streams = await self.pool.execute(sql, params)
        return {
            "streams": streams,
            "pagination": {"limit": page.limit, "offset": page.offset, "count": len(streams)},
        }

    async def describe_schema(self) -> Dict[str, Any]:
        schema = await self.pool.describe_columns()
        return {"schema": schema, "tables": list(schema.keys())}

    async def ping(self) -> bool:
        """Connectivity check. Never raises."""
        try:
            rows = await self.pool.execute("SELECT CURRENT_TIMESTAMP AS current_time")
        except StoreError as e:
            logger.error(f"Database connection error: {e}")
            return False
        current_time = rows[0].get("current_time") if rows else None
        logger.debug(f"Database reachable at {current_time}")
        return True

    # ------------------------------------------------------------------
    # Transactional deletes
    # ------------------------------------------------------------------

    async def delete_job(self, job_id: Any) -> Dict[str, Any]:
        """
        Delete a job with its dependency edges and tasks, atomically.

        Returns:
            {"deleted_job_id": <id>}

        Raises:
            NotFoundError: If the job does not exist (nothing is deleted)
            StoreError: On database failure (everything is rolled back)
        """
        job_id = validate_job_id(job_id)
        with_dependencies = await self._dependencies_available()

        async with self.pool.transaction() as conn:
            existing = await conn.execute("SELECT id FROM jobs WHERE id = $1", [job_id])
            if not existing:
                raise NotFoundError("Job", job_id)

            if with_dependencies:
                await conn.execute(f"DELETE FROM {DEPENDENCY_TABLE} WHERE job_id = $1", [job_id])
            await conn.execute("DELETE FROM tasks WHERE job_id = $1", [job_id])
            deleted = await conn.execute("DELETE FROM jobs WHERE id = $1 RETURNING id", [job_id])

        deleted_id = deleted[0]["id"] if deleted else job_id
        logger.info(f"Deleted job {deleted_id}")
        return {"deleted_job_id": deleted_id}

    async def delete_task(self, job_id: Any, task_id: Any) -> Dict[str, Any]:
        """
        Delete one task and every dependency edge that names it, atomically.

        Raises:
            NotFoundError: If the (job, task) pair does not exist
        """
        job_id = validate_job_id(job_id)
        task_id = validate_task_id(task_id)
        with_dependencies = await self._dependencies_available()

        async with self.pool.transaction() as conn:
            existing = await conn.execute(
                "SELECT task_id FROM tasks WHERE job_id = $1 AND task_id = $2",
                [job_id, task_id],
            )
            if not existing:
                raise NotFoundError("Task", task_id, f"Task {task_id} not found in job {job_id}")

            if with_dependencies:
                await conn.execute(
                    f"DELETE FROM {DEPENDENCY_TABLE} "
                    f"WHERE job_id = $1 AND (pre_task_id = $2 OR post_task_id = $2)",
                    [job_id, task_id],
                )
            deleted = await conn.execute(
                "DELETE FROM tasks WHERE job_id = $1 AND task_id = $2 RETURNING task_id",
                [job_id, task_id],
            )

        deleted_id = deleted[0]["task_id"] if deleted else task_id
        logger.info(f"Deleted task {deleted_id} from job {job_id}")
        return {"deleted_task_id": deleted_id}

    async def clear_by_state(self, state: Union[JobState, str]) -> Dict[str, Any]:
        """
        Delete every job in a terminal state, with its tasks and dependency edges.

        Runs in one transaction. Finding no matching jobs is not an error.

        Args:
            state: "done" or "failed"

        Returns:
            Dictionary containing:
            - state: str
            - deleted_jobs_count: int
            - deleted_job_ids: list of deleted job IDs
            - message: str

        Raises:
            InvalidStateError: If state is not a terminal state
            StoreError: On database failure (everything is rolled back)
        """
        try:
            state = JobState(state)
        except ValueError:
            raise InvalidStateError(f"Unknown job state '{state}'")
        if state not in TERMINAL_STATES:
            raise InvalidStateError(f"Only terminal states can be cleared, got '{state.value}'")

        label = "completed" if state is JobState.DONE else state.value
        with_dependencies = await self._dependencies_available()
        membership = "SELECT id FROM jobs WHERE state = $1"

        async with self.pool.transaction() as conn:
            count_rows = await conn.execute(
                "SELECT COUNT(*) AS count FROM jobs WHERE state = $1", [state.value]
            )
            matching = int(count_rows[0]["count"]) if count_rows else 0

            if matching == 0:
                return {
                    "state": state.value,
                    "deleted_jobs_count": 0,
                    "deleted_job_ids": [],
                    "message": f"No {label} jobs found to delete",
                }

            if with_dependencies:
                await conn.execute(
                    f"DELETE FROM {DEPENDENCY_TABLE} WHERE job_id IN ({membership})", [state.value]
                )
            await conn.execute(f"DELETE FROM tasks WHERE job_id IN ({membership})", [state.value])
            deleted = await conn.execute(
                "DELETE FROM jobs WHERE state = $1 RETURNING id", [state.value]
            )

        deleted_ids: List[Any] = [row["id"] for row in deleted]
        logger.info(f"Cleared {len(deleted_ids)} {label} job(s)")
        return {
            "state": state.value,
            "deleted_jobs_count": len(deleted_ids),
            "deleted_job_ids": deleted_ids,
            "message": f"Successfully deleted {len(deleted_ids)} {label} job(s)",
        }

    async def clear_completed_jobs(self) -> Dict[str, Any]:
        return await self.clear_by_state(JobState.DONE)

    async def clear_failed_jobs(self) -> Dict[str, Any]:
        return await self.clear_by_state(JobState.FAILED)
