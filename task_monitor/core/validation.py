"""
Input validation for record lookups and listings.

Validation happens before any connection is taken from the pool, so a
rejected request never reaches the store.
"""
import re
from typing import Any, Mapping, Optional, Union
from uuid import UUID

from task_monitor.core.errors import InvalidIdentifierError, InvalidPaginationError
from task_monitor.schemas.job import JobSearchParams, JobState, Pagination

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

_TRUE_VALUES = {"true", "1", "yes"}


def validate_job_id(job_id: Any) -> Union[int, UUID]:
    """
    Validate a job identifier and convert it to the type the store binds.

    Job IDs are either numeric or UUIDs. asyncpg binds parameters by type,
    so numeric IDs become int and UUID strings become UUID.

    Raises:
        InvalidIdentifierError: If the ID is empty or neither numeric nor a UUID
    """
    if isinstance(job_id, bool):
        raise InvalidIdentifierError("Job ID must be a valid number or UUID")
    if isinstance(job_id, (int, UUID)):
        return job_id
    if job_id is None or str(job_id).strip() == "":
        raise InvalidIdentifierError("Job ID is required")

    text = str(job_id).strip()
    if text.isascii() and text.isdigit():
        return int(text)
    if UUID_PATTERN.match(text):
        return UUID(text)
    raise InvalidIdentifierError("Job ID must be a valid number or UUID")


def validate_task_id(task_id: Any) -> str:
    """Task IDs are free-form strings, unique within a job."""
    if task_id is None or str(task_id).strip() == "":
        raise InvalidIdentifierError("Task ID is required")
    return str(task_id)


def _parse_int(value: Any, name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise InvalidPaginationError(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidPaginationError(f"{name} must be an integer")


def validate_pagination(
    limit: Any = None,
    offset: Any = None,
    *,
    default_limit: int = 50,
    max_limit: int = 100,
) -> Pagination:
    """
    Validate limit/offset, applying defaults for missing values.

    Raises:
        InvalidPaginationError: If limit is outside [1, max_limit], offset is
            negative, or either is not an integer
    """
    parsed_limit = _parse_int(limit, "Limit")
    parsed_offset = _parse_int(offset, "Offset")

    if parsed_limit is None:
        parsed_limit = default_limit
    if parsed_offset is None:
        parsed_offset = 0

    if parsed_limit > max_limit:
        raise InvalidPaginationError(f"Limit cannot exceed {max_limit}")
    if parsed_limit < 1:
        raise InvalidPaginationError("Limit must be at least 1")
    if parsed_offset < 0:
        raise InvalidPaginationError("Offset must be non-negative")

    return Pagination(limit=parsed_limit, offset=parsed_offset)


def validate_search_params(params: Optional[Mapping[str, Any]]) -> JobSearchParams:
    """
    Keep only recognised, well-formed filters.

    Unknown keys and invalid states are dropped rather than rejected.
    """
    params = params or {}
    search = JobSearchParams()

    job_id = params.get("job_id")
    if job_id not in (None, ""):
        search.job_id = str(job_id)

    partial = params.get("partial")
    if isinstance(partial, bool):
        search.partial = partial
    elif partial is not None:
        search.partial = str(partial).lower() in _TRUE_VALUES

    state = params.get("state")
    if state is not None:
        try:
            search.state = JobState(state)
        except ValueError:
            # Unknown states are ignored, not rejected
            search.state = None

    user_id = params.get("user_id")
    if user_id not in (None, ""):
        search.user_id = str(user_id)

    return search
