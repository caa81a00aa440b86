from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from enum import Enum


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


# States from which no further transition occurs
TERMINAL_STATES = frozenset({JobState.DONE, JobState.FAILED})


class Pagination(BaseModel):
    """Validated limit/offset pair."""
    limit: int = Field(..., ge=1)
    offset: int = Field(0, ge=0)


class JobSearchParams(BaseModel):
    """Job listing filters that survived validation."""
    job_id: Optional[str] = None
    partial: bool = False
    state: Optional[JobState] = None
    user_id: Optional[str] = None

    def applied(self) -> Dict[str, Any]:
        """Filters actually applied to the query, for echoing back to callers."""
        applied: Dict[str, Any] = {}
        if self.job_id:
            applied["job_id"] = self.job_id
            applied["partial"] = self.partial
        if self.state is not None:
            applied["state"] = self.state.value
        if self.user_id:
            applied["user_id"] = self.user_id
        return applied
