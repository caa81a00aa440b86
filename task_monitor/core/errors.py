"""
Error classes for the task monitor data-access layer.

Every failure that leaves the core is one of these types:
- MissingClauseError / QueryBuilderSealedError: query builder misuse
- ValidationError (and subclasses): bad caller input, nothing touched the store
- NotFoundError: the referenced job or task does not exist
- StoreError: connectivity or constraint failure from the database
- CapabilityUnavailableError: optional table missing in this deployment

Mutating operations raise only after their transaction has been rolled back
and the connection returned to the pool.
"""
from typing import Any, Optional


class TaskMonitorError(Exception):
    """Base exception for the task monitor."""
    pass


class MissingClauseError(TaskMonitorError):
    """A required clause (SELECT) was not supplied before build()."""
    pass


class QueryBuilderSealedError(TaskMonitorError):
    """A clause was added to a query builder after build() was called."""
    pass


class ValidationError(TaskMonitorError, ValueError):
    """Caller input failed validation."""
    pass


class InvalidPaginationError(ValidationError):
    """Limit or offset is outside the accepted bounds."""
    pass


class InvalidIdentifierError(ValidationError):
    """Job ID is neither numeric nor a UUID, or a task ID is empty."""
    pass


class InvalidStateError(ValidationError):
    """A state value is not acceptable for the requested operation."""
    pass


class NotFoundError(TaskMonitorError):
    """The referenced job or task does not exist."""

    def __init__(self, entity: str, identifier: Any, message: Optional[str] = None):
        self.entity = entity
        self.identifier = identifier
        super().__init__(message or f"{entity} with ID {identifier} does not exist")


class StoreError(TaskMonitorError):
    """
    Store-level failure (connectivity, constraint violation, bad SQL).

    The driver exception is kept on ``original`` and chained as ``__cause__``.
    """

    # PostgreSQL SQLSTATE class 23 is "integrity constraint violation"
    CONSTRAINT_SQLSTATE_PREFIX = "23"

    def __init__(self, message: str, original: Optional[BaseException] = None):
        super().__init__(message)
        self.original = original

    @property
    def sqlstate(self) -> Optional[str]:
        orig = getattr(self.original, "orig", None)
        for candidate in (orig, getattr(orig, "__cause__", None)):
            code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
            if code:
                return str(code)
        return None

    @property
    def is_constraint_violation(self) -> bool:
        code = self.sqlstate
        return bool(code and code.startswith(self.CONSTRAINT_SQLSTATE_PREFIX))

    @property
    def is_connectivity(self) -> bool:
        if isinstance(self.original, (ConnectionError, OSError)):
            return True
        return bool(getattr(self.original, "connection_invalidated", False))


class CapabilityUnavailableError(TaskMonitorError):
    """An optional store capability (e.g. the task_deps table) is not present."""

    def __init__(self, capability: str):
        self.capability = capability
        super().__init__(f"Capability '{capability}' is not available in this deployment")
