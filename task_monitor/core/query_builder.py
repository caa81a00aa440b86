"""
Query Builder - Construct parameterized SQL from chained clause calls.

Statements use PostgreSQL positional markers ($1, $2, ...). Values are never
interpolated into the SQL text; they are returned in a parameter list whose
order matches the markers.

Marker assignment order is fixed: WHERE values in call order, then LIMIT,
then OFFSET.

Usage:
    sql, params = (
        query()
        .select(["id", "state"])
        .from_("jobs")
        .where("state = ?", "done")
        .order_by("id", "DESC")
        .limit(10)
        .build()
    )
"""
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple, Union

from task_monitor.core.errors import MissingClauseError, QueryBuilderSealedError

PLACEHOLDER = "?"
ALLOWED_DIRECTIONS = {"ASC", "DESC"}

# Sentinel so that None can be bound as a real parameter value
_NO_VALUE = object()


@dataclass(frozen=True)
class _Join:
    table: str
    condition: str
    kind: str


@dataclass(frozen=True)
class _Where:
    condition: str
    value: Any = _NO_VALUE

    @property
    def parameterized(self) -> bool:
        return self.value is not _NO_VALUE


def _as_list(fields: Union[str, Sequence[str]]) -> List[str]:
    if isinstance(fields, str):
        return [fields]
    return list(fields)


class QueryBuilder:
    """Single-use builder for one SELECT statement."""

    def __init__(self):
        self._select: Optional[List[str]] = None
        self._from: str = ""
        self._joins: List[_Join] = []
        self._wheres: List[_Where] = []
        self._group_by: List[str] = []
        self._order_by: List[Tuple[str, str]] = []
        self._limit: Any = _NO_VALUE
        self._offset: Any = _NO_VALUE
        self._sealed = False

    def _check_open(self) -> None:
        if self._sealed:
            raise QueryBuilderSealedError(
                "Query builder was already built; create a new one with query()"
            )

    def select(self, fields: Union[str, Sequence[str]]) -> "QueryBuilder":
        self._check_open()
        self._select = _as_list(fields)
        return self

    def from_(self, table: str) -> "QueryBuilder":
        self._check_open()
        self._from = table
        return self

    def join(self, table: str, condition: str, kind: str = "LEFT") -> "QueryBuilder":
        self._check_open()
        self._joins.append(_Join(table=table, condition=condition, kind=kind.upper()))
        return self

    def where(self, condition: str, value: Any = _NO_VALUE) -> "QueryBuilder":
        """
        Add an AND-ed condition.

        With a value, every ``?`` in the condition becomes the next positional
        marker and the value is bound to it. Without a value the condition is
        used verbatim (static conditions such as ``reported IS NULL``).
        """
        self._check_open()
        self._wheres.append(_Where(condition=condition, value=value))
        return self

    def group_by(self, fields: Union[str, Sequence[str]]) -> "QueryBuilder":
        self._check_open()
        self._group_by.extend(_as_list(fields))
        return self

    def order_by(self, field: str, direction: str = "ASC") -> "QueryBuilder":
        self._check_open()
        direction = direction.upper()
        if direction not in ALLOWED_DIRECTIONS:
            raise ValueError(f"Invalid sort direction '{direction}'. Allowed: {ALLOWED_DIRECTIONS}")
        self._order_by.append((field, direction))
        return self

    def limit(self, value: int) -> "QueryBuilder":
        self._check_open()
        self._limit = value
        return self

    def offset(self, value: int) -> "QueryBuilder":
        self._check_open()
        self._offset = value
        return self

    def build(self) -> Tuple[str, List[Any]]:
        """
        Render the statement.

        Returns:
            (sql, params) where params[i] binds to marker $(i+1)

        Raises:
            MissingClauseError: If select() was never called
        """
        if not self._select:
            raise MissingClauseError("SELECT clause is required")

        params: List[Any] = []

        def next_marker(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        parts = [f"SELECT {', '.join(self._select)}"]
        if self._from:
            parts.append(f"FROM {self._from}")

        for join in self._joins:
            parts.append(f"{join.kind} JOIN {join.table} ON {join.condition}")

        if self._wheres:
            conditions = []
            for where in self._wheres:
                if where.parameterized:
                    conditions.append(where.condition.replace(PLACEHOLDER, next_marker(where.value)))
                else:
                    conditions.append(where.condition)
            parts.append(f"WHERE {' AND '.join(conditions)}")

        if self._group_by:
            parts.append(f"GROUP BY {', '.join(self._group_by)}")

        if self._order_by:
            parts.append(
                "ORDER BY " + ", ".join(f"{field} {direction}" for field, direction in self._order_by)
            )

        if self._limit is not _NO_VALUE:
            parts.append(f"LIMIT {next_marker(self._limit)}")

        if self._offset is not _NO_VALUE:
            parts.append(f"OFFSET {next_marker(self._offset)}")

        self._sealed = True
        return " ".join(parts), params


def query() -> QueryBuilder:
    """Return a fresh builder; builders are never shared between statements."""
    return QueryBuilder()
