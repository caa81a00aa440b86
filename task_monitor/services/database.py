import logging
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.sql.elements import TextClause

from task_monitor.core.config import Settings
from task_monitor.core.errors import StoreError

logger = logging.getLogger(__name__)

_POSITIONAL_MARKER = re.compile(r"\$(\d+)")

Row = Dict[str, Any]


def to_statement(sql: str, params: Optional[Sequence[Any]] = None) -> Tuple[TextClause, Dict[str, Any]]:
    """
    Translate a $n-style statement into a SQLAlchemy text clause.

    $1, $2, ... become named binds :p1, :p2, ... so statements built by the
    query builder run through any SQLAlchemy dialect. PostgreSQL casts on
    columns (j.id::text) are left alone.
    """
    statement = text(_POSITIONAL_MARKER.sub(lambda m: f":p{m.group(1)}", sql))
    values = {f"p{index}": value for index, value in enumerate(params or [], start=1)}
    return statement, values


async def _run(connection: AsyncConnection, sql: str, params: Optional[Sequence[Any]]) -> List[Row]:
    statement, values = to_statement(sql, params)
    try:
        result = await connection.execute(statement, values)
    except (SQLAlchemyError, OSError) as e:
        raise StoreError(f"Statement failed: {e}", original=e) from e
    if not result.returns_rows:
        return []
    return [dict(row) for row in result.mappings().all()]


class PooledConnection:
    """A connection checked out of the pool for one transaction."""

    def __init__(self, connection: AsyncConnection):
        self._connection = connection
        self._released = False

    async def begin(self) -> None:
        try:
            await self._connection.begin()
        except (SQLAlchemyError, OSError) as e:
            raise StoreError(f"Failed to begin transaction: {e}", original=e) from e

    async def commit(self) -> None:
        try:
            await self._connection.commit()
        except (SQLAlchemyError, OSError) as e:
            raise StoreError(f"Failed to commit transaction: {e}", original=e) from e

    async def rollback(self) -> None:
        try:
            await self._connection.rollback()
        except (SQLAlchemyError, OSError) as e:
            raise StoreError(f"Failed to roll back transaction: {e}", original=e) from e

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Row]:
        return await _run(self._connection, sql, params)

    async def release(self) -> None:
        """Return the connection to the pool. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        await self._connection.close()


class DatabasePool:
    """
    Connection pool over SQLAlchemy's asyncio engine.

    - execute(): one-shot statement on a short-lived checkout
    - acquire(): dedicated connection the caller must release
    - transaction(): scoped begin/commit/rollback with guaranteed release
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    @classmethod
    def from_settings(cls, settings: Settings) -> "DatabasePool":
        engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=settings.DB_POOL_MAX,
            max_overflow=0,
            pool_timeout=settings.DB_POOL_TIMEOUT_SECONDS,
            pool_recycle=settings.DB_POOL_IDLE_TIMEOUT_SECONDS,
            pool_pre_ping=True,
        )
        logger.info(f"Database pool created (max={settings.DB_POOL_MAX})")
        return cls(engine)

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Row]:
        try:
            async with self.engine.connect() as connection:
                return await _run(connection, sql, params)
        except (SQLAlchemyError, OSError) as e:
            raise StoreError(f"Database connection failed: {e}", original=e) from e

    async def acquire(self) -> PooledConnection:
        try:
            connection = await self.engine.connect()
        except (SQLAlchemyError, OSError) as e:
            raise StoreError(f"Database connection failed: {e}", original=e) from e
        return PooledConnection(connection)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PooledConnection]:
        """
        Run the block inside one transaction on a dedicated connection.

        Commits when the block exits normally. On any exception the
        transaction is rolled back and the exception re-raised. The
        connection is released on every exit path.
        """
        connection = await self.acquire()
        try:
            await connection.begin()
            try:
                yield connection
                await connection.commit()
            except BaseException:
                try:
                    await connection.rollback()
                except StoreError as rollback_error:
                    logger.error(f"Rollback failed: {rollback_error}", exc_info=True)
                raise
        finally:
            await connection.release()

    async def has_table(self, table_name: str) -> bool:
        """Schema introspection probe for optional tables."""
        try:
            async with self.engine.connect() as connection:
                return await connection.run_sync(
                    lambda sync_conn: inspect(sync_conn).has_table(table_name)
                )
        except (SQLAlchemyError, OSError) as e:
            raise StoreError(f"Failed to inspect table {table_name}: {e}", original=e) from e

    async def describe_columns(self) -> Dict[str, List[Row]]:
        """Columns per table in the default schema, in ordinal order."""

        def _collect(sync_conn) -> Dict[str, List[Row]]:
            inspector = inspect(sync_conn)
            return {
                table_name: [
                    {
                        "column": column["name"],
                        "type": str(column["type"]),
                        "nullable": column["nullable"],
                    }
                    for column in inspector.get_columns(table_name)
                ]
                for table_name in sorted(inspector.get_table_names())
            }

        try:
            async with self.engine.connect() as connection:
                return await connection.run_sync(_collect)
        except (SQLAlchemyError, OSError) as e:
            raise StoreError(f"Failed to inspect schema: {e}", original=e) from e

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("Database pool disposed")
