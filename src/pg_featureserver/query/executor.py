"""
Execute built queries against PostGIS.

Connections come from a bounded psycopg_pool.ConnectionPool. Each
execution holds one connection for the duration of a single read-only
transaction; the pool commits on success, rolls back on error and
always takes the connection back.
"""

import logging
import time
from typing import Optional

import psycopg
from psycopg import errors as pg_errors
from psycopg_pool import ConnectionPool, PoolTimeout

from pg_featureserver.config import get_settings

from .errors import QueryExecutionFailed, QueryTimeout
from .models import ColumnTable, SqlQuery

logger = logging.getLogger(__name__)

_pool = None
_executor = None


class QueryExecutor:
    """Runs a SqlQuery and materializes the result column by column."""

    def __init__(
        self,
        pool,
        statement_timeout_ms: int = 30000,
        max_retries: int = 1,
        retry_delay: float = 0.2,
    ):
        self.pool = pool
        self.statement_timeout_ms = statement_timeout_ms
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def execute(self, query: SqlQuery) -> ColumnTable:
        """Run the query; either every column is filled or this raises."""
        attempt = 0
        while True:
            try:
                return self._execute_once(query)
            except pg_errors.QueryCanceled as e:
                logger.error(
                    "Query cancelled after %d ms: %s",
                    self.statement_timeout_ms, e, exc_info=True,
                )
                raise QueryTimeout(
                    f"Query exceeded the {self.statement_timeout_ms} ms deadline",
                    details=[str(e)],
                ) from e
            except PoolTimeout as e:
                logger.error("No database connection available: %s", e)
                raise QueryTimeout(
                    "Timed out waiting for a database connection",
                    details=[str(e)],
                ) from e
            except psycopg.OperationalError as e:
                if attempt < self.max_retries:
                    attempt += 1
                    logger.warning(
                        "Transient database error (attempt %d of %d): %s",
                        attempt, self.max_retries + 1, e,
                    )
                    time.sleep(self.retry_delay * attempt)
                    continue
                logger.error("Database unavailable: %s", e, exc_info=True)
                raise QueryExecutionFailed(
                    "Database unavailable", details=[str(e)]
                ) from e
            except psycopg.Error as e:
                logger.error("Query failed: %s\n%s", e, query.text, exc_info=True)
                raise QueryExecutionFailed(
                    "Error performing query operation", details=[str(e)]
                ) from e

    def _execute_once(self, query: SqlQuery) -> ColumnTable:
        with self.pool.connection() as conn:
            conn.read_only = True
            with conn.cursor() as cur:
                if self.statement_timeout_ms:
                    cur.execute(
                        "SELECT set_config('statement_timeout', %s, true)",
                        (str(self.statement_timeout_ms),),
                    )
                cur.execute(query.text, query.params or None)
                names = [d.name for d in cur.description]
                rows = cur.fetchall()

        return self._to_columns(query, names, rows)

    def _to_columns(self, query: SqlQuery, names: list[str], rows: list) -> ColumnTable:
        index = {name: i for i, name in enumerate(names)}
        missing = [f for f in query.fields if f not in index]
        if missing:
            raise QueryExecutionFailed(
                "Query result is missing requested columns",
                details=missing,
            )

        n = len(rows)
        data = {}
        for field in query.fields:
            pos = index[field]
            column = [None] * n
            for i, row in enumerate(rows):
                value = row[pos]
                if value is not None:
                    column[i] = value if isinstance(value, str) else str(value)
            data[field] = column

        logger.debug("Fetched %d rows, %d columns", n, len(data))
        return ColumnTable.from_columns(data, query.geometry_column)


def get_pool() -> ConnectionPool:
    """Singleton connection pool, opened on first use."""
    global _pool
    if _pool is None:
        settings = get_settings()
        _pool = ConnectionPool(
            settings.database_url,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
            timeout=settings.pool_timeout,
            name="pg-featureserver",
            open=True,
        )
        logger.info(
            "Opened connection pool (min=%d, max=%d)",
            settings.pool_min_size, settings.pool_max_size,
        )
    return _pool


def set_pool(pool):
    """Override the pool instance (used for testing)."""
    global _pool
    _pool = pool


def close_pool():
    """Close and forget the singleton pool."""
    global _pool, _executor
    if _pool is not None and hasattr(_pool, "close"):
        _pool.close()
        logger.info("Closed connection pool")
    _pool = None
    _executor = None


def get_executor() -> QueryExecutor:
    """Singleton executor bound to the singleton pool."""
    global _executor
    if _executor is None:
        settings = get_settings()
        _executor = QueryExecutor(
            get_pool(),
            statement_timeout_ms=settings.statement_timeout_ms,
            max_retries=settings.max_retries,
        )
    return _executor


def set_executor(executor: Optional[QueryExecutor]):
    """Override the executor instance (used for testing)."""
    global _executor
    _executor = executor


def reset_executor():
    """Reset the singleton executor (used for testing)."""
    global _executor
    _executor = None
