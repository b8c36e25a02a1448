"""
Shared test fixtures.

The database is replaced by small fake pool/connection/cursor objects
that mimic the parts of psycopg the executor uses. Row data is given
as result-set tuples, exactly as psycopg returns them.
"""

import json
from collections import namedtuple
from contextlib import contextmanager

import pytest

from pg_featureserver.config import reset_settings
from pg_featureserver.query.catalog import load_catalog, reset_catalog, set_catalog
from pg_featureserver.query.executor import QueryExecutor, reset_executor, set_executor, set_pool
from pg_featureserver.query.models import ColumnTable

Column = namedtuple("Column", ["name"])


class FakeCursor:
    def __init__(self, columns, rows, error=None, sticky=True):
        self.columns = columns
        self.rows = rows
        self.error = error
        self.sticky = sticky
        self.executed = []
        self.description = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.executed.append((sql, params))
        if "set_config" in sql:
            return
        if self.error is not None:
            error = self.error
            if not self.sticky:
                self.error = None
            raise error
        self.description = [Column(c) for c in self.columns]

    def fetchall(self):
        return list(self.rows)


class FakeConnection:
    def __init__(self, cursor):
        self._cursor = cursor
        self.read_only = False

    def cursor(self):
        return self._cursor


class FakePool:
    """Stands in for psycopg_pool.ConnectionPool."""

    def __init__(self, columns=(), rows=(), error=None, sticky=True, acquire_error=None):
        self.cursor = FakeCursor(list(columns), list(rows), error, sticky)
        self.acquire_error = acquire_error
        self.acquired = 0
        self.released = 0
        self.closed = False

    @contextmanager
    def connection(self, timeout=None):
        if self.acquire_error is not None:
            raise self.acquire_error
        self.acquired += 1
        try:
            yield FakeConnection(self.cursor)
        finally:
            self.released += 1

    def close(self):
        self.closed = True


def point_payload(x, y):
    return json.dumps({"type": "Point", "coordinates": [x, y]})


@pytest.fixture(autouse=True)
def setup_catalog(monkeypatch):
    """Use the built-in catalog and fresh settings for every test."""
    for name in ("LAYERS", "SERVICE_NAME", "MAX_RECORD_COUNT"):
        monkeypatch.delenv(f"PG_FEATURESERVER_{name}", raising=False)
    reset_settings()
    set_catalog(load_catalog())
    yield
    reset_catalog()
    reset_executor()
    set_pool(None)
    reset_settings()


@pytest.fixture
def catalog():
    return load_catalog()


@pytest.fixture
def polygon_layer(catalog):
    """Layer 0: Archeologische Verwachtingenkaart."""
    return catalog.get(0)


@pytest.fixture
def point_layer(catalog):
    """Layer 1: Beschermingsplan Boomkikkers."""
    return catalog.get(1)


@pytest.fixture
def make_pool():
    return FakePool


@pytest.fixture
def frog_rows():
    """Result rows for layer 1 in select order: payload, then fields."""
    return [
        (point_payload(1.0, 2.0), 1, "poel noord", 3),
        (point_payload(4.5, 5.5), 2, "poel zuid", 7),
        (point_payload(9.0, 9.0), 3, None, 12),
    ]


@pytest.fixture
def frog_columns():
    return ["geojson_payload", "OBJECTID", "OMS", "NR"]


@pytest.fixture
def frog_pool(frog_columns, frog_rows):
    return FakePool(frog_columns, frog_rows)


@pytest.fixture
def frog_executor(frog_pool):
    """Executor over the fake pool, installed as the process-wide executor."""
    executor = QueryExecutor(frog_pool, statement_timeout_ms=5000, retry_delay=0)
    set_executor(executor)
    return executor


@pytest.fixture
def frog_table(frog_rows):
    """ColumnTable for layer 1 with all fields."""
    return ColumnTable.from_columns(
        {
            "OBJECTID": [str(r[1]) for r in frog_rows],
            "OMS": [r[2] for r in frog_rows],
            "NR": [str(r[3]) for r in frog_rows],
            "geojson_payload": [r[0] for r in frog_rows],
        }
    )
