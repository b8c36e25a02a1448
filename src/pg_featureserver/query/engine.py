"""
Core query pipeline: catalog lookup -> query builder -> executor.

This is the only place where feature queries are built and run.
Serialization of the returned ColumnTable is left to the
GeoServices serializers.
"""

import logging
import time
from typing import NamedTuple, Optional

from .builder import build_query
from .catalog import Catalog, get_catalog
from .executor import QueryExecutor, get_executor
from .models import ColumnTable, LayerMetadata, QueryParams, SqlQuery

logger = logging.getLogger(__name__)


class QueryResult(NamedTuple):
    layer: LayerMetadata
    query: SqlQuery
    table: ColumnTable


def query_features(
    params: QueryParams,
    catalog: Optional[Catalog] = None,
    executor: Optional[QueryExecutor] = None,
) -> QueryResult:
    """
    Run a FeatureServer query for one layer.

    All validation (layer id, fields, extent, paging) happens while
    building the statement, before a connection is taken from the pool.
    """
    if catalog is None:
        catalog = get_catalog()
    layer = catalog.get(params.layer_id)
    query = build_query(params, layer)

    if executor is None:
        executor = get_executor()
    start = time.perf_counter()
    table = executor.execute(query)
    logger.info(
        "Layer %d: %d rows in %.3fs",
        layer.id, table.num_rows, time.perf_counter() - start,
    )
    return QueryResult(layer=layer, query=query, table=table)
