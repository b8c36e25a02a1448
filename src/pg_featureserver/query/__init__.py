"""PostGIS query service: catalog, statement builder and executor."""

from .builder import build_query
from .catalog import Catalog, get_catalog, load_catalog
from .engine import QueryResult, query_features
from .executor import QueryExecutor, get_executor
from .geometry import GeometryCodec, to_output_geometry
from .models import ColumnTable, LayerMetadata, QueryParams, SqlQuery

__all__ = [
    "build_query",
    "Catalog",
    "get_catalog",
    "load_catalog",
    "QueryResult",
    "query_features",
    "QueryExecutor",
    "get_executor",
    "GeometryCodec",
    "to_output_geometry",
    "ColumnTable",
    "LayerMetadata",
    "QueryParams",
    "SqlQuery",
]
