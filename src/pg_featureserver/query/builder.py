"""
Build the feature query for one layer.

Statement shape:

    SELECT single.* FROM (
        SELECT ST_AsGeoJSON(<geom>) AS "geojson_payload", avw."F1", ...
        FROM schema."table" AS avw
        LEFT JOIN LATERAL ST_Dump(avw."SHAPE") AS part ON true
        [WHERE ST_Intersects(part.geom, ST_MakeEnvelope(...)) [AND <filter>]]
    ) AS single
    OFFSET n LIMIT m

ST_Dump explodes multi-part geometries so every row carries exactly one
part; the outer join keeps rows whose geometry is NULL or empty. Only the
GeoJSON payload and the attribute columns leave the subselect.
Identifiers are validated against the layer schema and quoted; numeric
values are parsed before they are inlined; string literals from the
attribute filter are passed as bound parameters.
"""

import logging
import math
import re

from .errors import InvalidExtent, InvalidField, InvalidParameter
from .models import (
    ALL_FIELDS,
    GEOMETRY_PAYLOAD,
    LayerMetadata,
    QueryParams,
    SqlQuery,
    quote_identifier,
)
from .where import rewrite_where

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_OR_RE = re.compile(r"\bOR\b")
_TABLE_ALIAS = "avw"
_PART_GEOMETRY = "part.geom"


def build_query(params: QueryParams, meta: LayerMetadata) -> SqlQuery:
    """Translate query parameters into a single SELECT statement."""
    out_fields = resolve_fields(params.out_fields, meta)

    where_sql = ""
    where_params = ()
    if params.where and params.where.strip():
        rewritten = rewrite_where(params.where, meta, qualifier=_TABLE_ALIAS)
        where_sql, where_params = rewritten.sql, rewritten.params

    predicates = []
    if params.extent is not None:
        predicates.append(_envelope_predicate(params, meta))
    if where_sql:
        if predicates and _OR_RE.search(where_sql):
            where_sql = f"({where_sql})"
        predicates.append(where_sql)

    geometry = _geometry_expression(
        params.max_allowable_offset, _as_int(params.out_sr, "outSR"), meta
    )
    inner = (
        f"SELECT {geometry} AS {quote_identifier(GEOMETRY_PAYLOAD)}, "
        f"{_from_clause(out_fields, meta)}"
    )
    if predicates:
        inner += " WHERE " + " AND ".join(predicates)
    sql = f"SELECT single.* FROM ({inner}) AS single"
    sql += _pagination(params.offset, params.limit)

    logger.debug("Built query for layer %d: %s", meta.id, sql)
    return SqlQuery(
        text=sql,
        params=where_params,
        fields=tuple(out_fields + [GEOMETRY_PAYLOAD]),
        geometry_column=GEOMETRY_PAYLOAD,
    )


def resolve_fields(out_fields, meta: LayerMetadata) -> list[str]:
    """Return canonical output field names, without the geometry payload."""
    if out_fields == ALL_FIELDS:
        requested = meta.output_fields
    else:
        requested = list(out_fields)

    resolved = []
    for name in requested:
        name = name.strip()
        if not _IDENTIFIER_RE.match(name):
            raise InvalidField(f"Invalid field name: '{name}'")
        field = meta.field(name)
        if field is None:
            raise InvalidField(
                f"Field '{name}' does not exist in layer {meta.id}",
                details=[f"Valid fields: {', '.join(meta.field_names)}"],
            )
        if field.name not in resolved:
            resolved.append(field.name)

    if not resolved:
        raise InvalidField("No output fields requested")
    return resolved


def _geometry_expression(tolerance, out_sr: int, meta: LayerMetadata) -> str:
    """GeoJSON of the part geometry, simplified when a tolerance is set.

    The tolerance is in out_sr units, so a geometry stored in another srid
    is simplified in out_sr and transformed back; the assembler does the
    final reprojection.
    """
    geom = _PART_GEOMETRY
    if tolerance is not None:
        try:
            value = float(tolerance)
        except (TypeError, ValueError):
            raise InvalidParameter(f"Invalid maxAllowableOffset: {tolerance!r}")
        if not math.isfinite(value) or value < 0:
            raise InvalidParameter(f"Invalid maxAllowableOffset: {tolerance!r}")
        if out_sr == meta.srid:
            geom = f"ST_SimplifyPreserveTopology({geom}, {value!r})"
        else:
            geom = (
                f"ST_Transform(ST_SimplifyPreserveTopology("
                f"ST_Transform({geom}, {out_sr}), {value!r}), {meta.srid})"
            )
    return f"ST_AsGeoJSON({geom})"


def _from_clause(fields: list[str], meta: LayerMetadata) -> str:
    columns = ", ".join(f"{_TABLE_ALIAS}.{quote_identifier(f)}" for f in fields)
    shape = f"{_TABLE_ALIAS}.{quote_identifier(meta.geometry_column)}"
    return (
        f"{columns} FROM {meta.table.sql()} AS {_TABLE_ALIAS} "
        f"LEFT JOIN LATERAL ST_Dump({shape}) AS part ON true"
    )


def _envelope_predicate(params: QueryParams, meta: LayerMetadata) -> str:
    extent = params.extent
    if extent is None or len(extent) != 4:
        raise InvalidExtent(
            "Extent must have exactly four values: xmin, ymin, xmax, ymax"
        )
    coords = []
    for value in extent:
        try:
            coord = float(value)
        except (TypeError, ValueError):
            raise InvalidExtent(f"Invalid extent coordinate: {value!r}")
        if not math.isfinite(coord):
            raise InvalidExtent(f"Invalid extent coordinate: {value!r}")
        coords.append(coord)

    srid = _as_int(
        params.extent_sr if params.extent_sr is not None else params.out_sr,
        "spatial reference",
    )
    envelope = "ST_MakeEnvelope({}, {}, {}, {}, {})".format(
        *(repr(c) for c in coords), srid
    )
    if srid != meta.srid:
        envelope = f"ST_Transform({envelope}, {meta.srid})"
    return f"ST_Intersects({_PART_GEOMETRY}, {envelope})"


def _pagination(offset, limit) -> str:
    offset = _as_int(offset, "resultOffset")
    limit = _as_int(limit, "resultRecordCount")
    if offset < 0:
        raise InvalidParameter(f"resultOffset must not be negative: {offset}")
    if limit < 0:
        raise InvalidParameter(f"resultRecordCount must not be negative: {limit}")
    return f" OFFSET {offset} LIMIT {limit}"


def _as_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidParameter(f"{name} must be an integer: {value!r}")
    return value
