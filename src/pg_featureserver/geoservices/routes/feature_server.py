"""
FeatureServer routes.

Implements the subset of Esri GeoServices REST that ArcGIS clients
need for map visualization.

ArcGIS clients send query parameters via:
- GET with URL query parameters
- POST with application/x-www-form-urlencoded body

Both must be handled. _get_query_params() merges both sources.
"""

import json
import logging

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool

from pg_featureserver.config import get_settings
from pg_featureserver.query.catalog import get_catalog
from pg_featureserver.query.engine import query_features
from pg_featureserver.query.errors import (
    GeometryConversionFailed,
    InvalidExtent,
    InvalidParameter,
    UnknownService,
)
from pg_featureserver.query.geometry import check_srid
from pg_featureserver.query.models import ALL_FIELDS, LayerMetadata, QueryParams

from ..metadata import build_layer_metadata, build_service_metadata
from ..serializers import esri_json, geojson

logger = logging.getLogger(__name__)
router = APIRouter()


async def _get_query_params(request: Request) -> dict:
    """Merge query string and form body params.

    ArcGIS Pro sends POST with form-encoded body for query requests.
    Query string params take precedence over form body.
    """
    params = dict(request.query_params)

    if request.method == "POST":
        content_type = request.headers.get("content-type", "")
        if "form" in content_type or "urlencoded" in content_type:
            form_data = await request.form()
            for key, value in form_data.items():
                if key not in params:
                    params[key] = value

    return params


def _check_service(service_id: str):
    settings = get_settings()
    if service_id != settings.service_name:
        raise UnknownService(f"Service '{service_id}' does not exist")


@router.get("/{service_id}/FeatureServer")
@router.post("/{service_id}/FeatureServer")
async def feature_server_info(service_id: str):
    """
    Service-level metadata.

    ArcGIS clients call this to discover layers, spatial reference,
    and capabilities.
    """
    _check_service(service_id)
    settings = get_settings()
    return build_service_metadata(
        service_id, get_catalog(), settings.max_record_count
    )


@router.get("/{service_id}/FeatureServer/{layer_id}")
@router.post("/{service_id}/FeatureServer/{layer_id}")
async def layer_info(service_id: str, layer_id: int):
    """
    Layer-level metadata.

    Returns field definitions, geometry type, extent, objectIdField,
    maxRecordCount, supportedQueryFormats, etc.
    """
    _check_service(service_id)
    layer = get_catalog().get(layer_id)
    return build_layer_metadata(layer, get_settings().max_record_count)


@router.get("/{service_id}/FeatureServer/{layer_id}/query")
@router.post("/{service_id}/FeatureServer/{layer_id}/query")
async def query_layer(request: Request, service_id: str, layer_id: int):
    """
    Feature query endpoint.

    Translates GeoServices query params to QueryParams, runs the
    PostGIS query in the threadpool, then serializes to the
    requested format.
    """
    _check_service(service_id)
    p = await _get_query_params(request)
    layer = get_catalog().get(layer_id)
    params = parse_query_params(p, layer, get_settings().max_record_count)
    fmt = p.get("f") or "json"
    return await run_in_threadpool(_run_query, params, fmt)


def _run_query(params: QueryParams, fmt: str) -> dict:
    result = query_features(params)
    if fmt == "geojson":
        return geojson.serialize(
            result.table, result.layer, params.return_geometry, params.out_sr
        )
    return esri_json.assemble(
        result.table, result.layer, params.return_geometry, params.out_sr
    )


def parse_query_params(
    p: dict, layer: LayerMetadata, max_record_count: int
) -> QueryParams:
    """Translate raw GeoServices query parameters into QueryParams."""
    where = (p.get("where") or "").strip()
    if where == "1=1":
        where = ""

    out_sr = _parse_spatial_ref(p.get("outSR"), "outSR") or layer.srid
    extent, extent_sr = _parse_extent(p.get("geometry"))
    if extent_sr is None:
        extent_sr = _parse_spatial_ref(p.get("inSR"), "inSR")

    for srid in {out_sr, extent_sr} - {None, layer.srid}:
        try:
            check_srid(srid)
        except GeometryConversionFailed as e:
            raise InvalidParameter(str(e))

    limit = _int(p, "resultRecordCount", max_record_count)
    if limit > max_record_count:
        limit = max_record_count

    return QueryParams(
        layer_id=layer.id,
        out_fields=_parse_out_fields(p.get("outFields")),
        return_geometry=_bool(p, "returnGeometry", True),
        where=where,
        extent=extent,
        extent_sr=extent_sr,
        out_sr=out_sr,
        max_allowable_offset=_float(p, "maxAllowableOffset"),
        offset=_int(p, "resultOffset", 0),
        limit=limit,
    )


def _bool(p: dict, key: str, default: bool) -> bool:
    val = p.get(key)
    if val is None or val == "":
        return default
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in ("true", "1", "yes")


def _int(p: dict, key: str, default: int) -> int:
    val = p.get(key)
    if val is None or str(val).strip() == "":
        return default
    try:
        return int(str(val).strip())
    except ValueError:
        raise InvalidParameter(f"{key} must be an integer: {val!r}")


def _float(p: dict, key: str):
    val = p.get(key)
    if val is None or str(val).strip() == "":
        return None
    try:
        return float(str(val).strip())
    except ValueError:
        raise InvalidParameter(f"{key} must be a number: {val!r}")


def _parse_out_fields(out_fields):
    if out_fields is None or out_fields.strip() in ("", ALL_FIELDS):
        return ALL_FIELDS
    names = [f.strip() for f in out_fields.split(",") if f.strip()]
    if ALL_FIELDS in names:
        return ALL_FIELDS
    return names


def _parse_spatial_ref(sr, name: str):
    """
    Parse a spatial reference parameter from Esri clients.

    ArcGIS Pro sends outSR/inSR as a JSON spatial reference object like:
      {"wkid":28992,"latestWkid":28992}
    Plain WKID integers (e.g. "28992") are also accepted.

    Returns the WKID as an integer, or None when the parameter is absent.
    """
    if sr is None or str(sr).strip() == "":
        return None
    try:
        return int(sr)
    except (ValueError, TypeError):
        pass
    try:
        obj = json.loads(sr)
    except (json.JSONDecodeError, TypeError):
        obj = None
    if isinstance(obj, dict):
        wkid = obj.get("latestWkid") or obj.get("wkid")
        if isinstance(wkid, int) and not isinstance(wkid, bool):
            return wkid
    raise InvalidParameter(f"Invalid {name}: {sr!r}")


def _parse_extent(geometry_str):
    """
    Parse the Esri geometry parameter into an envelope.

    Handles:
    - Envelope: {"xmin":..., "ymin":..., "xmax":..., "ymax":...,
                 "spatialReference": {"wkid": ...}}
    - Plain bbox string: "xmin,ymin,xmax,ymax"

    Returns (extent, wkid); both are None when no geometry was sent.
    """
    if geometry_str is None or geometry_str.strip() == "":
        return None, None

    try:
        geom = json.loads(geometry_str)
    except json.JSONDecodeError:
        try:
            parts = [float(x) for x in geometry_str.split(",")]
        except ValueError:
            raise InvalidExtent(f"Cannot parse geometry: {geometry_str}")
        if len(parts) != 4:
            raise InvalidExtent(f"Cannot parse geometry: {geometry_str}")
        return parts, None

    if not isinstance(geom, dict):
        raise InvalidExtent(f"Cannot parse geometry: {geometry_str}")

    try:
        extent = [float(geom[k]) for k in ("xmin", "ymin", "xmax", "ymax")]
    except KeyError as e:
        raise InvalidExtent(f"Envelope is missing {e.args[0]}")
    except (TypeError, ValueError):
        raise InvalidExtent(f"Envelope coordinates must be numbers: {geometry_str}")

    wkid = None
    sr = geom.get("spatialReference")
    if isinstance(sr, dict):
        wkid = sr.get("latestWkid") or sr.get("wkid")
        if not isinstance(wkid, int) or isinstance(wkid, bool):
            raise InvalidExtent(f"Invalid envelope spatialReference: {sr}")
    return extent, wkid
