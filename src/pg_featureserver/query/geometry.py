"""
Geometry conversion.

Handles:
- GeoJSON payload -> Shapely geometry
- Shapely geometry -> Esri JSON / GeoJSON geometry dicts
- Reprojection between EPSG codes with pyproj
- Layer geometry kind -> Esri geometry type mapping
"""

import json
import math
from functools import lru_cache
from typing import Callable, Optional

import pyproj
from pyproj.exceptions import CRSError
from shapely.errors import ShapelyError
from shapely.geometry import mapping as geojson_mapping
from shapely.geometry import shape
from shapely.geometry.polygon import orient
from shapely.ops import transform

from .errors import GeometryConversionFailed

ESRI_GEOMETRY_TYPE_MAP = {
    "point": "esriGeometryPoint",
    "polygon": "esriGeometryPolygon",
}


def decode_geojson(payload) -> object:
    """Parse a GeoJSON geometry string (or dict) into a Shapely geometry."""
    if payload is None or (isinstance(payload, str) and not payload.strip()):
        raise GeometryConversionFailed("Empty geometry payload")
    try:
        data = json.loads(payload) if isinstance(payload, str) else payload
        geom = shape(data)
    except (ValueError, TypeError, KeyError, AttributeError, IndexError, ShapelyError) as e:
        raise GeometryConversionFailed(f"Invalid GeoJSON geometry: {e}") from e
    if geom.is_empty:
        raise GeometryConversionFailed(f"Empty {geom.geom_type} geometry")
    return geom


def encode_esri_json(geom, wkid: Optional[int] = None) -> dict:
    """Convert a Shapely geometry to its Esri JSON representation.

    Polygon exterior rings are written clockwise and holes
    counter-clockwise, as Esri clients expect.
    """
    geom_type = geom.geom_type

    if geom_type == "Point":
        esri = {"x": geom.x, "y": geom.y}
    elif geom_type == "MultiPoint":
        esri = {"points": [_xy(p.coords)[0] for p in geom.geoms]}
    elif geom_type in ("LineString", "MultiLineString"):
        lines = [geom] if geom_type == "LineString" else list(geom.geoms)
        esri = {"paths": [_xy(line.coords) for line in lines]}
    elif geom_type in ("Polygon", "MultiPolygon"):
        polys = [geom] if geom_type == "Polygon" else list(geom.geoms)
        rings = []
        for poly in polys:
            poly = orient(poly, sign=-1.0)
            rings.append(_xy(poly.exterior.coords))
            for interior in poly.interiors:
                rings.append(_xy(interior.coords))
        esri = {"rings": rings}
    else:
        raise GeometryConversionFailed(f"Unsupported geometry type: {geom_type}")

    if wkid is not None:
        esri["spatialReference"] = {"wkid": wkid}
    return esri


def encode_geojson(geom, wkid: Optional[int] = None) -> dict:
    """Convert a Shapely geometry to a GeoJSON geometry dict."""
    return json.loads(json.dumps(geojson_mapping(geom)))


def _xy(coords) -> list[list[float]]:
    return [[c[0], c[1]] for c in coords]


def check_srid(srid: int):
    """Raise GeometryConversionFailed unless srid is a known EPSG code."""
    try:
        pyproj.CRS.from_epsg(srid)
    except CRSError as e:
        raise GeometryConversionFailed(f"Unknown spatial reference: {srid}") from e


@lru_cache(maxsize=32)
def _transformer(from_srid: int, to_srid: int) -> pyproj.Transformer:
    return pyproj.Transformer.from_crs(
        f"EPSG:{from_srid}", f"EPSG:{to_srid}", always_xy=True
    )


def reproject(geom, from_srid: int, to_srid: int):
    """Reproject a Shapely geometry using pyproj."""
    if from_srid == to_srid:
        return geom
    try:
        transformer = _transformer(from_srid, to_srid)
    except CRSError as e:
        raise GeometryConversionFailed(
            f"Cannot transform EPSG:{from_srid} to EPSG:{to_srid}: {e}"
        ) from e
    projected = transform(transformer.transform, geom)
    if not all(math.isfinite(b) for b in projected.bounds):
        raise GeometryConversionFailed(
            f"Geometry falls outside the area of use of EPSG:{to_srid}"
        )
    return projected


class GeometryCodec:
    """Format-keyed geometry decoders and encoders."""

    def __init__(self):
        self.decoders: dict[str, Callable] = {"geojson": decode_geojson}
        self.encoders: dict[str, Callable] = {
            "esrijson": encode_esri_json,
            "geojson": encode_geojson,
        }

    def decode(self, payload, fmt: str = "geojson"):
        try:
            decoder = self.decoders[fmt]
        except KeyError:
            raise GeometryConversionFailed(f"No decoder for format '{fmt}'")
        return decoder(payload)

    def encode(self, geom, fmt: str = "esrijson", wkid: Optional[int] = None) -> dict:
        try:
            encoder = self.encoders[fmt]
        except KeyError:
            raise GeometryConversionFailed(f"No encoder for format '{fmt}'")
        return encoder(geom, wkid)

    def convert(
        self,
        payload,
        source: str,
        target: str,
        target_sr: int,
        source_sr: Optional[int] = None,
    ) -> dict:
        geom = self.decode(payload, source)
        if source_sr is not None:
            geom = reproject(geom, source_sr, target_sr)
        return self.encode(geom, target, target_sr)


codec = GeometryCodec()


def to_output_geometry(
    payload: str, target_sr: int, source_sr: Optional[int] = None
) -> dict:
    """Convert a GeoJSON payload to an Esri JSON geometry tagged with target_sr."""
    return codec.convert(payload, "geojson", "esrijson", target_sr, source_sr)
