"""
Serialize a ColumnTable -> Esri JSON FeatureSet response.

Esri JSON is the native JSON format for ArcGIS Feature Services.
It differs from GeoJSON in geometry representation:
- Polygons use {"rings": [[[x,y],...], ...]}
- Points use {"x": val, "y": val}
- SpatialReference is an object: {"wkid": 28992}

The query result arrives column-major; features are emitted row by
row in result order.
"""

import logging
import math

from pg_featureserver.query.errors import GeometryConversionFailed
from pg_featureserver.query.geometry import ESRI_GEOMETRY_TYPE_MAP, to_output_geometry
from pg_featureserver.query.models import OBJECT_ID_FIELD, ColumnTable, LayerMetadata

logger = logging.getLogger(__name__)

_INTEGER_TYPES = {"esriFieldTypeOID", "esriFieldTypeInteger", "esriFieldTypeSmallInteger"}
_FLOAT_TYPES = {"esriFieldTypeDouble", "esriFieldTypeSingle"}


def assemble(
    table: ColumnTable,
    meta: LayerMetadata,
    return_geometry: bool,
    out_sr: int,
) -> dict:
    """Convert a ColumnTable to an Esri JSON FeatureSet document."""
    return {
        "objectIdFieldName": OBJECT_ID_FIELD,
        "globalIdFieldName": "",
        "geometryType": ESRI_GEOMETRY_TYPE_MAP[meta.geometry_type],
        "spatialReference": {"wkid": out_sr, "latestWkid": out_sr},
        "fields": build_field_definitions(meta),
        "features": build_features(table, meta, return_geometry, out_sr),
    }


def build_features(
    table: ColumnTable,
    meta: LayerMetadata,
    return_geometry: bool,
    out_sr: int,
) -> list[dict]:
    n = table.check_row_count()
    data = table.to_pydict()
    payloads = data[table.geometry_column]
    field_names = table.field_names
    logger.debug("Assembling %d features for layer %d", n, meta.id)

    features = []
    for i in range(n):
        feature = {"attributes": row_attributes(data, field_names, i, meta)}
        if return_geometry:
            try:
                feature["geometry"] = to_output_geometry(
                    payloads[i], out_sr, source_sr=meta.srid
                )
            except GeometryConversionFailed as e:
                logger.warning(
                    "Layer %d row %d: geometry omitted: %s", meta.id, i, e
                )
        features.append(feature)
    return features


def row_attributes(
    data: dict[str, list], field_names: list[str], index: int, meta: LayerMetadata
) -> dict:
    """Typed attribute values of one row, in field order."""
    attributes = {}
    for name in field_names:
        field = meta.field(name)
        field_type = field.type if field is not None else "esriFieldTypeString"
        attributes[name] = _to_esri_value(data[name][index], field_type, name)
    return attributes


def build_field_definitions(meta: LayerMetadata) -> list[dict]:
    """Build Esri field definition array from the layer schema."""
    fields = []
    for f in meta.fields:
        definition = {
            "name": f.name,
            "type": f.type,
            "alias": f.label,
            "sqlType": "sqlTypeOther",
        }
        if f.length is not None:
            definition["length"] = f.length
        definition["domain"] = None
        definition["defaultValue"] = None
        fields.append(definition)
    return fields


def _to_esri_value(value, field_type: str, name: str):
    """Coerce a stringified database value to its Esri field type."""
    if value is None:
        return None
    try:
        if field_type in _INTEGER_TYPES:
            try:
                return int(value)
            except ValueError:
                number = float(value)
                if not number.is_integer():
                    raise
                return int(number)
        if field_type in _FLOAT_TYPES:
            number = float(value)
            if not math.isfinite(number):
                raise ValueError(value)
            return number
    except ValueError:
        logger.warning(
            "Field %s: cannot convert %r to %s, returning text",
            name, value, field_type,
        )
    return value
