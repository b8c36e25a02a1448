"""
Serialize a ColumnTable -> GeoJSON FeatureCollection.

Used when f=geojson is requested from the GeoServices endpoint.
"""

import logging

from pg_featureserver.query.errors import GeometryConversionFailed
from pg_featureserver.query.geometry import codec
from pg_featureserver.query.models import ColumnTable, LayerMetadata

from .esri_json import row_attributes

logger = logging.getLogger(__name__)


def serialize(
    table: ColumnTable,
    meta: LayerMetadata,
    return_geometry: bool,
    out_sr: int,
) -> dict:
    """Convert a ColumnTable to a GeoJSON FeatureCollection."""
    n = table.check_row_count()
    if n == 0:
        return {
            "type": "FeatureCollection",
            "features": [],
        }

    data = table.to_pydict()
    payloads = data[table.geometry_column]
    field_names = table.field_names
    features = []

    for i in range(n):
        geometry = None
        if return_geometry:
            try:
                geometry = codec.convert(
                    payloads[i], "geojson", "geojson", out_sr, source_sr=meta.srid
                )
            except GeometryConversionFailed as e:
                logger.warning(
                    "Layer %d row %d: geometry omitted: %s", meta.id, i, e
                )

        features.append(
            {
                "type": "Feature",
                "geometry": geometry,
                "properties": row_attributes(data, field_names, i, meta),
            }
        )

    return {
        "type": "FeatureCollection",
        "features": features,
    }
