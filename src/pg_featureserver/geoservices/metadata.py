"""
Build Esri GeoServices metadata responses from the layer catalog.

These are the relatively static JSON responses for /FeatureServer
and /FeatureServer/{layer_id}, requested once when a layer is added
to an ArcGIS map.
"""

from pg_featureserver.query.catalog import Catalog
from pg_featureserver.query.geometry import ESRI_GEOMETRY_TYPE_MAP
from pg_featureserver.query.models import OBJECT_ID_FIELD, LayerMetadata

from .serializers.esri_json import build_field_definitions

CURRENT_VERSION = 10.51


def build_service_metadata(
    service_name: str, catalog: Catalog, max_record_count: int
) -> dict:
    """Build /FeatureServer response."""
    all_layers = catalog.layers()
    layers = []
    for layer in all_layers:
        layers.append(
            {
                "id": layer.id,
                "name": layer.name,
                "type": "Feature Layer",
                "geometryType": ESRI_GEOMETRY_TYPE_MAP[layer.geometry_type],
            }
        )

    srid = all_layers[0].srid if all_layers else 28992
    return {
        "currentVersion": CURRENT_VERSION,
        "serviceDescription": f"PostGIS feature service: {service_name}",
        "hasVersionedData": False,
        "supportsDisconnectedEditing": False,
        "supportedQueryFormats": "JSON, geoJSON",
        "maxRecordCount": max_record_count,
        "capabilities": "Query",
        "layers": layers,
        "tables": [],
        "spatialReference": {"wkid": srid, "latestWkid": srid},
    }


def build_layer_metadata(layer: LayerMetadata, max_record_count: int) -> dict:
    """Build /FeatureServer/{layer_id} response."""
    metadata = {
        "currentVersion": CURRENT_VERSION,
        "id": layer.id,
        "name": layer.name,
        "type": "Feature Layer",
        "geometryType": ESRI_GEOMETRY_TYPE_MAP[layer.geometry_type],
        "objectIdField": OBJECT_ID_FIELD,
        "globalIdField": "",
        "displayField": _display_field(layer),
        "fields": build_field_definitions(layer),
        "maxRecordCount": max_record_count,
        "supportedQueryFormats": "JSON, geoJSON",
        "capabilities": "Query",
        "advancedQueryCapabilities": {
            "supportsDistinct": False,
            "supportsOrderBy": False,
            "supportsPagination": True,
            "supportsQueryWithResultType": False,
            "supportsReturningGeometryCentroid": False,
            "supportsStatistics": False,
        },
        "hasAttachments": False,
        "htmlPopupType": "esriServerHTMLPopupTypeAsHTMLText",
    }
    if layer.extent is not None:
        xmin, ymin, xmax, ymax = layer.extent
        metadata["extent"] = {
            "xmin": xmin,
            "ymin": ymin,
            "xmax": xmax,
            "ymax": ymax,
            "spatialReference": {"wkid": layer.srid, "latestWkid": layer.srid},
        }
    return metadata


def _display_field(layer: LayerMetadata) -> str:
    for f in layer.fields:
        if f.type == "esriFieldTypeString":
            return f.name
    return OBJECT_ID_FIELD
