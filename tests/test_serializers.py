"""Tests for the Esri JSON and GeoJSON serializers."""

import json

import pytest

from pg_featureserver.geoservices.serializers import esri_json, geojson
from pg_featureserver.query.errors import InvariantViolation
from pg_featureserver.query.models import ColumnTable


def point_payload(x, y):
    return json.dumps({"type": "Point", "coordinates": [x, y]})


def square_payload(x, y, size):
    ring = [[x, y], [x + size, y], [x + size, y + size], [x, y + size], [x, y]]
    return json.dumps({"type": "Polygon", "coordinates": [ring]})


class TestAssemble:
    """Test ColumnTable -> Esri JSON FeatureSet."""

    def test_feature_set_header(self, frog_table, point_layer):
        doc = esri_json.assemble(frog_table, point_layer, True, 28992)
        assert doc["objectIdFieldName"] == "OBJECTID"
        assert doc["globalIdFieldName"] == ""
        assert doc["geometryType"] == "esriGeometryPoint"
        assert doc["spatialReference"] == {"wkid": 28992, "latestWkid": 28992}

    def test_one_feature_per_row(self, frog_table, point_layer):
        doc = esri_json.assemble(frog_table, point_layer, True, 28992)
        assert len(doc["features"]) == 3

    def test_typed_attributes(self, frog_table, point_layer):
        features = esri_json.assemble(frog_table, point_layer, True, 28992)["features"]
        assert features[0]["attributes"] == {"OBJECTID": 1, "OMS": "poel noord", "NR": 3}
        assert features[2]["attributes"] == {"OBJECTID": 3, "OMS": None, "NR": 12}

    def test_point_geometry(self, frog_table, point_layer):
        features = esri_json.assemble(frog_table, point_layer, True, 28992)["features"]
        assert features[1]["geometry"] == {
            "x": 4.5,
            "y": 5.5,
            "spatialReference": {"wkid": 28992},
        }

    def test_without_geometry(self, frog_table, point_layer):
        features = esri_json.assemble(frog_table, point_layer, False, 28992)["features"]
        assert all("geometry" not in f for f in features)

    def test_bad_geometry_omitted(self, point_layer):
        table = ColumnTable.from_columns(
            {
                "OBJECTID": ["1", "2", "3"],
                "geojson_payload": [point_payload(1, 1), "{broken", point_payload(3, 3)],
            }
        )
        features = esri_json.assemble(table, point_layer, True, 28992)["features"]
        assert len(features) == 3
        assert "geometry" in features[0]
        assert "geometry" not in features[1]
        assert features[1]["attributes"] == {"OBJECTID": 2}
        assert features[2]["geometry"]["x"] == 3.0

    def test_null_geometry_row_kept(self, point_layer):
        table = ColumnTable.from_columns(
            {"OBJECTID": ["1", "2"], "geojson_payload": [None, point_payload(2, 2)]}
        )
        features = esri_json.assemble(table, point_layer, True, 28992)["features"]
        assert features[0] == {"attributes": {"OBJECTID": 1}}
        assert features[1]["geometry"]["x"] == 2.0

    def test_idempotent(self, frog_table, point_layer):
        first = esri_json.assemble(frog_table, point_layer, True, 28992)
        second = esri_json.assemble(frog_table, point_layer, True, 28992)
        assert first == second

    def test_empty_table(self, point_layer):
        table = ColumnTable.empty(["OBJECTID", "OMS", "NR"])
        doc = esri_json.assemble(table, point_layer, True, 28992)
        assert doc["features"] == []
        assert len(doc["fields"]) == 3

    def test_polygon_layer(self, polygon_layer):
        table = ColumnTable.from_columns(
            {
                "OBJECTID": ["7"],
                "CD_VISIE": ["2"],
                "geojson_payload": [square_payload(0, 0, 5)],
            }
        )
        doc = esri_json.assemble(table, polygon_layer, True, 28992)
        assert doc["geometryType"] == "esriGeometryPolygon"
        feature = doc["features"][0]
        assert feature["attributes"] == {"OBJECTID": 7, "CD_VISIE": 2}
        assert len(feature["geometry"]["rings"]) == 1

    def test_unconvertible_integer_kept_as_text(self, point_layer):
        table = ColumnTable.from_columns(
            {"NR": ["4.0", "abc", "4.5"], "geojson_payload": [None, None, None]}
        )
        features = esri_json.assemble(table, point_layer, False, 28992)["features"]
        assert [f["attributes"]["NR"] for f in features] == [4, "abc", "4.5"]


class TestFieldDefinitions:
    def test_field_definitions(self, point_layer):
        fields = esri_json.build_field_definitions(point_layer)
        assert [f["name"] for f in fields] == ["OBJECTID", "OMS", "NR"]
        assert fields[0]["type"] == "esriFieldTypeOID"
        assert fields[1] == {
            "name": "OMS",
            "type": "esriFieldTypeString",
            "alias": "OMS",
            "sqlType": "sqlTypeOther",
            "length": 200,
            "domain": None,
            "defaultValue": None,
        }
        assert "length" not in fields[2]


class TestColumnTable:
    """Test the column-major result invariants."""

    def test_unequal_columns_rejected(self):
        with pytest.raises(InvariantViolation):
            ColumnTable.from_columns({"OMS": ["a", "b"], "geojson_payload": ["x"]})

    def test_payload_required(self):
        with pytest.raises(InvariantViolation):
            ColumnTable.from_columns({"OMS": ["a"]})

    def test_field_names_exclude_payload(self, frog_table):
        assert frog_table.field_names == ["OBJECTID", "OMS", "NR"]
        assert frog_table.check_row_count() == 3


class TestGeoJson:
    """Test ColumnTable -> GeoJSON FeatureCollection."""

    def test_feature_collection(self, frog_table, point_layer):
        doc = geojson.serialize(frog_table, point_layer, True, 28992)
        assert doc["type"] == "FeatureCollection"
        assert len(doc["features"]) == 3
        first = doc["features"][0]
        assert first["type"] == "Feature"
        assert first["geometry"] == {"type": "Point", "coordinates": [1.0, 2.0]}
        assert first["properties"] == {"OBJECTID": 1, "OMS": "poel noord", "NR": 3}

    def test_without_geometry(self, frog_table, point_layer):
        doc = geojson.serialize(frog_table, point_layer, False, 28992)
        assert all(f["geometry"] is None for f in doc["features"])

    def test_empty(self, point_layer):
        table = ColumnTable.empty(["OMS"])
        assert geojson.serialize(table, point_layer, True, 28992) == {
            "type": "FeatureCollection",
            "features": [],
        }
