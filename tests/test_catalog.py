"""Tests for the layer catalog and settings."""

import pytest
from pydantic import ValidationError

from pg_featureserver.config import Settings, get_settings, reset_settings
from pg_featureserver.query.catalog import (
    Catalog,
    get_catalog,
    load_catalog,
    reset_catalog,
)
from pg_featureserver.query.errors import UnknownLayer

LAYERS_YAML = """
layers:
  - id: 5
    name: Bomen
    table:
      schema: ${TREE_SCHEMA}
      name: bomen
    geometry_type: point
    srid: 28992
    extent: [0, 300000, 280000, 625000]
    fields:
      - name: OBJECTID
        type: esriFieldTypeOID
      - name: SOORT
        alias: Boomsoort
        length: 80
"""


class TestBuiltinCatalog:
    """Test the built-in layers."""

    def test_three_layers(self, catalog):
        assert len(catalog) == 3
        assert [layer.id for layer in catalog.layers()] == [0, 1, 2]

    def test_geometry_kinds(self, catalog):
        assert catalog.get(0).geometry_type == "polygon"
        assert catalog.get(1).geometry_type == "point"
        assert catalog.get(2).geometry_type == "point"

    def test_table_reference(self, point_layer):
        assert point_layer.table.schema_name == "staging_data"
        assert point_layer.table.sql() == (
            '"staging_data"."12e0f00d-cbea-4517-bc5d-97cb0828419e"'
        )

    def test_every_layer_has_objectid(self, catalog):
        for layer in catalog.layers():
            assert layer.field_names[0] == "OBJECTID"

    def test_string_fields(self, catalog):
        vestnaam = catalog.get(2).field("VESTNAAM")
        assert vestnaam.type == "esriFieldTypeString"
        assert vestnaam.length == 200
        assert vestnaam.label == "VESTNAAM"

    def test_field_lookup_case_insensitive(self, polygon_layer):
        assert polygon_layer.field("cd_visie").name == "CD_VISIE"
        assert polygon_layer.field("nope") is None

    def test_unknown_layer(self, catalog):
        assert catalog.lookup(7) is None
        with pytest.raises(UnknownLayer) as exc:
            catalog.get(7)
        assert exc.value.status_code == 404

    def test_duplicate_ids_rejected(self, point_layer):
        with pytest.raises(ValueError):
            Catalog([point_layer, point_layer])


class TestLoadCatalog:
    """Test YAML layer configuration."""

    def test_yaml_layers(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TREE_SCHEMA", "groen")
        path = tmp_path / "layers.yaml"
        path.write_text(LAYERS_YAML)

        catalog = load_catalog(str(path))
        layer = catalog.get(5)
        assert layer.table.sql() == '"groen"."bomen"'
        assert layer.extent == (0.0, 300000.0, 280000.0, 625000.0)
        assert layer.field("SOORT").label == "Boomsoort"
        assert layer.field("SOORT").type == "esriFieldTypeString"

    def test_unresolved_placeholder_kept(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TREE_SCHEMA", raising=False)
        path = tmp_path / "layers.yaml"
        path.write_text(LAYERS_YAML)
        layer = load_catalog(str(path)).get(5)
        assert layer.table.schema_name == "${TREE_SCHEMA}"

    def test_empty_file_rejected(self, tmp_path):
        path = tmp_path / "layers.yaml"
        path.write_text("layers: []\n")
        with pytest.raises(ValueError):
            load_catalog(str(path))

    def test_settings_select_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TREE_SCHEMA", "groen")
        path = tmp_path / "layers.yaml"
        path.write_text(LAYERS_YAML)
        monkeypatch.setenv("PG_FEATURESERVER_LAYERS", str(path))
        reset_settings()
        reset_catalog()
        assert [layer.id for layer in get_catalog().layers()] == [5]


class TestSettings:
    """Test environment-driven settings."""

    def test_defaults(self, monkeypatch):
        for name in ("POOL_MIN_SIZE", "POOL_MAX_SIZE", "STATEMENT_TIMEOUT_MS", "LOG_LEVEL"):
            monkeypatch.delenv(f"PG_FEATURESERVER_{name}", raising=False)
        settings = Settings()
        assert settings.service_name == "staging_data"
        assert settings.max_record_count == 1000
        assert settings.statement_timeout_ms == 30000
        assert settings.layers_file is None
        assert settings.log_level == "INFO"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("PG_FEATURESERVER_SERVICE_NAME", "natuur")
        monkeypatch.setenv("PG_FEATURESERVER_MAX_RECORD_COUNT", "250")
        monkeypatch.setenv("PG_FEATURESERVER_LOG_LEVEL", "debug")
        reset_settings()
        settings = get_settings()
        assert settings.service_name == "natuur"
        assert settings.max_record_count == 250
        assert settings.log_level == "DEBUG"
        assert get_settings() is settings

    def test_invalid_record_count(self):
        with pytest.raises(ValidationError):
            Settings(max_record_count=0)

    def test_pool_bounds(self):
        with pytest.raises(ValidationError):
            Settings(pool_min_size=5, pool_max_size=2)

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            Settings(log_level="loud")
