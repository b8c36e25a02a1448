"""
Layer catalog: layer id -> table, geometry kind and field schema.

The built-in layers are declarative data below. A YAML file named by
the PG_FEATURESERVER_LAYERS setting replaces them; ${ENV_VAR}
placeholders in its string values are resolved from the environment.
"""

import logging
import os
import re
from typing import Optional

import yaml

from pg_featureserver.config import get_settings

from .errors import UnknownLayer
from .models import LayerMetadata

logger = logging.getLogger(__name__)

_catalog = None

_ENV_RE = re.compile(r"\$\{(\w+)\}")

_STRING_200 = {"type": "esriFieldTypeString", "length": 200}


def _string_fields(*names: str) -> list[dict]:
    return [{"name": n, **_STRING_200} for n in names]


_OBJECTID = {"name": "OBJECTID", "type": "esriFieldTypeOID"}

BUILTIN_LAYERS = [
    {
        "id": 0,
        "name": "Archeologische Verwachtingenkaart",
        "table": {"schema": "staging_data", "name": "d43498d0-e418-44fe-b5ca-7635d7770e2a"},
        "geometry_type": "polygon",
        "fields": [
            _OBJECTID,
            {"name": "CD_VISIE", "type": "esriFieldTypeInteger"},
            *_string_fields("VERWACHTIN", "OMSCHRIJVI", "ONDERZOEKS"),
        ],
    },
    {
        "id": 1,
        "name": "Beschermingsplan Boomkikkers",
        "table": {"schema": "staging_data", "name": "12e0f00d-cbea-4517-bc5d-97cb0828419e"},
        "geometry_type": "point",
        "fields": [
            _OBJECTID,
            *_string_fields("OMS"),
            {"name": "NR", "type": "esriFieldTypeInteger"},
        ],
    },
    {
        "id": 2,
        "name": "Onderwijsinstellingen",
        "table": {"schema": "staging_data", "name": "7cdb24f1-7fcd-45df-83d5-ec2c7b86e355"},
        "geometry_type": "point",
        "fields": [
            _OBJECTID,
            *_string_fields(
                "VESTNAAM", "STRAATNAAM", "HUISNR_TOE", "POSTCODE",
                "PLAATSNAAM", "GEMEENTENA", "TELEFOONNU", "HOOFDTYPE",
                "ONDWGEBI_1", "COROP_NAAM", "WGR_NAAM",
            ),
        ],
    },
]


class Catalog:
    """Read-only mapping of layer id to LayerMetadata."""

    def __init__(self, layers: list[LayerMetadata]):
        self._layers = {}
        for layer in layers:
            if layer.id in self._layers:
                raise ValueError(f"Duplicate layer id: {layer.id}")
            self._layers[layer.id] = layer

    @classmethod
    def from_dicts(cls, entries: list[dict]) -> "Catalog":
        layers = []
        for entry in entries:
            entry = dict(entry)
            entry["fields"] = [
                {"alias": f["name"], **f} for f in entry.get("fields", [])
            ]
            layers.append(LayerMetadata(**entry))
        return cls(layers)

    def lookup(self, layer_id: int) -> Optional[LayerMetadata]:
        return self._layers.get(layer_id)

    def get(self, layer_id: int) -> LayerMetadata:
        layer = self.lookup(layer_id)
        if layer is None:
            raise UnknownLayer(f"Layer {layer_id} does not exist")
        return layer

    def layers(self) -> list[LayerMetadata]:
        """All layers ordered by id."""
        return [self._layers[k] for k in sorted(self._layers)]

    def __len__(self):
        return len(self._layers)


def _resolve_env_vars(value):
    """Replace ${VAR} placeholders with environment variable values."""
    if isinstance(value, str):
        return _ENV_RE.sub(
            lambda m: os.environ.get(m.group(1), m.group(0)), value
        )
    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_vars(v) for v in value]
    return value


def load_catalog(path: Optional[str] = None) -> Catalog:
    """Build a catalog from a YAML file, or the built-in layers."""
    if not path:
        return Catalog.from_dicts(BUILTIN_LAYERS)

    with open(path) as f:
        config = yaml.safe_load(f) or {}
    entries = _resolve_env_vars(config.get("layers") or [])
    if not entries:
        raise ValueError(f"No layers defined in {path}")
    logger.info("Loaded %d layers from %s", len(entries), path)
    return Catalog.from_dicts(entries)


def get_catalog() -> Catalog:
    """Singleton catalog instance."""
    global _catalog
    if _catalog is None:
        _catalog = load_catalog(get_settings().layers_file)
    return _catalog


def set_catalog(catalog: Catalog):
    """Override the catalog instance (used for testing)."""
    global _catalog
    _catalog = catalog


def reset_catalog():
    """Reset the singleton catalog (used for testing)."""
    global _catalog
    _catalog = None
