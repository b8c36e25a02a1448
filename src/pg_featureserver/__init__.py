"""PostGIS-backed Esri GeoServices FeatureServer."""

__version__ = "0.1.0"
