"""Esri GeoServices REST surface."""
