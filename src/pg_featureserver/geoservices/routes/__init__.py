"""GeoServices REST routes."""
