"""GeoBlock HTTP API routers."""
