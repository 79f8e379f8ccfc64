"""GeoBlock — demonstration geo-blocking HTTP service."""

__version__ = "1.0.0"
