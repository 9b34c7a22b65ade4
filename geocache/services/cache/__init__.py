"""Cache service module.

Provides the coordinate-keyed TTL cache used for reverse-geocoding results.
"""

from .service import SpatialTTLCache, create_geocache

__all__ = [
    "SpatialTTLCache",
    "create_geocache",
]
