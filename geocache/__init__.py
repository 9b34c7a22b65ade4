"""geocache: spatial TTL cache for reverse-geocoding results."""

from geocache.config import CacheOptions
from geocache.models import CityResult, Coordinate
from geocache.services import SpatialTTLCache, create_geocache

__version__ = "1.0.0"

__all__ = [
    "CacheOptions",
    "CityResult",
    "Coordinate",
    "SpatialTTLCache",
    "create_geocache",
]
