"""geocache services.

Service layer components:
- Storage: async persistence backends (memory, JSON file, Redis)
- Geocoding: OpenStreetMap Nominatim reverse geocoding
- Cache: spatial TTL cache with radius fallback and write-through
"""

from .storage import (
    FileStorage,
    MemoryStorage,
    RedisStorage,
    StorageBackend,
    StorageType,
    create_storage,
)
from .geocoding import (
    UNKNOWN_LOCATION,
    Geocoder,
    NominatimService,
)
from .cache import SpatialTTLCache, create_geocache

__all__ = [
    # Storage
    "FileStorage",
    "MemoryStorage",
    "RedisStorage",
    "StorageBackend",
    "StorageType",
    "create_storage",
    # Geocoding
    "UNKNOWN_LOCATION",
    "Geocoder",
    "NominatimService",
    # Cache
    "SpatialTTLCache",
    "create_geocache",
]
