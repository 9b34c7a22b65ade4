"""Configuration for the geocache service.

All tunables live on CacheOptions. ``CacheOptions.from_env()`` reads
``GEOCACHE_*`` environment variables (a ``.env`` file is honoured) and falls
back to the documented defaults for anything unset.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from geocache.models import StorageType

logger = logging.getLogger(__name__)


class CacheOptions(BaseModel):
    """Tunables for the cache, its geocoder and its storage backend.

    Durations are in seconds, distances in meters.
    """

    default_expiry: float = Field(30 * 60, gt=0, description="Entry lifetime when set() gets no custom expiry")
    precision: int = Field(4, ge=0, le=12, description="Decimal digits kept in bucket keys")
    max_size: int = Field(1000, gt=0, description="Entries kept before forced eviction")
    cleanup_interval: float = Field(5 * 60, ge=0, description="Sweep period, 0 disables the sweeper")

    nearby_radius: float = Field(5000, ge=0, description="Radius tried before calling the geocoder")
    fallback_radius: float = Field(10000, ge=0, description="Radius tried when the geocoder fails")

    nominatim_endpoint: str = "https://nominatim.openstreetmap.org/reverse"
    request_delay: float = Field(1.0, ge=0, description="Minimum spacing between Nominatim requests")
    user_agent: str = "geocache/1.0.0"
    request_timeout: float = Field(10.0, gt=0)

    storage_type: Optional[StorageType] = Field(None, description="None disables persistence")
    storage_key: str = "geocache"
    storage_path: str = "geocache.json"
    redis_url: str = "redis://localhost:6379"
    storage_ttl: Optional[int] = Field(None, gt=0, description="Redis key expiry")

    @classmethod
    def from_env(cls) -> "CacheOptions":
        """Build options from ``GEOCACHE_*`` environment variables."""
        try:
            load_dotenv()
        except Exception as e:
            logger.debug(f"[CONFIG] .env not loaded: {e}")

        mapping = {
            "default_expiry": "GEOCACHE_DEFAULT_EXPIRY",
            "precision": "GEOCACHE_PRECISION",
            "max_size": "GEOCACHE_MAX_SIZE",
            "cleanup_interval": "GEOCACHE_CLEANUP_INTERVAL",
            "nearby_radius": "GEOCACHE_NEARBY_RADIUS",
            "fallback_radius": "GEOCACHE_FALLBACK_RADIUS",
            "nominatim_endpoint": "GEOCACHE_NOMINATIM_ENDPOINT",
            "request_delay": "GEOCACHE_REQUEST_DELAY",
            "user_agent": "GEOCACHE_USER_AGENT",
            "request_timeout": "GEOCACHE_REQUEST_TIMEOUT",
            "storage_type": "GEOCACHE_STORAGE_TYPE",
            "storage_key": "GEOCACHE_STORAGE_KEY",
            "storage_path": "GEOCACHE_STORAGE_PATH",
            "redis_url": "GEOCACHE_REDIS_URL",
            "storage_ttl": "GEOCACHE_STORAGE_TTL",
        }
        values = {
            field_name: os.getenv(env_name)
            for field_name, env_name in mapping.items()
            if os.getenv(env_name)
        }
        # Pydantic coerces the strings to the declared field types
        return cls.model_validate(values)
