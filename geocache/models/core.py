"""Core data models for geocache.

This module contains the Pydantic models shared by the cache, the
persistence backends, the geocoder and the HTTP API: coordinates,
reverse-geocoding results, cache entries and API error payloads.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Coordinate(BaseModel):
    """Geographic coordinate in degrees.

    Not range-checked: the cache processes out-of-range values
    geometrically and leaves validation to callers.
    """

    lat: float = Field(..., description="Latitude in degrees")
    lon: float = Field(..., description="Longitude in degrees")


class BoundingBox(BaseModel):
    """Axis-aligned latitude/longitude box."""

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float


class AddressDetails(BaseModel):
    """Structured address parts returned by Nominatim.

    Only the fields used for picking a display name are declared; any other
    address parts Nominatim sends are kept as extras.
    """

    model_config = ConfigDict(extra="allow")

    city: Optional[str] = None
    town: Optional[str] = None
    village: Optional[str] = None
    municipality: Optional[str] = None
    county: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None


class CityResult(BaseModel):
    """Reverse-geocoding result for a coordinate."""

    name: str = Field(..., description="Best available locality name")
    full_address: str = Field(default="", description="Nominatim display_name")
    details: AddressDetails = Field(default_factory=AddressDetails)
    coordinate: Coordinate = Field(..., description="Coordinate that was looked up")


class CacheEntry(BaseModel):
    """A single cached value.

    ``lat``/``lon`` are the original coordinate passed to ``set``, not the
    bucket centre, so radius searches measure from the real point.
    """

    value: Any
    created_at: float = Field(..., description="UNIX timestamp of insertion")
    expires_at: float = Field(..., description="UNIX timestamp after which the entry is absent")
    lat: float
    lon: float

    @model_validator(mode="after")
    def _check_expiry_order(self) -> "CacheEntry":
        if self.expires_at < self.created_at:
            raise ValueError("expires_at must not be earlier than created_at")
        return self

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class CacheStats(BaseModel):
    """Snapshot of cache configuration and occupancy."""

    size: int = Field(..., ge=0)
    max_size: int = Field(..., gt=0)
    precision: int = Field(..., ge=0)
    default_expiry: float = Field(..., gt=0, description="Seconds")
    cleanup_interval: float = Field(..., ge=0, description="Seconds, 0 disables the sweeper")
    persistent: bool = Field(..., description="Whether a storage backend is attached")


class StorageType(str, Enum):
    """Available persistence backends."""

    MEMORY = "memory"
    FILE = "file"
    REDIS = "redis"


class ErrorCode(str, Enum):
    """Error codes returned by the HTTP API."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    GEOCODER_ERROR = "GEOCODER_ERROR"
    NOT_FOUND = "NOT_FOUND"
    API_ERROR = "API_ERROR"


class AppError(BaseModel):
    """Error payload included in unsuccessful API responses."""

    code: ErrorCode
    message: str = Field(..., description="Technical error message")
    user_message: str = Field(..., description="Message suitable for end users")
