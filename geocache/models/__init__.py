"""Shared data models."""

from .core import (
    AddressDetails,
    AppError,
    BoundingBox,
    CacheEntry,
    CacheStats,
    CityResult,
    Coordinate,
    ErrorCode,
    StorageType,
)

__all__ = [
    "AddressDetails",
    "AppError",
    "BoundingBox",
    "CacheEntry",
    "CacheStats",
    "CityResult",
    "Coordinate",
    "ErrorCode",
    "StorageType",
]
