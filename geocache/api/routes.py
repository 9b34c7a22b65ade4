"""API routes for geocache.

Reverse geocoding served from the spatial cache:
- Exact bucket hit → cached result
- Nearby cached result within the configured radius → that result
- Otherwise Nominatim, and the result is cached

Errors are returned in the response body as AppError payloads rather than
HTTP error statuses, so clients always get the same envelope.
"""

import logging
from typing import Any, Optional

import httpx
from fastapi import APIRouter, Query
from pydantic import BaseModel

from geocache.models import AppError, CacheStats, CityResult, ErrorCode
from geocache.services import SpatialTTLCache, create_geocache

logger = logging.getLogger(__name__)

router = APIRouter()


# Request/Response models
class ReverseGeocodeResponse(BaseModel):
    """Response model for reverse geocoding."""
    success: bool
    result: Optional[CityResult] = None
    cached: bool = False
    error: Optional[AppError] = None


class NearbyResponse(BaseModel):
    """Response model for radius lookups."""
    success: bool
    result: Optional[Any] = None
    error: Optional[AppError] = None


class CleanupResponse(BaseModel):
    success: bool
    removed: int
    size: int


# Service instance
_cache: SpatialTTLCache | None = None


def get_cache() -> SpatialTTLCache:
    global _cache
    if _cache is None:
        _cache = create_geocache()
    return _cache


def set_cache(cache: SpatialTTLCache | None) -> None:
    """Install the cache used by the routes (app startup and tests)."""
    global _cache
    _cache = cache


@router.get("/reverse", response_model=ReverseGeocodeResponse)
async def reverse_geocode(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    fallback: bool = Query(True, description="Degrade to nearby or placeholder result on geocoder failure"),
) -> ReverseGeocodeResponse:
    """Resolve a coordinate to its locality."""
    cache = get_cache()

    try:
        if fallback:
            result, cached = await cache.lookup_city_with_fallback(lat, lon)
        else:
            result, cached = await cache.lookup_city(lat, lon)
        return ReverseGeocodeResponse(success=True, result=result, cached=cached)

    except httpx.HTTPError as e:
        logger.info(f"[API] Geocoder error for ({lat}, {lon}): {e}")
        return ReverseGeocodeResponse(
            success=False,
            error=AppError(
                code=ErrorCode.GEOCODER_ERROR,
                message=str(e),
                user_message="The geocoding service is unavailable. Please try again later.",
            ),
        )

    except Exception as e:
        logger.exception("Unhandled error")
        return ReverseGeocodeResponse(
            success=False,
            error=AppError(
                code=ErrorCode.API_ERROR,
                message=str(e),
                user_message="Something went wrong. Please try again later.",
            ),
        )


@router.get("/nearby", response_model=NearbyResponse)
async def nearby(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    radius: float = Query(5000, ge=0, description="Search radius in meters"),
) -> NearbyResponse:
    """Nearest cached result within a radius. Never calls the geocoder."""
    value = get_cache().get_within_radius(lat, lon, radius)
    if value is None:
        return NearbyResponse(
            success=False,
            error=AppError(
                code=ErrorCode.NOT_FOUND,
                message=f"No cached entry within {radius:.0f}m of ({lat}, {lon})",
                user_message="No cached location nearby.",
            ),
        )
    return NearbyResponse(success=True, result=value)


@router.get("/cache/stats", response_model=CacheStats)
async def cache_stats() -> CacheStats:
    return get_cache().stats()


@router.post("/cache/cleanup", response_model=CleanupResponse)
async def cache_cleanup(force: bool = Query(False)) -> CleanupResponse:
    """Sweep expired entries now; ``force`` also trims to max size."""
    cache = get_cache()
    removed = cache.cleanup(force=force)
    return CleanupResponse(success=True, removed=removed, size=cache.size())


@router.delete("/cache")
async def clear_cache() -> dict:
    get_cache().clear()
    logger.info("[API] Cache cleared")
    return {"success": True}
