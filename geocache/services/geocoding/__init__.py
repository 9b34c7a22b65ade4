"""Geocoding service module.

Provides OpenStreetMap Nominatim reverse geocoding.
"""

from .service import (
    UNKNOWN_LOCATION,
    Geocoder,
    NominatimService,
    extract_city_name,
)

__all__ = [
    "UNKNOWN_LOCATION",
    "Geocoder",
    "NominatimService",
    "extract_city_name",
]
