"""Geographic helpers for the spatial cache.

- Haversine great-circle distance in meters
- Bucket keys: coordinates quantised to a fixed number of decimal digits
- Bounding boxes one quantum wide around a coordinate

Bucket keys are built with ``decimal`` from the float's shortest repr, so
rounding is half-away-from-zero on the digits a user actually typed and does
not depend on locale or binary float formatting.
"""

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple

from geocache.models import BoundingBox

EARTH_RADIUS_METERS = 6_371_000


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    # Rounding can push a just past 1 near antipodes
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def _quantize(value: float, precision: int) -> int:
    quantum = Decimal(1).scaleb(-precision)
    rounded = Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return int(rounded.scaleb(precision))


def _format_fixed(quantized: int, precision: int) -> str:
    return f"{Decimal(quantized).scaleb(-precision):.{precision}f}"


class BucketKey(NamedTuple):
    """Exact-match cache key: both coordinates as fixed-point integers.

    ``lat_q`` and ``lon_q`` are the coordinates multiplied by
    ``10 ** precision`` after rounding. Keys built at different precisions
    never compare equal.
    """

    lat_q: int
    lon_q: int
    precision: int

    def __str__(self) -> str:
        return (
            f"{_format_fixed(self.lat_q, self.precision)},"
            f"{_format_fixed(self.lon_q, self.precision)}"
        )


def bucket_key(lat: float, lon: float, precision: int = 4) -> BucketKey:
    """Quantise a coordinate into its bucket.

    Example:
        >>> str(bucket_key(12.345678, 98.7654321, 4))
        '12.3457,98.7654'
    """
    return BucketKey(_quantize(lat, precision), _quantize(lon, precision), precision)


def get_bounding_box(lat: float, lon: float, precision: int) -> BoundingBox:
    """Box extending one quantum (``10 ** -precision`` degrees) around a point."""
    step = 10 ** -precision
    return BoundingBox(
        min_lat=round(lat - step, precision),
        max_lat=round(lat + step, precision),
        min_lon=round(lon - step, precision),
        max_lon=round(lon + step, precision),
    )


def is_within_bounding_box(lat: float, lon: float, bbox: BoundingBox) -> bool:
    return bbox.min_lat <= lat <= bbox.max_lat and bbox.min_lon <= lon <= bbox.max_lon
