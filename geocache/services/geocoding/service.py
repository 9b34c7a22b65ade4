"""Reverse geocoding via OpenStreetMap Nominatim.

Turns a coordinate into a CityResult: the most specific locality name
Nominatim knows for it, the full display address and the raw address parts.

Nominatim's usage policy allows at most one request per second and requires
an identifying User-Agent, so requests are serialised and spaced
``request_delay`` seconds apart.
"""

import asyncio
import logging
import time
from typing import Protocol, runtime_checkable

import httpx

from geocache.models import AddressDetails, CityResult, Coordinate

logger = logging.getLogger(__name__)

UNKNOWN_LOCATION = "Unknown location"

# Most specific first
CITY_NAME_FIELDS = (
    "city",
    "town",
    "village",
    "municipality",
    "county",
    "state",
    "country",
)


@runtime_checkable
class Geocoder(Protocol):
    """Anything that can resolve a coordinate to a CityResult."""

    async def reverse(self, lat: float, lon: float) -> CityResult: ...

    async def close(self) -> None: ...


def extract_city_name(address: AddressDetails) -> str:
    for field_name in CITY_NAME_FIELDS:
        value = getattr(address, field_name)
        if value:
            return value
    return UNKNOWN_LOCATION


class NominatimService:
    """Nominatim reverse-geocoding client.

    Uses a shared httpx client. Errors are logged and re-raised unchanged:
    ``httpx.HTTPStatusError`` for non-2xx responses and
    ``httpx.RequestError`` for network failures. There is no retry here.
    """

    DEFAULT_ENDPOINT = "https://nominatim.openstreetmap.org/reverse"

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        request_delay: float = 1.0,
        user_agent: str = "geocache/1.0.0",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._request_delay = request_delay
        self._user_agent = user_agent
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._rate_lock = asyncio.Lock()
        self._last_request: float | None = None

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @endpoint.setter
    def endpoint(self, value: str) -> None:
        self._endpoint = value

    @property
    def request_delay(self) -> float:
        return self._request_delay

    @request_delay.setter
    def request_delay(self, value: float) -> None:
        self._request_delay = value

    @property
    def user_agent(self) -> str:
        return self._user_agent

    @user_agent.setter
    def user_agent(self, value: str) -> None:
        self._user_agent = value

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _wait_for_slot(self) -> None:
        """Sleep until ``request_delay`` has passed since the previous request.

        Must be called with ``_rate_lock`` held.
        """
        if self._last_request is not None:
            elapsed = time.monotonic() - self._last_request
            if elapsed < self._request_delay:
                await asyncio.sleep(self._request_delay - elapsed)
        self._last_request = time.monotonic()

    async def reverse(self, lat: float, lon: float) -> CityResult:
        """Look up the locality at a coordinate.

        Args:
            lat: Latitude in degrees.
            lon: Longitude in degrees.

        Returns:
            CityResult for the coordinate. ``name`` falls back to
            "Unknown location" when Nominatim has no address parts.

        Raises:
            httpx.HTTPStatusError: Nominatim answered with an error status.
            httpx.RequestError: The request could not be completed.
        """
        params = {
            "format": "json",
            "lat": lat,
            "lon": lon,
            "zoom": 18,
            "addressdetails": 1,
        }
        headers = {"User-Agent": self._user_agent, "Accept": "application/json"}

        async with self._rate_lock:
            await self._wait_for_slot()
            try:
                response = await self._get_client().get(self._endpoint, params=params, headers=headers)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPError as e:
                logger.warning(f"[GEOCODE] Nominatim lookup failed for ({lat}, {lon}): {type(e).__name__}: {e}")
                raise

        address = AddressDetails.model_validate(data.get("address") or {})
        result = CityResult(
            name=extract_city_name(address),
            full_address=data.get("display_name") or "",
            details=address,
            coordinate=Coordinate(lat=lat, lon=lon),
        )
        logger.info(f"[GEOCODE] ({lat:.4f}, {lon:.4f}) -> {result.name}")
        return result
