"""Spatial TTL cache for reverse-geocoding results.

Coordinates are quantised into bucket keys (see ``geocache.utils.geo``), so
lookups a few meters apart share an entry. When no bucket matches, a radius
search returns the nearest unexpired entry within a distance limit.

Entries expire lazily on read and are also swept periodically by an owned
background thread. Inserting past ``max_size`` evicts expired entries first,
then the oldest-inserted ones.

Persistence is optional: the whole bucket map is written through to a
StorageBackend as one JSON blob. Writes triggered by ``set`` are
fire-and-forget tasks; failures are logged and never reach the caller.
"""

import asyncio
import concurrent.futures
import logging
import threading
import time
from typing import Any, Callable, Optional

from pydantic import ValidationError

from geocache.config import CacheOptions
from geocache.models import AddressDetails, CacheEntry, CacheStats, CityResult, Coordinate
from geocache.services.geocoding import UNKNOWN_LOCATION, Geocoder, NominatimService
from geocache.services.storage import StorageBackend, create_storage
from geocache.utils.geo import BucketKey, bucket_key, haversine_distance

logger = logging.getLogger(__name__)


class SpatialTTLCache:
    """Coordinate-keyed TTL cache with nearest-neighbour fallback.

    Map operations (``get``, ``set``, ``has``, ``delete``,
    ``get_within_radius``) are synchronous and guarded by a re-entrant lock
    shared with the sweeper thread. Call ``destroy()`` to stop the sweeper.

    A stored value of ``None`` cannot be told apart from a miss by ``get``;
    use ``has`` for that.
    """

    def __init__(
        self,
        default_expiry: float = 30 * 60,
        precision: int = 4,
        max_size: int = 1000,
        cleanup_interval: float = 5 * 60,
        storage: Optional[StorageBackend] = None,
        storage_key: str = "geocache",
        geocoder: Optional[Geocoder] = None,
        nearby_radius: float = 5000,
        fallback_radius: float = 10000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the cache and start the sweeper.

        Args:
            default_expiry: Entry lifetime in seconds when ``set`` gets none.
            precision: Decimal digits kept in bucket keys.
            max_size: Entry count that triggers forced eviction when exceeded.
            cleanup_interval: Sweep period in seconds. 0 disables the sweeper.
            storage: Backend to write the map through to. None keeps the
                cache purely in memory.
            storage_key: Key the map blob is stored under.
            geocoder: Used by ``get_city_name`` on a cache miss.
            nearby_radius: Meters searched before calling the geocoder.
            fallback_radius: Meters searched when the geocoder fails.
            clock: Returns the current UNIX time in seconds.

        Raises:
            ValueError: If a size, duration or precision is out of range.
        """
        if max_size <= 0:
            raise ValueError("max_size must be greater than 0")
        if cleanup_interval < 0:
            raise ValueError("cleanup_interval cannot be negative")
        if precision < 0:
            raise ValueError("precision cannot be negative")
        if default_expiry <= 0:
            raise ValueError("default_expiry must be greater than 0")

        self._default_expiry = default_expiry
        self._precision = precision
        self._max_size = max_size
        self._cleanup_interval = cleanup_interval
        self._storage = storage
        self._storage_key = storage_key
        self._geocoder = geocoder
        self._nearby_radius = nearby_radius
        self._fallback_radius = fallback_radius
        self._clock = clock

        self._entries: dict[BucketKey, CacheEntry] = {}
        self._lock = threading.RLock()

        # Loop that fire-and-forget writes run on; remembered so the sweeper
        # thread can hand its writes over.
        self._loop: asyncio.AbstractEventLoop | None = None
        self._remember_loop()
        self._pending: set[asyncio.Future | concurrent.futures.Future] = set()

        self._stop_event = threading.Event()
        self._sweeper: threading.Thread | None = None
        self._start_sweeper()

    @classmethod
    def from_options(
        cls,
        options: CacheOptions,
        geocoder: Optional[Geocoder] = None,
        storage: Optional[StorageBackend] = None,
    ) -> "SpatialTTLCache":
        return cls(
            default_expiry=options.default_expiry,
            precision=options.precision,
            max_size=options.max_size,
            cleanup_interval=options.cleanup_interval,
            storage=storage,
            storage_key=options.storage_key,
            geocoder=geocoder,
            nearby_radius=options.nearby_radius,
            fallback_radius=options.fallback_radius,
        )

    # ─── Configuration ───

    @property
    def precision(self) -> int:
        """Bucket precision for future operations. Existing keys are kept."""
        return self._precision

    @precision.setter
    def precision(self, value: int) -> None:
        if value < 0:
            raise ValueError("precision cannot be negative")
        self._precision = value

    @property
    def default_expiry(self) -> float:
        """Lifetime in seconds for entries set from now on."""
        return self._default_expiry

    @default_expiry.setter
    def default_expiry(self, value: float) -> None:
        if value <= 0:
            raise ValueError("default_expiry must be greater than 0")
        self._default_expiry = value

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def cleanup_interval(self) -> float:
        return self._cleanup_interval

    @property
    def storage(self) -> Optional[StorageBackend]:
        return self._storage

    @property
    def geocoder(self) -> Optional[Geocoder]:
        return self._geocoder

    def _key(self, lat: float, lon: float) -> BucketKey:
        return bucket_key(lat, lon, self._precision)

    # ─── Map operations ───

    def _lookup(self, lat: float, lon: float) -> CacheEntry | None:
        """Return the live entry for a coordinate, dropping it if expired."""
        key = self._key(lat, lon)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            return entry

    def get(self, lat: float, lon: float) -> Any | None:
        """Exact bucket lookup. Returns None on a miss or an expired entry."""
        entry = self._lookup(lat, lon)
        return entry.value if entry is not None else None

    def has(self, lat: float, lon: float) -> bool:
        return self._lookup(lat, lon) is not None

    def _insert(self, lat: float, lon: float, value: Any, custom_expiry: Optional[float]) -> int:
        """Insert or overwrite an entry and enforce capacity.

        Returns the number of entries evicted.
        """
        now = self._clock()
        lifetime = self._default_expiry if custom_expiry is None else max(custom_expiry, 0)
        entry = CacheEntry(value=value, created_at=now, expires_at=now + lifetime, lat=lat, lon=lon)

        with self._lock:
            self._entries[self._key(lat, lon)] = entry
            if len(self._entries) > self._max_size:
                return self._evict(now, force=True)
        return 0

    def set(self, lat: float, lon: float, value: Any, custom_expiry: Optional[float] = None) -> None:
        """Cache a value at a coordinate.

        Args:
            lat: Latitude in degrees.
            lon: Longitude in degrees.
            value: Value to cache. Must be JSON serializable (pydantic
                models are) when a storage backend is attached.
            custom_expiry: Lifetime in seconds. Defaults to ``default_expiry``.
        """
        evicted = self._insert(lat, lon, value, custom_expiry)
        if evicted:
            logger.debug(f"[CACHE] Evicted {evicted} entries, size now {self.size()}")
        self._schedule_write()

    def delete(self, lat: float, lon: float) -> bool:
        """Remove the entry for a coordinate. Returns True if one existed."""
        with self._lock:
            removed = self._entries.pop(self._key(lat, lon), None) is not None
        if removed:
            self._schedule_write()
        return removed

    def clear(self) -> None:
        """Drop every entry and remove the persisted blob."""
        with self._lock:
            self._entries.clear()
        if self._storage is not None:
            self._schedule(self._remove_persisted())

    def size(self) -> int:
        """Entry count, including expired entries not yet swept."""
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.size()

    def get_within_radius(self, lat: float, lon: float, max_distance: float = 5000) -> Any | None:
        """Nearest unexpired value within ``max_distance`` meters.

        Distances are haversine between the query and each entry's original
        coordinate. Expired entries met during the scan are removed.
        Equidistant entries resolve to the smaller bucket key.
        """
        now = self._clock()
        best: tuple[float, BucketKey, CacheEntry] | None = None

        with self._lock:
            for key, entry in list(self._entries.items()):
                if entry.is_expired(now):
                    del self._entries[key]
                    continue

                distance = haversine_distance(lat, lon, entry.lat, entry.lon)
                if distance > max_distance:
                    continue
                if best is None or (distance, key) < (best[0], best[1]):
                    best = (distance, key, entry)

        if best is None:
            return None
        logger.debug(f"[CACHE] Radius hit {best[1]} at {best[0]:.0f}m")
        return best[2].value

    # ─── Expiry and eviction ───

    def _evict(self, now: float, force: bool) -> int:
        """Drop expired entries, then with ``force`` trim to ``max_size``.

        Must be called with the lock held. Victims beyond the expired ones
        are taken in insertion order.
        """
        removed = 0
        for key, entry in list(self._entries.items()):
            if entry.is_expired(now):
                del self._entries[key]
                removed += 1

        if force:
            excess = len(self._entries) - self._max_size
            if excess > 0:
                for key in list(self._entries)[:excess]:
                    del self._entries[key]
                removed += excess
        return removed

    def cleanup(self, force: bool = False) -> int:
        """Run one sweep and write the result through if anything changed.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            removed = self._evict(self._clock(), force)
        if removed:
            logger.debug(f"[CACHE] Cleanup removed {removed} entries")
            self._schedule_write()
        return removed

    def _start_sweeper(self) -> None:
        if self._cleanup_interval <= 0:
            return
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            name="geocache-sweeper",
            daemon=True,
        )
        self._sweeper.start()

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self._cleanup_interval):
            try:
                self.cleanup()
            except Exception:
                logger.exception("[CACHE] Periodic cleanup failed")

    def destroy(self) -> None:
        """Stop the sweeper and drop all in-memory entries.

        The persisted blob is left alone so a later ``load`` can restore it;
        use ``clear`` to remove it as well.
        """
        self._stop_event.set()
        sweeper = self._sweeper
        if sweeper is not None and sweeper is not threading.current_thread():
            sweeper.join()
        self._sweeper = None
        with self._lock:
            self._entries.clear()
        logger.debug("[CACHE] Destroyed")

    @property
    def is_sweeping(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    # ─── Persistence ───

    def _remember_loop(self) -> asyncio.AbstractEventLoop | None:
        try:
            self._loop = asyncio.get_running_loop()
            return self._loop
        except RuntimeError:
            return None

    def _snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {str(key): entry.model_dump(mode="json") for key, entry in self._entries.items()}

    async def _write_blob(self, blob: dict[str, Any]) -> None:
        try:
            await self._storage.write(self._storage_key, blob)  # type: ignore[union-attr]
        except Exception as e:
            logger.warning(f"[STORAGE] Write of '{self._storage_key}' failed: {type(e).__name__}: {e}")

    async def _remove_persisted(self) -> None:
        try:
            await self._storage.remove(self._storage_key)  # type: ignore[union-attr]
        except Exception as e:
            logger.warning(f"[STORAGE] Remove of '{self._storage_key}' failed: {type(e).__name__}: {e}")

    def _schedule(self, coro) -> None:
        """Run a persistence coroutine detached from the caller.

        From the loop's own thread it becomes a task; from any other thread
        (the sweeper) it is submitted to the remembered loop. Without a
        usable loop the write is skipped.
        """
        loop = self._remember_loop()
        if loop is not None:
            future: asyncio.Future | concurrent.futures.Future = loop.create_task(coro)
        elif self._loop is not None and self._loop.is_running() and not self._loop.is_closed():
            future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        else:
            coro.close()
            logger.debug("[STORAGE] No running event loop, persistence write skipped")
            return

        self._pending.add(future)
        future.add_done_callback(self._pending.discard)

    def _schedule_write(self) -> None:
        if self._storage is None:
            return
        try:
            blob = self._snapshot()
        except Exception as e:
            logger.warning(f"[STORAGE] Cache contents not serializable, write skipped: {e}")
            return
        self._schedule(self._write_blob(blob))

    async def save(self) -> None:
        """Write the current map through and wait for it to finish."""
        if self._storage is None:
            return
        self._remember_loop()
        try:
            blob = self._snapshot()
        except Exception as e:
            logger.warning(f"[STORAGE] Cache contents not serializable, write skipped: {e}")
            return
        await self._write_blob(blob)

    async def flush(self) -> None:
        """Wait for every in-flight fire-and-forget write.

        Tasks left behind by an event loop other than the running one can
        never be awaited here and are dropped.
        """
        loop = asyncio.get_running_loop()
        self._remember_loop()
        while True:
            stale = [f for f in self._pending if isinstance(f, asyncio.Future) and f.get_loop() is not loop]
            if stale:
                logger.debug(f"[STORAGE] Dropping {len(stale)} writes from a previous event loop")
                self._pending.difference_update(stale)
            if not self._pending:
                break
            waiters = [
                asyncio.wrap_future(f) if isinstance(f, concurrent.futures.Future) else f
                for f in list(self._pending)
            ]
            await asyncio.gather(*waiters, return_exceptions=True)
            self._pending.difference_update(f for f in list(self._pending) if f.done())

    async def load(self) -> int:
        """Populate the cache from the storage backend.

        Entries are re-keyed at the current precision from their original
        coordinate. Expired or malformed entries are skipped. Read failures
        are logged and leave the cache unchanged.

        Returns:
            Number of entries loaded.
        """
        if self._storage is None:
            return 0
        self._remember_loop()

        try:
            blob = await self._storage.read(self._storage_key)
        except Exception as e:
            logger.warning(f"[STORAGE] Read of '{self._storage_key}' failed: {type(e).__name__}: {e}")
            return 0

        if blob is None:
            return 0
        if not isinstance(blob, dict):
            logger.warning(f"[STORAGE] Ignoring '{self._storage_key}': expected a mapping, got {type(blob).__name__}")
            return 0

        now = self._clock()
        loaded = discarded = 0
        with self._lock:
            for raw in blob.values():
                try:
                    entry = CacheEntry.model_validate(raw)
                except ValidationError:
                    discarded += 1
                    continue
                if entry.is_expired(now):
                    continue
                self._entries[self._key(entry.lat, entry.lon)] = entry
                loaded += 1
            if len(self._entries) > self._max_size:
                self._evict(now, force=True)

        if discarded:
            logger.debug(f"[STORAGE] Discarded {discarded} malformed entries")
        logger.info(f"[CACHE] Loaded {loaded} entries from '{self._storage_key}'")
        return loaded

    # ─── Reverse geocoding ───

    def _as_city(self, value: Any) -> CityResult | None:
        if value is None:
            return None
        try:
            return CityResult.model_validate(value)
        except ValidationError:
            logger.debug("[CACHE] Cached value is not a CityResult, ignoring")
            return None

    async def lookup_city(self, lat: float, lon: float) -> tuple[CityResult, bool]:
        """Resolve a coordinate, preferring cached results.

        Tries the exact bucket, then a ``nearby_radius`` search, then the
        geocoder. A geocoder result is cached and persisted before returning.

        Returns:
            The result and whether it was served from the cache.

        Raises:
            RuntimeError: If no geocoder is configured and nothing is cached.
            Exception: Whatever the geocoder raises, unchanged.
        """
        self._remember_loop()

        cached = self._as_city(self.get(lat, lon))
        if cached is not None:
            return cached, True

        nearby = self._as_city(self.get_within_radius(lat, lon, self._nearby_radius))
        if nearby is not None:
            return nearby, True

        if self._geocoder is None:
            raise RuntimeError("No geocoder configured")

        result = await self._geocoder.reverse(lat, lon)
        self._insert(lat, lon, result, None)
        await self.save()
        return result, False

    async def get_city_name(self, lat: float, lon: float) -> CityResult:
        """Resolve a coordinate to a CityResult; see ``lookup_city``."""
        result, _ = await self.lookup_city(lat, lon)
        return result

    async def lookup_city_with_fallback(
        self, lat: float, lon: float, max_distance: Optional[float] = None
    ) -> tuple[CityResult, bool]:
        """Like ``lookup_city`` but never fails.

        When the lookup fails, the nearest cached result within
        ``max_distance`` meters (default ``fallback_radius``) is returned,
        and failing that an "Unknown location" placeholder, which is not
        reported as cached.
        """
        try:
            return await self.lookup_city(lat, lon)
        except Exception as e:
            logger.warning(f"[CACHE] Lookup for ({lat}, {lon}) failed, using fallback: {type(e).__name__}: {e}")

        radius = self._fallback_radius if max_distance is None else max_distance
        nearest = self._as_city(self.get_within_radius(lat, lon, radius))
        if nearest is not None:
            return nearest, True

        placeholder = CityResult(
            name=UNKNOWN_LOCATION,
            full_address="",
            details=AddressDetails(),
            coordinate=Coordinate(lat=lat, lon=lon),
        )
        return placeholder, False

    async def get_city_name_with_fallback(
        self, lat: float, lon: float, max_distance: Optional[float] = None
    ) -> CityResult:
        result, _ = await self.lookup_city_with_fallback(lat, lon, max_distance)
        return result

    def stats(self) -> CacheStats:
        return CacheStats(
            size=self.size(),
            max_size=self._max_size,
            precision=self._precision,
            default_expiry=self._default_expiry,
            cleanup_interval=self._cleanup_interval,
            persistent=self._storage is not None,
        )


def create_geocache(options: Optional[CacheOptions] = None) -> SpatialTTLCache:
    """Build a cache with a Nominatim geocoder and the configured backend."""
    options = options or CacheOptions.from_env()

    geocoder = NominatimService(
        endpoint=options.nominatim_endpoint,
        request_delay=options.request_delay,
        user_agent=options.user_agent,
        timeout=options.request_timeout,
    )

    storage = None
    if options.storage_type is not None:
        storage = create_storage(
            options.storage_type,
            path=options.storage_path,
            redis_url=options.redis_url,
            ttl_seconds=options.storage_ttl,
        )

    logger.info(
        f"[CACHE] precision={options.precision} max_size={options.max_size} "
        f"expiry={options.default_expiry}s storage={options.storage_type.value if options.storage_type else 'none'}"
    )
    return SpatialTTLCache.from_options(options, geocoder=geocoder, storage=storage)
