"""Persistence backends for the spatial cache.

This module provides an abstract storage interface and three concrete
implementations the cache can write its bucket map through to:

- MemoryStorage: process-local dict, lost on exit
- FileStorage: JSON document on disk, survives restarts
- RedisStorage: Redis keys, shared between workers, optional key TTL

The cache stores its whole map as a single JSON-compatible blob under one
key; backends never see individual entries.
"""

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import redis.asyncio as redis

from geocache.models import StorageType

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Abstract base class for key-value persistence backends."""

    @abstractmethod
    async def read(self, key: str) -> Any | None:
        """Retrieve a stored value.

        Args:
            key: The storage key to look up.

        Returns:
            The stored value if found, None otherwise.
        """
        pass

    @abstractmethod
    async def write(self, key: str, value: Any) -> None:
        """Store a value, replacing any previous one.

        Args:
            key: The storage key to store under.
            value: The value to store (must be JSON serializable for
                durable backends).
        """
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove a stored value. Missing keys are ignored."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Remove every value owned by this backend."""
        pass

    @abstractmethod
    async def list_keys(self) -> list[str]:
        """List the keys currently stored."""
        pass

    async def close(self) -> None:
        """Release backend resources. No-op by default."""
        return None


class MemoryStorage(StorageBackend):
    """Volatile in-process storage."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    async def read(self, key: str) -> Any | None:
        return self._data.get(key)

    async def write(self, key: str, value: Any) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()

    async def list_keys(self) -> list[str]:
        return list(self._data.keys())


class FileStorage(StorageBackend):
    """JSON-file storage.

    The whole document is a JSON object mapping keys to values. Writes go to
    a temporary sibling file which then replaces the document, so a crash
    never leaves a half-written file behind. Blocking file I/O runs in a
    worker thread.

    Attributes:
        _path: Location of the JSON document.
        _lock: Serialises read-modify-write cycles within this process.
    """

    def __init__(self, path: str | os.PathLike = "geocache.json") -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load_document(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as fh:
            document = json.load(fh)
        if not isinstance(document, dict):
            raise ValueError(f"Storage file {self._path} does not contain a JSON object")
        return document

    def _dump_document(self, document: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            json.dump(document, fh)
        os.replace(tmp_path, self._path)

    async def read(self, key: str) -> Any | None:
        async with self._lock:
            document = await asyncio.to_thread(self._load_document)
        return document.get(key)

    async def write(self, key: str, value: Any) -> None:
        async with self._lock:
            document = await asyncio.to_thread(self._load_document)
            document[key] = value
            await asyncio.to_thread(self._dump_document, document)

    async def remove(self, key: str) -> None:
        async with self._lock:
            document = await asyncio.to_thread(self._load_document)
            if document.pop(key, None) is not None:
                await asyncio.to_thread(self._dump_document, document)

    async def clear(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._path.unlink, missing_ok=True)

    async def list_keys(self) -> list[str]:
        async with self._lock:
            document = await asyncio.to_thread(self._load_document)
        return list(document.keys())


class RedisStorage(StorageBackend):
    """Redis-based storage backend.

    Values are JSON serialized. All keys are namespaced under ``prefix`` so
    ``clear`` and ``list_keys`` only touch keys owned by this backend. With
    ``ttl_seconds`` set, every write refreshes the key's expiry, which makes
    the stored map session-scoped.

    Attributes:
        _client: The Redis async client instance.
        _prefix: Namespace prepended to every key.
        _ttl: Optional expiry applied on each write.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        prefix: str = "geocache:",
        ttl_seconds: int | None = None,
        client: redis.Redis | None = None,
    ) -> None:
        """Initialize the Redis storage backend.

        Args:
            redis_url: Redis connection URL. Defaults to localhost:6379.
            prefix: Key namespace. Defaults to ``geocache:``.
            ttl_seconds: Expiry for stored keys. None keeps them forever.
            client: Pre-built client, mainly for tests.
        """
        self._redis_url = redis_url
        self._prefix = prefix
        self._ttl = ttl_seconds
        self._client: redis.Redis | None = client

    async def connect(self) -> None:
        """Establish connection to Redis."""
        if self._client is None:
            self._client = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _ensure_connected(self) -> redis.Redis:
        if self._client is None:
            await self.connect()
        return self._client  # type: ignore

    def _full_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def read(self, key: str) -> Any | None:
        client = await self._ensure_connected()
        raw = await client.get(self._full_key(key))
        if raw is None:
            return None
        return json.loads(raw)

    async def write(self, key: str, value: Any) -> None:
        client = await self._ensure_connected()
        await client.set(self._full_key(key), json.dumps(value), ex=self._ttl)

    async def remove(self, key: str) -> None:
        client = await self._ensure_connected()
        await client.delete(self._full_key(key))

    async def _scan_keys(self) -> list[str]:
        client = await self._ensure_connected()
        keys: list[str] = []

        # SCAN instead of KEYS so large databases are not blocked
        cursor = 0
        while True:
            cursor, batch = await client.scan(cursor=cursor, match=f"{self._prefix}*", count=100)
            keys.extend(batch)
            if cursor == 0:
                break
        return keys

    async def clear(self) -> None:
        client = await self._ensure_connected()
        keys = await self._scan_keys()
        if keys:
            await client.delete(*keys)

    async def list_keys(self) -> list[str]:
        return [key[len(self._prefix):] for key in await self._scan_keys()]


def create_storage(
    storage_type: StorageType | str = StorageType.MEMORY,
    *,
    path: str | os.PathLike | None = None,
    redis_url: str | None = None,
    prefix: str = "geocache:",
    ttl_seconds: int | None = None,
) -> StorageBackend:
    """Build a storage backend by type.

    Raises:
        ValueError: If ``storage_type`` is not a known backend.
    """
    storage_type = StorageType(storage_type)

    if storage_type is StorageType.FILE:
        return FileStorage(path or "geocache.json")
    if storage_type is StorageType.REDIS:
        return RedisStorage(
            redis_url=redis_url or "redis://localhost:6379",
            prefix=prefix,
            ttl_seconds=ttl_seconds,
        )

    logger.debug("[STORAGE] Using in-memory storage")
    return MemoryStorage()
