"""Storage service module.

Async key-value persistence backends the cache writes through to.
"""

from .service import (
    FileStorage,
    MemoryStorage,
    RedisStorage,
    StorageBackend,
    StorageType,
    create_storage,
)

__all__ = [
    "FileStorage",
    "MemoryStorage",
    "RedisStorage",
    "StorageBackend",
    "StorageType",
    "create_storage",
]
