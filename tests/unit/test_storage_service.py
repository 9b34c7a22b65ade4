"""Unit tests for the storage backends."""

import json

import pytest

from geocache.models import StorageType
from geocache.services.storage import (
    FileStorage,
    MemoryStorage,
    RedisStorage,
    StorageBackend,
    create_storage,
)


class FakeRedis:
    """Minimal stand-in for redis.asyncio.Redis."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.expiry: dict[str, int | None] = {}
        self.closed = False

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self.data[key] = value
        self.expiry[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self.data.pop(key, None) is not None)

    async def scan(self, cursor: int = 0, match: str | None = None, count: int | None = None):
        prefix = (match or "*").rstrip("*")
        return 0, [key for key in self.data if key.startswith(prefix)]

    async def aclose(self) -> None:
        self.closed = True


class TestCreateStorage:
    """Tests for the storage factory."""

    def test_memory_by_default(self) -> None:
        assert isinstance(create_storage(), MemoryStorage)

    def test_memory(self) -> None:
        assert isinstance(create_storage(StorageType.MEMORY), MemoryStorage)

    def test_file(self, tmp_path) -> None:
        storage = create_storage("file", path=tmp_path / "cache.json")
        assert isinstance(storage, FileStorage)
        assert storage.path == tmp_path / "cache.json"

    def test_redis(self) -> None:
        assert isinstance(create_storage(StorageType.REDIS), RedisStorage)

    def test_unknown_type(self) -> None:
        with pytest.raises(ValueError):
            create_storage("sessionStorage")

    def test_backends_share_interface(self) -> None:
        for storage_type in StorageType:
            assert isinstance(create_storage(storage_type), StorageBackend)


class TestMemoryStorage:
    """Tests for MemoryStorage."""

    def setup_method(self) -> None:
        self.storage = MemoryStorage()

    @pytest.mark.asyncio
    async def test_read_missing(self) -> None:
        assert await self.storage.read("nope") is None

    @pytest.mark.asyncio
    async def test_write_read(self) -> None:
        await self.storage.write("k", {"a": 1})
        assert await self.storage.read("k") == {"a": 1}

    @pytest.mark.asyncio
    async def test_remove_and_list(self) -> None:
        await self.storage.write("a", 1)
        await self.storage.write("b", 2)
        await self.storage.remove("a")
        await self.storage.remove("missing")
        assert await self.storage.list_keys() == ["b"]

    @pytest.mark.asyncio
    async def test_clear(self) -> None:
        await self.storage.write("a", 1)
        await self.storage.clear()
        assert await self.storage.list_keys() == []


class TestFileStorage:
    """Tests for FileStorage."""

    @pytest.mark.asyncio
    async def test_read_missing_file(self, tmp_path) -> None:
        storage = FileStorage(tmp_path / "cache.json")
        assert await storage.read("k") is None
        assert await storage.list_keys() == []

    @pytest.mark.asyncio
    async def test_write_creates_json_document(self, tmp_path) -> None:
        path = tmp_path / "nested" / "cache.json"
        storage = FileStorage(path)
        await storage.write("geocache", {"1.0000,2.0000": {"value": "x"}})

        with path.open(encoding="utf-8") as fh:
            assert json.load(fh) == {"geocache": {"1.0000,2.0000": {"value": "x"}}}
        assert not path.with_name("cache.json.tmp").exists()

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, tmp_path) -> None:
        path = tmp_path / "cache.json"
        await FileStorage(path).write("k", [1, 2, 3])
        assert await FileStorage(path).read("k") == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, tmp_path) -> None:
        storage = FileStorage(tmp_path / "cache.json")
        await storage.write("a", 1)
        await storage.write("b", 2)
        await storage.remove("a")
        assert await storage.list_keys() == ["b"]
        assert await storage.read("b") == 2

    @pytest.mark.asyncio
    async def test_clear_deletes_file(self, tmp_path) -> None:
        path = tmp_path / "cache.json"
        storage = FileStorage(path)
        await storage.write("a", 1)
        await storage.clear()
        assert not path.exists()
        await storage.clear()

    @pytest.mark.asyncio
    async def test_rejects_non_object_document(self, tmp_path) -> None:
        path = tmp_path / "cache.json"
        path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(ValueError, match="JSON object"):
            await FileStorage(path).read("k")


class TestRedisStorage:
    """Tests for RedisStorage against an in-memory fake client."""

    def setup_method(self) -> None:
        self.client = FakeRedis()
        self.storage = RedisStorage(prefix="test:", client=self.client)

    @pytest.mark.asyncio
    async def test_write_json_under_prefix(self) -> None:
        await self.storage.write("geocache", {"a": 1})
        assert json.loads(self.client.data["test:geocache"]) == {"a": 1}
        assert self.client.expiry["test:geocache"] is None

    @pytest.mark.asyncio
    async def test_read(self) -> None:
        await self.storage.write("k", [1, "two"])
        assert await self.storage.read("k") == [1, "two"]
        assert await self.storage.read("missing") is None

    @pytest.mark.asyncio
    async def test_ttl_applied_on_write(self) -> None:
        storage = RedisStorage(prefix="s:", ttl_seconds=600, client=self.client)
        await storage.write("k", 1)
        assert self.client.expiry["s:k"] == 600

    @pytest.mark.asyncio
    async def test_list_keys_strips_prefix(self) -> None:
        self.client.data["other:x"] = "1"
        await self.storage.write("a", 1)
        await self.storage.write("b", 2)
        assert sorted(await self.storage.list_keys()) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_clear_only_owned_keys(self) -> None:
        self.client.data["other:x"] = "1"
        await self.storage.write("a", 1)
        await self.storage.clear()
        assert self.client.data == {"other:x": "1"}

    @pytest.mark.asyncio
    async def test_remove(self) -> None:
        await self.storage.write("a", 1)
        await self.storage.remove("a")
        assert await self.storage.read("a") is None

    @pytest.mark.asyncio
    async def test_close(self) -> None:
        await self.storage.close()
        assert self.client.closed is True
