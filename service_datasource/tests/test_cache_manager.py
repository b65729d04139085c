"""
Unit tests for the two-tier cache facade.
"""

import json
import pytest
import pytest_asyncio

from prometheus_client import CollectorRegistry

from service_datasource.app.caching import (
    NOT_FOUND_MARKER,
    CachedDocumentMethods,
    DocumentLoader,
    InMemoryLRUCache,
)
from service_datasource.app.codec import DocumentCodec, GeoPoint, Timestamp
from service_datasource.app.store import InMemoryDocumentStore
from shared.errors import CacheBackendError, SerializationError
from shared.metrics import MetricsCollector


class RecordingCache(InMemoryLRUCache):
    """In-memory cache that remembers every write."""

    def __init__(self):
        super().__init__()
        self.sets = []
        self.deletes = []

    async def set(self, key, value, ttl=None):
        self.sets.append((key, value, ttl))
        await super().set(key, value, ttl)

    async def delete(self, key):
        self.deletes.append(key)
        await super().delete(key)


class UnavailableCache(RecordingCache):
    """Cache whose every operation fails."""

    async def get(self, key):
        raise CacheBackendError("get", "connection refused")

    async def set(self, key, value, ttl=None):
        raise CacheBackendError("set", "connection refused")

    async def delete(self, key):
        raise CacheBackendError("delete", "connection refused")


class TestCachedDocumentMethods:
    """Test cases for CachedDocumentMethods."""

    @pytest.fixture
    def store(self):
        return InMemoryDocumentStore()

    @pytest_asyncio.fixture
    async def users(self, store):
        collection = store.collection("users")
        await collection.set("1", {"name": "Ada", "joined": Timestamp(1690000000, 0)})
        await collection.set("2", {"name": "Brian", "home": GeoPoint(40.7, -74.0)})
        return collection

    @pytest.fixture
    def cache(self):
        return RecordingCache()

    @pytest.fixture
    def registry(self):
        return CollectorRegistry()

    @pytest.fixture
    def make_methods(self, users, cache, registry, store):
        metrics = MetricsCollector(registry)

        def factory(backing=None, **kwargs):
            # A fresh loader per call, like a new request
            return CachedDocumentMethods(
                collection=users,
                cache=backing if backing is not None else cache,
                loader=DocumentLoader(users, metrics=metrics),
                codec=DocumentCodec(store=store),
                cache_prefix="test:",
                metrics=metrics,
                **kwargs
            )

        return factory

    def cache_requests(self, registry, result):
        value = registry.get_sample_value(
            "datasource_cache_requests_total", {"collection": "users", "result": result}
        )
        return value or 0.0

    def test_cache_key(self, make_methods):
        """Keys are prefix, collection id and document id."""
        assert make_methods().cache_key("42") == "test:users:42"

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, make_methods, users, cache, registry):
        """A miss loads and fills the cache; later requests read the cache."""
        first = await make_methods().find_one_by_id("1")

        assert first == {"name": "Ada", "joined": Timestamp(1690000000, 0), "id": "1", "collection": "users"}
        assert len(cache.sets) == 1
        key, text, ttl = cache.sets[0]
        assert key == "test:users:1"
        assert "$$Timestamp$$:1690000000:0" in text
        assert ttl is None

        second = await make_methods().find_one_by_id("1")

        assert second == first
        assert users.batch_get_calls == [["1"]]
        assert self.cache_requests(registry, "miss") == 1.0
        assert self.cache_requests(registry, "hit") == 1.0

    @pytest.mark.asyncio
    async def test_cache_hit_skips_loader(self, make_methods, users):
        """A cache hit is returned without consulting the loader."""
        methods = make_methods()
        await methods.find_one_by_id("1")
        await users.set("1", {"name": "Changed"})

        # Same request: the cache is read first, not the loader memo
        assert (await methods.find_one_by_id("1"))["name"] == "Ada"
        assert users.batch_get_calls == [["1"]]

    @pytest.mark.asyncio
    async def test_ttl_resolution(self, make_methods, cache):
        """Per-call TTL beats default_ttl; zero skips the write."""
        await make_methods().find_one_by_id("1", ttl=60)
        await make_methods(default_ttl=300).find_one_by_id("2")

        assert [(k, t) for k, _, t in cache.sets] == [("test:users:1", 60), ("test:users:2", 300)]

        cache.sets.clear()
        await cache.delete("test:users:1")
        assert (await make_methods(default_ttl=300).find_one_by_id("1", ttl=0))["name"] == "Ada"
        assert cache.sets == []

    @pytest.mark.asyncio
    async def test_negative_ttl_rejected(self, make_methods, users):
        """Negative TTLs raise before any I/O."""
        methods = make_methods()
        with pytest.raises(ValueError):
            await methods.find_one_by_id("1", ttl=-1)
        with pytest.raises(ValueError):
            await methods.find_many_by_ids(["1"], ttl=-5)
        with pytest.raises(ValueError):
            await methods.prime_loader({"id": "1"}, ttl=-1)
        assert users.batch_get_calls == []

    @pytest.mark.asyncio
    async def test_find_many_mixed_hits_and_misses(self, make_methods, users, cache):
        """Results keep input order; misses resolve in one batch."""
        await make_methods().find_one_by_id("1")
        cache.sets.clear()

        results = await make_methods().find_many_by_ids(["2", "1", "missing", "2"])

        assert [r["id"] if r else None for r in results] == ["2", "1", None, "2"]
        assert results[0]["home"] == GeoPoint(40.7, -74.0)
        assert users.batch_get_calls == [["1"], ["2", "missing"]]
        assert [key for key, _, _ in cache.sets] == ["test:users:2"]

    @pytest.mark.asyncio
    async def test_find_many_all_hits(self, make_methods, users):
        """Fully cached requests never touch the store."""
        await make_methods().find_many_by_ids(["1", "2"])

        results = await make_methods().find_many_by_ids(["2", "1"])

        assert [r["name"] for r in results] == ["Brian", "Ada"]
        assert users.batch_get_calls == [["1", "2"]]

    @pytest.mark.asyncio
    async def test_find_many_empty(self, make_methods, users):
        """No ids, no work."""
        assert await make_methods().find_many_by_ids([]) == []
        assert users.batch_get_calls == []

    @pytest.mark.asyncio
    async def test_delete_from_cache(self, make_methods, users, cache):
        """Deleting evicts both tiers so the next read refetches."""
        methods = make_methods()
        await methods.find_one_by_id("1")
        await users.set("1", {"name": "Ada Lovelace"})

        await methods.delete_from_cache_by_id("1")

        assert cache.deletes == ["test:users:1"]
        assert await cache.get("test:users:1") is None
        assert (await methods.find_one_by_id("1"))["name"] == "Ada Lovelace"
        assert users.batch_get_calls == [["1"], ["1"]]

    @pytest.mark.asyncio
    async def test_delete_failure_propagates(self, make_methods):
        """A failed eviction is reported to the caller."""
        with pytest.raises(CacheBackendError):
            await make_methods(backing=UnavailableCache()).delete_from_cache_by_id("1")

    @pytest.mark.asyncio
    async def test_prime_writes_both_tiers(self, make_methods, users, cache):
        """Primed documents are served from the loader and the cache."""
        methods = make_methods()

        await methods.prime_loader([{"id": "1", "name": "Primed"}, {"id": "9", "name": "New"}], ttl=120)

        assert await methods.loader.load("1") == {"id": "1", "name": "Primed"}
        assert [(k, t) for k, _, t in cache.sets] == [("test:users:1", 120), ("test:users:9", 120)]
        assert (await make_methods().find_one_by_id("9"))["name"] == "New"
        assert users.batch_get_calls == []

    @pytest.mark.asyncio
    async def test_prime_with_zero_ttl_skips_cache(self, make_methods, users, cache):
        """ttl=0 primes the loader only."""
        methods = make_methods()

        await methods.prime_loader({"id": "1", "name": "Primed"}, ttl=0)

        assert (await methods.loader.load("1"))["name"] == "Primed"
        assert cache.sets == []
        assert users.batch_get_calls == []

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self, make_methods, users):
        """Mutating a returned or primed document does not leak into later reads."""
        methods = make_methods()
        document = {"id": "9", "name": "Primed"}
        await methods.prime_loader(document, ttl=0)
        document["name"] = "changed by caller"

        first = await methods.find_one_by_id("9", ttl=0)
        first["name"] = "changed by resolver"
        many = await methods.find_many_by_ids(["9", "1"], ttl=0)
        many[1]["name"] = "changed by resolver"

        assert (await methods.find_one_by_id("9", ttl=0))["name"] == "Primed"
        assert (await methods.find_many_by_ids(["1"], ttl=0))[0]["name"] == "Ada"
        assert users.batch_get_calls == [["1"]]

    @pytest.mark.asyncio
    async def test_prime_requires_ids(self, make_methods, cache):
        """Documents without ids are rejected before anything is written."""
        with pytest.raises(ValueError):
            await make_methods().prime_loader([{"id": "1"}, {"name": "anonymous"}])
        assert cache.sets == []

    @pytest.mark.asyncio
    async def test_not_found_is_not_cached_by_default(self, make_methods, users, cache):
        """Missing documents leave the cache untouched."""
        assert await make_methods().find_one_by_id("missing") is None
        assert cache.sets == []

        # A stray marker is ignored when negative caching is off
        await cache.set("test:users:1", NOT_FOUND_MARKER)
        assert (await make_methods().find_one_by_id("1"))["name"] == "Ada"

    @pytest.mark.asyncio
    async def test_not_found_caching(self, make_methods, users, cache, registry):
        """With negative caching, misses are remembered for not_found_ttl."""
        assert await make_methods(cache_not_found=True, not_found_ttl=15).find_one_by_id("missing") is None
        assert cache.sets == [("test:users:missing", NOT_FOUND_MARKER, 15)]

        assert await make_methods(cache_not_found=True).find_one_by_id("missing") is None
        results = await make_methods(cache_not_found=True).find_many_by_ids(["missing", "1"])

        assert results[0] is None
        assert results[1]["name"] == "Ada"
        assert users.batch_get_calls == [["missing"], ["1"]]
        assert self.cache_requests(registry, "not_found") == 2.0

    @pytest.mark.asyncio
    async def test_unavailable_cache_degrades_to_store(self, make_methods, users, registry):
        """Backend read and write failures fall back to the loader."""
        methods = make_methods(backing=UnavailableCache())

        assert (await methods.find_one_by_id("1"))["name"] == "Ada"
        assert [r["id"] for r in await methods.find_many_by_ids(["1", "2"])] == ["1", "2"]
        assert self.cache_requests(registry, "error") == 3.0

    @pytest.mark.asyncio
    async def test_colliding_document_is_not_cached(self, make_methods, users, cache, registry):
        """A string shaped like a sentinel fails the read and writes nothing."""
        await users.set("3", {"bio": "$$Timestamp$$:1:2"})

        with pytest.raises(SerializationError):
            await make_methods().find_one_by_id("3")
        with pytest.raises(SerializationError):
            await make_methods().find_many_by_ids(["1", "3"])

        assert cache.sets == []
        assert registry.get_sample_value(
            "datasource_serialization_errors_total", {"collection": "users", "direction": "encode"}
        ) == 2.0

    @pytest.mark.asyncio
    async def test_corrupt_cache_entry(self, make_methods, cache, registry):
        """Undecodable cache text raises SerializationError."""
        await cache.set("test:users:1", json.dumps({"joined": "$$Timestamp$$:x:y"}))

        with pytest.raises(SerializationError):
            await make_methods().find_one_by_id("1")
        assert registry.get_sample_value(
            "datasource_serialization_errors_total", {"collection": "users", "direction": "decode"}
        ) == 1.0
