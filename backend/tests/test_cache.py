"""
Tests for TTLCache and BucketEmbeddingCache.

Run with: pytest tests/test_cache.py -v
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from board_service import BoardService
from classification.cache import BucketEmbeddingCache, TTLCache
from classification.embeddings import EmbeddingService, bucket_embedding_text
from classification.vector_math import is_unit
from conftest import DIM, PLAN_ID, FakeEmbeddingProvider, axis
from errors import PersistenceError
from models import UpdateBucketRequest


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class GatedEmbeddingProvider(FakeEmbeddingProvider):
    """Blocks inside embed() for one text until `release` is set."""

    def __init__(self, gated_text: str, **kwargs):
        super().__init__(**kwargs)
        self.gated_text = gated_text
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def embed(self, text: str):
        if text == self.gated_text:
            self.entered.set()
            await self.release.wait()
        return await super().embed(text)


class TestTTLCache:
    """Tests for the in-process TTL cache."""

    def test_get_before_expiry(self):
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        cache.set("k", {"a": 1}, ttl=300)

        clock.now += 299
        assert cache.get("k") == {"a": 1}

    def test_entry_expires(self):
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        cache.set("k", "v", ttl=300)

        clock.now += 300
        assert cache.get("k") is None
        assert cache.stats()["size"] == 0

    def test_invalidate(self):
        cache = TTLCache()
        cache.set("k", "v", ttl=300)
        cache.invalidate("k")
        assert cache.get("k") is None

    def test_invalidate_missing_key_is_noop(self):
        TTLCache().invalidate("missing")


class TestBucketEmbeddingCache:
    """Tests for lazy per-plan bucket vector caching."""

    async def test_uses_stored_embeddings(self, cache, add_bucket, provider):
        bucket = await add_bucket("Venues", vector=axis(0))

        vectors = await cache.get_bucket_vectors(PLAN_ID)

        assert vectors == {bucket.id: axis(0)}
        assert provider.calls == []

    async def test_second_read_is_served_from_cache(self, cache, store, add_bucket):
        await add_bucket("Venues", vector=axis(0))
        await cache.get_bucket_vectors(PLAN_ID)

        store.list_buckets_by_plan = AsyncMock(side_effect=AssertionError("store hit"))
        vectors = await cache.get_bucket_vectors(PLAN_ID)

        assert len(vectors) == 1

    async def test_missing_embedding_is_generated_and_persisted(self, cache, store, add_bucket, provider):
        bucket = await add_bucket("Catering", description="Food and drinks")

        vectors = await cache.get_bucket_vectors(PLAN_ID)

        assert provider.calls == [bucket_embedding_text(bucket)]
        assert len(vectors[bucket.id]) == DIM
        stored = await store.get_bucket(bucket.id)
        assert stored.embedding == vectors[bucket.id]

    async def test_wrong_dimension_is_regenerated(self, cache, store, add_bucket, provider):
        bucket = await add_bucket("Venues", vector=[1.0, 0.0, 0.0])

        vectors = await cache.get_bucket_vectors(PLAN_ID)

        assert len(vectors[bucket.id]) == DIM
        assert len(provider.calls) == 1

    async def test_failed_bucket_is_skipped(self, cache, add_bucket, provider):
        good = await add_bucket("Venues", vector=axis(0))
        bad = await add_bucket("Catering")
        provider.fail = True

        vectors = await cache.get_bucket_vectors(PLAN_ID)

        assert good.id in vectors
        assert bad.id not in vectors

    async def test_persist_failure_still_uses_vector(self, cache, store, add_bucket):
        bucket = await add_bucket("Catering")
        store.update_bucket = AsyncMock(side_effect=PersistenceError("db down"))

        vectors = await cache.get_bucket_vectors(PLAN_ID)

        assert len(vectors[bucket.id]) == DIM

    async def test_invalidate_forces_reload(self, cache, add_bucket):
        await add_bucket("Venues", vector=axis(0))
        assert len(await cache.get_bucket_vectors(PLAN_ID)) == 1

        await add_bucket("Catering", vector=axis(1))
        assert len(await cache.get_bucket_vectors(PLAN_ID)) == 1

        cache.invalidate(PLAN_ID)
        assert len(await cache.get_bucket_vectors(PLAN_ID)) == 2

    async def test_plans_are_cached_separately(self, cache, add_bucket):
        await add_bucket("Venues", vector=axis(0))
        await add_bucket("Budget", vector=axis(1), plan_id="plan-2")

        assert len(await cache.get_bucket_vectors(PLAN_ID)) == 1
        assert len(await cache.get_bucket_vectors("plan-2")) == 1

    async def test_ttl_expiry_reloads(self, store, embeddings, add_bucket):
        clock = FakeClock()
        cache = BucketEmbeddingCache(store, embeddings, backend=TTLCache(clock=clock), ttl_seconds=300)
        await add_bucket("Venues", vector=axis(0))
        await cache.get_bucket_vectors(PLAN_ID)

        await add_bucket("Catering", vector=axis(1))
        clock.now += 301

        assert len(await cache.get_bucket_vectors(PLAN_ID)) == 2

    def test_cache_key(self):
        assert BucketEmbeddingCache.cache_key("p1") == "bucket-embeddings:p1"

    async def test_zero_ttl_is_respected(self, store, embeddings, add_bucket):
        cache = BucketEmbeddingCache(store, embeddings, backend=TTLCache(clock=FakeClock()), ttl_seconds=0)
        await add_bucket("Venues", vector=axis(0))
        await cache.get_bucket_vectors(PLAN_ID)

        await add_bucket("Catering", vector=axis(1))

        assert cache.ttl_seconds == 0
        assert len(await cache.get_bucket_vectors(PLAN_ID)) == 2

    async def test_zero_stored_vector_is_regenerated(self, cache, store, add_bucket, provider):
        bucket = await add_bucket("Venues", vector=[0.0] * DIM)

        vectors = await cache.get_bucket_vectors(PLAN_ID)

        assert provider.calls == ["Venues"]
        assert is_unit(vectors[bucket.id])
        assert (await store.get_bucket(bucket.id)).embedding == vectors[bucket.id]

    async def test_zero_stored_vector_is_skipped_when_provider_fails(self, cache, add_bucket, provider):
        bucket = await add_bucket("Venues", vector=[0.0] * DIM)
        provider.fail = True

        assert bucket.id not in await cache.get_bucket_vectors(PLAN_ID)


class TestBucketEmbeddingCacheConcurrency:
    """Tests for edits that land while the cache is being populated."""

    async def test_rename_during_load_keeps_new_embedding(self, store, add_bucket):
        provider = GatedEmbeddingProvider(
            "Old title", vectors={"Old title": axis(0), "New title": axis(1)}
        )
        embeddings = EmbeddingService(provider, dimension=DIM)
        cache = BucketEmbeddingCache(store, embeddings, ttl_seconds=300)
        service = BoardService(store, embeddings, cache, orchestrator=None)
        bucket = await add_bucket("Old title")

        load = asyncio.create_task(cache.get_bucket_vectors(PLAN_ID))
        await provider.entered.wait()
        await service.update_bucket(bucket.id, UpdateBucketRequest(title="New title"))
        provider.release.set()
        vectors = await load

        stored = await store.get_bucket(bucket.id)
        assert stored.title == "New title"
        assert stored.embedding == pytest.approx(axis(1))
        assert vectors[bucket.id] == pytest.approx(axis(1))
        assert cache.backend.get(cache.cache_key(PLAN_ID)) is None
        assert (await cache.get_bucket_vectors(PLAN_ID))[bucket.id] == pytest.approx(axis(1))

    async def test_invalidate_during_load_skips_caching(self, store, add_bucket):
        provider = GatedEmbeddingProvider("Catering")
        cache = BucketEmbeddingCache(store, EmbeddingService(provider, dimension=DIM), ttl_seconds=300)
        bucket = await add_bucket("Catering")

        load = asyncio.create_task(cache.get_bucket_vectors(PLAN_ID))
        await provider.entered.wait()
        cache.invalidate(PLAN_ID)
        provider.release.set()
        vectors = await load

        assert bucket.id in vectors
        assert cache.backend.get(cache.cache_key(PLAN_ID)) is None

    async def test_load_without_invalidation_is_cached(self, store, add_bucket):
        provider = GatedEmbeddingProvider("Catering")
        cache = BucketEmbeddingCache(store, EmbeddingService(provider, dimension=DIM), ttl_seconds=300)
        await add_bucket("Catering")

        load = asyncio.create_task(cache.get_bucket_vectors(PLAN_ID))
        await provider.entered.wait()
        provider.release.set()
        vectors = await load

        assert cache.backend.get(cache.cache_key(PLAN_ID)) == vectors
