"""
Short-lived caches for bucket embeddings.

TTLCache is a generic in-process key/value store with per-entry TTL and
synchronous invalidation. Any object with the same get/set/invalidate
surface (e.g. a Redis-backed adapter) can be handed to BucketEmbeddingCache
instead.

BucketEmbeddingCache maps plan_id -> {bucket_id -> unit vector}. Correctness
is driven by invalidation: every bucket create or text change in a plan must
call invalidate(plan_id). The TTL only bounds the damage of a missed
invalidation.
"""

import logging
import time
from typing import Any, Callable, Optional, Protocol

from classification.embeddings import EmbeddingService, bucket_embedding_text
from config import get_settings
from errors import NotFound
from models import Bucket, BucketPatch
from storage.base import BoardStore

logger = logging.getLogger(__name__)

BUCKET_EMBEDDINGS_CACHE_PREFIX = "bucket-embeddings:"

BucketVectorMap = dict[str, list[float]]


class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any, ttl: float) -> None:
        ...

    def invalidate(self, key: str) -> None:
        ...


class TTLCache:
    """In-memory cache with per-entry time-to-live (seconds)."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        value, expires_at = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: str, value: Any, ttl: float) -> None:
        self._entries[key] = (value, self._clock() + ttl)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict:
        return {"size": len(self._entries), "keys": list(self._entries)}


class BucketEmbeddingCache:
    """
    Lazily builds and caches bucket vectors per plan.

    On a miss, every bucket in the plan is loaded from storage. Stored
    embeddings with the right dimension and unit norm are used as-is;
    anything else is (re)generated and written back best-effort. A bucket
    whose embedding cannot be generated is left out of the map and therefore
    out of scoring.
    """

    def __init__(
        self,
        store: BoardStore,
        embeddings: EmbeddingService,
        backend: CacheBackend = None,
        ttl_seconds: float = None
    ):
        self.store = store
        self.embeddings = embeddings
        self.backend = backend if backend is not None else TTLCache()
        if ttl_seconds is None:
            ttl_seconds = get_settings().bucket_cache_ttl_seconds
        self.ttl_seconds = ttl_seconds
        # Bumped by invalidate(); a load that straddles a bump is not cached
        self._generations: dict[str, int] = {}

    @staticmethod
    def cache_key(plan_id: str) -> str:
        return f"{BUCKET_EMBEDDINGS_CACHE_PREFIX}{plan_id}"

    def invalidate(self, plan_id: str) -> None:
        self._generations[plan_id] = self._generations.get(plan_id, 0) + 1
        self.backend.invalidate(self.cache_key(plan_id))

    async def get_bucket_vectors(self, plan_id: str) -> BucketVectorMap:
        key = self.cache_key(plan_id)
        cached = self.backend.get(key)
        if cached is not None:
            return cached

        generation = self._generations.get(plan_id, 0)
        buckets = await self.store.list_buckets_by_plan(plan_id)
        vectors: BucketVectorMap = {}

        for bucket in buckets:
            embedding = bucket.embedding

            if embedding is not None and not self.embeddings.is_valid(embedding):
                logger.warning(
                    "Invalid stored embedding for bucket %s (%r): %d dimensions",
                    bucket.id, bucket.title, len(embedding)
                )
                embedding = None

            if embedding is None:
                embedding = await self._regenerate(bucket)
                if embedding is None:
                    continue

            vectors[bucket.id] = embedding

        if self._generations.get(plan_id, 0) == generation:
            self.backend.set(key, vectors, self.ttl_seconds)
        else:
            logger.info("Bucket set for plan %s changed during load, not caching", plan_id)
        return vectors

    async def _regenerate(self, bucket: Bucket) -> Optional[list[float]]:
        """
        Embed a bucket's current text and write it back best-effort.

        The bucket is re-read after embedding. If its text changed meanwhile
        the vector is discarded, so an embedding never outlives the text it
        was derived from.
        """
        text = bucket_embedding_text(bucket)
        try:
            embedding = await self.embeddings.embed(text)
        except Exception:
            logger.error(
                "Failed to generate embedding for bucket %s (%r)",
                bucket.id, bucket.title, exc_info=True
            )
            return None

        try:
            current = await self.store.get_bucket(bucket.id)
        except NotFound:
            logger.info("Bucket %s was deleted while embedding", bucket.id)
            return None
        except Exception:
            logger.error("Failed to re-read bucket %s", bucket.id, exc_info=True)
            return None

        if bucket_embedding_text(current) != text:
            logger.info(
                "Bucket %s text changed while embedding, discarding vector", bucket.id
            )
            if self.embeddings.is_valid(current.embedding):
                return current.embedding
            return None

        try:
            await self.store.update_bucket(bucket.id, BucketPatch(embedding=embedding))
        except Exception:
            logger.error(
                "Failed to persist embedding for bucket %s (%r)",
                bucket.id, bucket.title, exc_info=True
            )
        return embedding
