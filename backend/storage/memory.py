"""
In-process BoardStore.

Used by the API when no external database is wired in, and by the tests.
Records are copied on the way in and out so callers can never mutate stored
state without going through update_*.
"""

import asyncio
import uuid

from errors import NotFound
from models import Bucket, BucketCreate, BucketPatch, Idea, IdeaCreate, IdeaPatch, utcnow


class InMemoryBoardStore:
    def __init__(self):
        self._buckets: dict[str, Bucket] = {}
        self._ideas: dict[str, Idea] = {}
        self._lock = asyncio.Lock()

    # -- buckets ----------------------------------------------------------

    async def list_buckets_by_plan(self, plan_id: str) -> list[Bucket]:
        buckets = [b for b in self._buckets.values() if b.plan_id == plan_id]
        buckets.sort(key=lambda b: (b.display_order, b.created_at))
        return [b.model_copy(deep=True) for b in buckets]

    async def get_bucket(self, bucket_id: str) -> Bucket:
        bucket = self._buckets.get(bucket_id)
        if bucket is None:
            raise NotFound("Bucket", bucket_id)
        return bucket.model_copy(deep=True)

    async def create_bucket(self, data: BucketCreate) -> Bucket:
        async with self._lock:
            bucket = Bucket(
                id=str(uuid.uuid4()),
                plan_id=data.plan_id,
                title=data.title,
                description=data.description,
                accent_color=data.accent_color,
                display_order=data.display_order,
                embedding=list(data.embedding) if data.embedding else None,
                created_at=utcnow()
            )
            self._buckets[bucket.id] = bucket
        return bucket.model_copy(deep=True)

    async def update_bucket(self, bucket_id: str, patch: BucketPatch) -> Bucket:
        async with self._lock:
            bucket = self._buckets.get(bucket_id)
            if bucket is None:
                raise NotFound("Bucket", bucket_id)
            updated = bucket.model_copy(
                update=patch.model_dump(exclude_unset=True), deep=True
            )
            self._buckets[bucket_id] = updated
        return updated.model_copy(deep=True)

    async def next_display_order(self, plan_id: str) -> int:
        orders = [b.display_order for b in self._buckets.values() if b.plan_id == plan_id]
        return max(orders) + 1 if orders else 0

    # -- ideas ------------------------------------------------------------

    async def list_ideas_by_plan(self, plan_id: str) -> list[Idea]:
        ideas = [i for i in self._ideas.values() if i.plan_id == plan_id]
        ideas.sort(key=lambda i: i.created_at)
        return [i.model_copy(deep=True) for i in ideas]

    async def get_idea(self, idea_id: str) -> Idea:
        idea = self._ideas.get(idea_id)
        if idea is None:
            raise NotFound("Idea", idea_id)
        return idea.model_copy(deep=True)

    async def create_idea(self, data: IdeaCreate) -> Idea:
        async with self._lock:
            idea = Idea(
                id=str(uuid.uuid4()),
                plan_id=data.plan_id,
                bucket_id=data.bucket_id,
                title=data.title,
                description=data.description,
                confidence=data.confidence,
                created_at=utcnow()
            )
            self._ideas[idea.id] = idea
        return idea.model_copy(deep=True)

    async def update_idea(self, idea_id: str, patch: IdeaPatch) -> Idea:
        async with self._lock:
            idea = self._ideas.get(idea_id)
            if idea is None:
                raise NotFound("Idea", idea_id)
            updated = idea.model_copy(
                update=patch.model_dump(exclude_unset=True), deep=True
            )
            self._ideas[idea_id] = updated
        return updated.model_copy(deep=True)
