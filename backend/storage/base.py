from typing import Protocol

from models import Bucket, BucketCreate, BucketPatch, Idea, IdeaCreate, IdeaPatch


class BoardStore(Protocol):
    """
    Record store the classification core talks to.

    The classifier itself only needs list_buckets_by_plan, create_bucket,
    update_bucket and update_idea. The remaining methods serve the board
    service and the emergent-creation path. Implementations raise
    errors.PersistenceError (or NotFound) on failure.
    """

    async def list_buckets_by_plan(self, plan_id: str) -> list[Bucket]:
        ...

    async def get_bucket(self, bucket_id: str) -> Bucket:
        ...

    async def create_bucket(self, data: BucketCreate) -> Bucket:
        ...

    async def update_bucket(self, bucket_id: str, patch: BucketPatch) -> Bucket:
        ...

    async def next_display_order(self, plan_id: str) -> int:
        ...

    async def list_ideas_by_plan(self, plan_id: str) -> list[Idea]:
        ...

    async def get_idea(self, idea_id: str) -> Idea:
        ...

    async def create_idea(self, data: IdeaCreate) -> Idea:
        ...

    async def update_idea(self, idea_id: str, patch: IdeaPatch) -> Idea:
        ...
