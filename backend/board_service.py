"""
Board Service: the write paths of the board.

Every mutation that can change what a bucket or idea "means" keeps the
embedding state consistent:
- text edits clear the stored embedding in the same write, then regenerate it
- bucket creates and text edits invalidate the plan's bucket-vector cache
  before returning, so the next classification never scores stale vectors

Embedding generation here is best-effort. A missing embedding is regenerated
lazily by the cache (buckets) or the orchestrator (ideas).
"""

import logging

from classification.cache import BucketEmbeddingCache
from classification.embeddings import EmbeddingService
from classification.orchestrator import ClassificationOrchestrator
from config import get_settings
from models import (
    Bucket,
    BucketCreate,
    BucketPatch,
    CreateBucketRequest,
    Idea,
    IdeaCreate,
    IdeaPatch,
    SubmitIdeaRequest,
    UpdateBucketRequest,
    UpdateIdeaRequest,
)
from storage.base import BoardStore

logger = logging.getLogger(__name__)


class BoardService:
    def __init__(
        self,
        store: BoardStore,
        embeddings: EmbeddingService,
        cache: BucketEmbeddingCache,
        orchestrator: ClassificationOrchestrator
    ):
        self.settings = get_settings()
        self.store = store
        self.embeddings = embeddings
        self.cache = cache
        self.orchestrator = orchestrator

    # =========================================================================
    # Ideas
    # =========================================================================

    async def list_ideas(self, plan_id: str) -> list[Idea]:
        return await self.store.list_ideas_by_plan(plan_id)

    async def submit_idea(self, plan_id: str, request: SubmitIdeaRequest) -> Idea:
        """
        Add an idea to a plan.

        With an explicit bucket_id the idea is filed there at manual
        confidence and the classifier is never consulted. Otherwise it is
        auto-classified (or held for emergent bucket creation). The returned
        idea reflects whatever classification has been persisted.
        """
        if request.bucket_id:
            # Raises NotFound for an unknown bucket
            await self.store.get_bucket(request.bucket_id)

        idea = await self.store.create_idea(IdeaCreate(
            plan_id=plan_id,
            title=request.title.strip(),
            description=request.description.strip(),
            bucket_id=request.bucket_id,
            confidence=self.settings.manual_idea_confidence if request.bucket_id else 0
        ))
        logger.info("Created idea %s (%r) in plan %s", idea.id, idea.title, plan_id)

        idea = await self._refresh_idea_embedding(idea)

        if not request.bucket_id:
            await self.orchestrator.handle_new_idea(idea, request.plan_context)

        return await self.store.get_idea(idea.id)

    async def edit_idea(self, idea_id: str, request: UpdateIdeaRequest) -> Idea:
        changes = request.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return await self.store.get_idea(idea_id)

        text_changed = "title" in changes or "description" in changes
        if text_changed:
            changes["embedding"] = None

        idea = await self.store.update_idea(idea_id, IdeaPatch(**changes))
        if text_changed:
            idea = await self._refresh_idea_embedding(idea)
        return idea

    async def move_idea(self, idea_id: str, bucket_id: str) -> Idea:
        """Manual move. Confidence becomes the manual-assignment value."""
        bucket = await self.store.get_bucket(bucket_id)
        idea = await self.store.get_idea(idea_id)
        if bucket.plan_id != idea.plan_id:
            raise ValueError("Cannot move an idea to a bucket in another plan")

        logger.info("Moving idea %s to bucket %s (%r)", idea_id, bucket_id, bucket.title)
        return await self.store.update_idea(
            idea_id,
            IdeaPatch(bucket_id=bucket_id, confidence=self.settings.manual_idea_confidence)
        )

    # =========================================================================
    # Buckets
    # =========================================================================

    async def list_buckets(self, plan_id: str) -> list[Bucket]:
        return await self.store.list_buckets_by_plan(plan_id)

    async def create_bucket(self, plan_id: str, request: CreateBucketRequest) -> Bucket:
        bucket = await self.store.create_bucket(BucketCreate(
            plan_id=plan_id,
            title=request.title.strip(),
            description=request.description,
            accent_color=request.accent_color,
            display_order=await self.store.next_display_order(plan_id)
        ))
        bucket = await self._refresh_bucket_embedding(bucket)
        self.cache.invalidate(plan_id)
        return bucket

    async def update_bucket(self, bucket_id: str, request: UpdateBucketRequest) -> Bucket:
        changes = request.model_dump(exclude_unset=True)
        # A bucket always has a title and color; only the description can be cleared
        changes = {k: v for k, v in changes.items() if v is not None or k == "description"}
        if not changes:
            return await self.store.get_bucket(bucket_id)

        text_changed = "title" in changes or "description" in changes
        if text_changed:
            changes["embedding"] = None

        bucket = await self.store.update_bucket(bucket_id, BucketPatch(**changes))
        if text_changed:
            bucket = await self._refresh_bucket_embedding(bucket)
            self.cache.invalidate(bucket.plan_id)
        return bucket

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _refresh_idea_embedding(self, idea: Idea) -> Idea:
        try:
            embedding = await self.embeddings.embed_idea(idea)
            return await self.store.update_idea(idea.id, IdeaPatch(embedding=embedding))
        except Exception:
            logger.error("Failed to generate embedding for idea %s", idea.id, exc_info=True)
            return idea

    async def _refresh_bucket_embedding(self, bucket: Bucket) -> Bucket:
        try:
            embedding = await self.embeddings.embed_bucket(bucket)
            return await self.store.update_bucket(bucket.id, BucketPatch(embedding=embedding))
        except Exception:
            logger.error(
                "Failed to generate embedding for bucket %s (%r)",
                bucket.id, bucket.title, exc_info=True
            )
            return bucket
