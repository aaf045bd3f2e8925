"""
Tests for board write paths and embedding/cache consistency.

Run with: pytest tests/test_board_service.py -v
"""

from unittest.mock import AsyncMock

import pytest

from board_service import BoardService
from conftest import DIM, PLAN_ID, axis
from errors import NotFound
from models import (
    CreateBucketRequest,
    SubmitIdeaRequest,
    UpdateBucketRequest,
    UpdateIdeaRequest,
)


@pytest.fixture
def service(store, embeddings, cache, orchestrator):
    return BoardService(store, embeddings, cache, orchestrator)


class TestBuckets:
    """Tests for bucket create/update."""

    async def test_create_bucket_embeds_and_orders(self, service, store):
        first = await service.create_bucket(PLAN_ID, CreateBucketRequest(title="Venues"))
        second = await service.create_bucket(PLAN_ID, CreateBucketRequest(title="Food"))

        assert (first.display_order, second.display_order) == (0, 1)
        assert len((await store.get_bucket(second.id)).embedding) == DIM

    async def test_create_bucket_invalidates_cache(self, service, cache):
        await service.create_bucket(PLAN_ID, CreateBucketRequest(title="Venues"))
        assert len(await cache.get_bucket_vectors(PLAN_ID)) == 1

        await service.create_bucket(PLAN_ID, CreateBucketRequest(title="Food"))

        assert len(await cache.get_bucket_vectors(PLAN_ID)) == 2

    async def test_title_change_refreshes_cached_vector(self, service, cache, provider):
        provider.vectors = {"Venues": axis(0), "Budget": axis(1)}
        bucket = await service.create_bucket(PLAN_ID, CreateBucketRequest(title="Venues"))
        assert (await cache.get_bucket_vectors(PLAN_ID))[bucket.id] == pytest.approx(axis(0))

        await service.update_bucket(bucket.id, UpdateBucketRequest(title="Budget"))

        assert (await cache.get_bucket_vectors(PLAN_ID))[bucket.id] == pytest.approx(axis(1))

    async def test_text_change_clears_embedding_when_regeneration_fails(self, service, store, provider):
        bucket = await service.create_bucket(PLAN_ID, CreateBucketRequest(title="Venues"))
        provider.fail = True

        updated = await service.update_bucket(bucket.id, UpdateBucketRequest(description="Places"))

        assert updated.description == "Places"
        assert (await store.get_bucket(bucket.id)).embedding is None

    async def test_color_change_keeps_embedding(self, service, store, provider):
        bucket = await service.create_bucket(PLAN_ID, CreateBucketRequest(title="Venues"))
        calls = len(provider.calls)

        await service.update_bucket(bucket.id, UpdateBucketRequest(accent_color="teal"))

        assert len(provider.calls) == calls
        assert (await store.get_bucket(bucket.id)).embedding is not None

    async def test_update_missing_bucket(self, service):
        with pytest.raises(NotFound):
            await service.update_bucket("nope", UpdateBucketRequest(title="X"))


class TestIdeas:
    """Tests for idea submit/edit/move."""

    async def test_submit_with_bucket_skips_classifier(self, service, orchestrator, add_bucket):
        bucket = await add_bucket("Venues", vector=axis(0))
        orchestrator.handle_new_idea = AsyncMock()

        idea = await service.submit_idea(
            PLAN_ID, SubmitIdeaRequest(title="Rooftop", description="Bar", bucket_id=bucket.id)
        )

        assert idea.bucket_id == bucket.id
        assert idea.confidence == 85
        orchestrator.handle_new_idea.assert_not_called()

    async def test_submit_with_unknown_bucket(self, service):
        with pytest.raises(NotFound):
            await service.submit_idea(
                PLAN_ID, SubmitIdeaRequest(title="Rooftop", description="Bar", bucket_id="nope")
            )

    async def test_submit_auto_classifies(self, service, provider, add_bucket):
        provider.vectors = {"Rooftop\nBar": axis(0)}
        bucket = await add_bucket("Venues", vector=axis(0))

        idea = await service.submit_idea(
            PLAN_ID, SubmitIdeaRequest(title="Rooftop", description="Bar")
        )

        assert idea.bucket_id == bucket.id
        assert idea.confidence == 95
        assert idea.embedding == pytest.approx(axis(0))

    async def test_first_idea_left_unbucketed(self, service):
        idea = await service.submit_idea(
            PLAN_ID, SubmitIdeaRequest(title="Rooftop", description="Bar")
        )

        assert idea.bucket_id is None

    async def test_edit_text_regenerates_embedding(self, service, store, provider, add_idea):
        provider.vectors = {"Taco truck\nFood": axis(3)}
        idea = await add_idea("Rooftop", description="Bar", vector=axis(0))

        updated = await service.edit_idea(
            idea.id, UpdateIdeaRequest(title="Taco truck", description="Food")
        )

        assert updated.title == "Taco truck"
        assert (await store.get_idea(idea.id)).embedding == pytest.approx(axis(3))

    async def test_edit_clears_embedding_when_regeneration_fails(self, service, store, provider, add_idea):
        idea = await add_idea("Rooftop", description="Bar", vector=axis(0))
        provider.fail = True

        await service.edit_idea(idea.id, UpdateIdeaRequest(description="Cafe"))

        assert (await store.get_idea(idea.id)).embedding is None

    async def test_move_is_manual(self, service, orchestrator, add_bucket, add_idea):
        bucket = await add_bucket("Venues", vector=axis(0))
        idea = await add_idea("Rooftop")
        orchestrator.classify_idea = AsyncMock()

        moved = await service.move_idea(idea.id, bucket.id)

        assert moved.bucket_id == bucket.id
        assert moved.confidence == 85
        orchestrator.classify_idea.assert_not_called()

    async def test_move_across_plans_rejected(self, service, add_bucket, add_idea):
        bucket = await add_bucket("Venues", vector=axis(0), plan_id="plan-2")
        idea = await add_idea("Rooftop")

        with pytest.raises(ValueError):
            await service.move_idea(idea.id, bucket.id)
