"""Pytest configuration and shared fakes for backend tests."""

import hashlib
import math

import numpy as np
import pytest

from classification.cache import BucketEmbeddingCache
from classification.embeddings import EmbeddingService
from classification.orchestrator import ClassificationOrchestrator
from classification.router import SimilarityRouter
from classification.usage import Usage
from config import get_settings
from errors import ProviderError
from models import BucketCreate, IdeaCreate, IdeaPatch
from storage.memory import InMemoryBoardStore
from synthesis.reasoner import BucketReasoner

# pytest-asyncio runs in auto mode (see pyproject.toml)
PLAN_ID = "plan-1"
DIM = 8


def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


class FakeEmbeddingProvider:
    """
    Deterministic embedding transport.

    Texts registered in `vectors` return that vector; anything else gets a
    hash-seeded random vector, so the same text always embeds the same way.
    """

    def __init__(self, dimension: int = DIM, vectors: dict = None, fail: bool = False):
        self.dimension = dimension
        self.vectors = dict(vectors or {})
        self.fail = fail
        self.calls: list[str] = []

    async def embed(self, text: str):
        self.calls.append(text)
        if self.fail:
            raise ProviderError("embedding provider down")
        if text in self.vectors:
            return list(self.vectors[text]), Usage(input_tokens=10)
        seed = int(hashlib.sha256(text.encode()).hexdigest()[:8], 16)
        rng = np.random.default_rng(seed)
        return rng.standard_normal(self.dimension).tolist(), Usage(input_tokens=10)


class ScriptedLLM:
    """
    Completion transport that replays scripted responses in order.

    An Exception in the script is raised instead of returned. Running out of
    script raises ProviderError, like an unreachable provider.
    """

    def __init__(self, responses: list = None):
        self.responses = list(responses or [])
        self.prompts: list[str] = []

    async def complete(self, prompt: str, max_tokens: int = 1024):
        self.prompts.append(prompt)
        if not self.responses:
            raise ProviderError("LLM unavailable")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item, Usage(input_tokens=100, output_tokens=20)


def blend(weights: dict[int, float], dimension: int = DIM) -> list[float]:
    """
    Unit vector whose cosine with the one-hot axis i is exactly weights[i].

    The remaining mass goes on the last axis, which no test uses as a
    bucket direction.
    """
    vector = [0.0] * dimension
    for axis, weight in weights.items():
        vector[axis] = weight
    rest = 1.0 - sum(w * w for w in weights.values())
    vector[dimension - 1] = math.sqrt(max(rest, 0.0))
    return vector


def axis(i: int, dimension: int = DIM) -> list[float]:
    vector = [0.0] * dimension
    vector[i] = 1.0
    return vector


@pytest.fixture
def settings():
    return get_settings().model_copy(update={"emergent_debounce_seconds": 0})


@pytest.fixture
def store():
    return InMemoryBoardStore()


@pytest.fixture
def provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def embeddings(provider):
    return EmbeddingService(provider, dimension=DIM)


@pytest.fixture
def cache(store, embeddings):
    return BucketEmbeddingCache(store, embeddings, ttl_seconds=300)


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def reasoner(llm, store, embeddings, cache):
    return BucketReasoner(llm, store, embeddings, cache)


@pytest.fixture
def orchestrator(store, embeddings, cache, reasoner, settings):
    orch = ClassificationOrchestrator(
        store,
        embeddings,
        cache,
        reasoner,
        router=SimilarityRouter(
            min_similarity=0.35, tie_threshold=0.05, min_confidence=35, max_confidence=95
        )
    )
    orch.settings = settings
    return orch


@pytest.fixture
def add_bucket(store):
    async def _add(title, vector=None, description=None, plan_id=PLAN_ID):
        return await store.create_bucket(BucketCreate(
            plan_id=plan_id,
            title=title,
            description=description,
            display_order=await store.next_display_order(plan_id),
            embedding=vector
        ))
    return _add


@pytest.fixture
def add_idea(store):
    async def _add(title, description="", vector=None, bucket_id=None, plan_id=PLAN_ID):
        idea = await store.create_idea(IdeaCreate(
            plan_id=plan_id, title=title, description=description, bucket_id=bucket_id
        ))
        if vector is not None:
            idea = await store.update_idea(idea.id, IdeaPatch(embedding=vector))
        return idea
    return _add
