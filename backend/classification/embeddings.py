"""
Embedding provider adapter: text in, unit-length vector out.

Wraps a raw provider (anything with `async embed(text) -> (vector, Usage)`),
validates input and output, normalizes, and records usage into an injected
UsageTracker.
"""

import logging
from typing import Optional, Protocol

from classification.usage import Usage, UsageTracker
from classification.vector_math import has_dimension, is_unit, normalize
from config import get_settings
from errors import EmptyInput, ProviderError
from models import Bucket, Idea

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> tuple[list[float], Usage]:
        ...


def _join_text(title: str, description: Optional[str]) -> str:
    parts = [title or ""]
    if description:
        parts.append(description)
    return "\n".join(parts).strip()


def bucket_embedding_text(bucket: Bucket) -> str:
    """Text a bucket's embedding is derived from: title, then description."""
    return _join_text(bucket.title, bucket.description)


def idea_embedding_text(idea: Idea) -> str:
    """Text an idea's embedding is derived from: title, then description."""
    return _join_text(idea.title, idea.description)


class EmbeddingService:
    """
    Generates normalized embeddings with usage accounting.

    Errors:
        EmptyInput: text is blank after trimming
        ProviderUnavailable: raised by the provider when no key is configured
        ProviderError: transport/parse failure, wrong vector dimension or zero-norm vector
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        usage: UsageTracker = None,
        dimension: int = None
    ):
        settings = get_settings()
        self.provider = provider
        self.dimension = dimension or settings.embedding_dimension
        self.usage = usage or UsageTracker(
            "embeddings",
            input_price_per_1m=settings.embedding_price_per_1m_tokens
        )

    async def embed(self, text: str) -> list[float]:
        cleaned = (text or "").strip()
        if not cleaned:
            raise EmptyInput("Cannot generate embedding for empty text")

        raw, usage = await self.provider.embed(cleaned)
        self.usage.record(usage)

        if not has_dimension(raw, self.dimension):
            length = len(raw) if raw is not None else 0
            raise ProviderError(
                f"Embedding provider returned {length} dimensions "
                f"(expected {self.dimension})"
            )

        vector = normalize(raw)
        if not is_unit(vector):
            raise ProviderError("Embedding provider returned a zero-norm vector")
        return vector

    async def embed_bucket(self, bucket: Bucket) -> list[float]:
        return await self.embed(bucket_embedding_text(bucket))

    async def embed_idea(self, idea: Idea) -> list[float]:
        return await self.embed(idea_embedding_text(idea))

    def is_valid(self, vector: Optional[list[float]]) -> bool:
        """True if a stored vector can be used for scoring: right dimension, unit norm."""
        return has_dimension(vector, self.dimension) and is_unit(vector)
