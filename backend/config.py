from typing import Optional

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Keys
    # Optional: without a key every provider call raises ProviderUnavailable
    # and classification degrades to pattern matching / default bucket.
    openai_api_key: Optional[str] = None

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # OpenAI
    openai_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"
    embedding_dimension: int = 1536

    # Provider timeouts (seconds); a timeout is a ProviderError
    embedding_timeout_seconds: float = 5.0
    llm_timeout_seconds: float = 30.0

    # Pricing used for diagnostic cost accounting only
    embedding_price_per_1m_tokens: float = 0.02
    llm_input_price_per_1m_tokens: float = 0.25
    llm_output_price_per_1m_tokens: float = 1.25

    # Similarity routing
    # Below min_similarity no existing bucket is acceptable
    min_similarity: float = 0.35
    # Buckets scoring within tie_threshold of the best are tied (inclusive)
    tie_threshold: float = 0.05
    # Similarity is mapped linearly from [min_similarity, 1.0] onto this range
    min_confidence: int = 35
    max_confidence: int = 95

    # Fixed confidences for non-similarity decisions
    emergent_confidence: int = 90
    emergent_fallback_confidence: int = 50
    new_bucket_confidence: int = 75
    llm_assign_default_confidence: int = 70
    default_bucket_confidence: int = 40
    manual_idea_confidence: int = 85
    pattern_match_threshold: int = 70

    # Classification flow
    use_embeddings_classification: bool = True
    log_classification_metrics: bool = False
    bucket_cache_ttl_seconds: float = 300.0
    # Wait before emergent batch creation so near-simultaneous submissions
    # land in the same batch
    emergent_debounce_seconds: float = 3.0

    # Decision log for offline threshold tuning (JSONL format)
    decision_log_path: str = "training_data/classification_decisions.jsonl"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
