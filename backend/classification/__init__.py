from classification.usage import Usage, UsageTracker
from classification.embeddings import EmbeddingService
from classification.cache import BucketEmbeddingCache, TTLCache
from classification.router import SimilarityRouter, RouteOutcome, ScoredBucket
from classification.patterns import attempt_pattern_match, extract_bucket_patterns
from classification.decision_logger import DecisionLogger

# The orchestrator depends on synthesis.reasoner, which imports from this
# package; import it as classification.orchestrator.

__all__ = [
    "Usage",
    "UsageTracker",
    "EmbeddingService",
    "BucketEmbeddingCache",
    "TTLCache",
    "SimilarityRouter",
    "RouteOutcome",
    "ScoredBucket",
    "attempt_pattern_match",
    "extract_bucket_patterns",
    "DecisionLogger"
]
