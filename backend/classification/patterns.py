import re
from dataclasses import dataclass
from typing import Optional

from models import Bucket, Idea

STOPWORDS = frozenset({
    "the", "and", "or", "for", "to", "of", "in", "on", "at", "a", "an",
    "ideas", "general",
})

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")


@dataclass
class BucketPattern:
    bucket_id: str
    bucket_title: str
    keywords: list[str]


@dataclass
class PatternMatch:
    bucket_id: str
    confidence: int


def _tokens(text: str) -> list[str]:
    return [t for t in _TOKEN_SPLIT.split(text.lower()) if t]


def extract_bucket_patterns(buckets: list[Bucket]) -> list[BucketPattern]:
    """Keyword set per bucket from its title and description."""
    patterns = []
    for bucket in buckets:
        words = _tokens(f"{bucket.title} {bucket.description or ''}")
        keywords = list(dict.fromkeys(
            w for w in words if len(w) >= 3 and w not in STOPWORDS
        ))
        patterns.append(BucketPattern(
            bucket_id=bucket.id,
            bucket_title=bucket.title,
            keywords=keywords
        ))
    return patterns


def attempt_pattern_match(
    idea: Idea,
    patterns: list[BucketPattern],
    threshold: int = 70
) -> Optional[PatternMatch]:
    """
    Keyword-overlap fallback used only when the LLM is unavailable.

    Confidence is min(50 + 10 * hits, 90); matches under `threshold` are
    rejected so the caller moves on to the default bucket.
    """
    words = set(_tokens(f"{idea.title} {idea.description or ''}"))

    best: Optional[PatternMatch] = None
    for pattern in patterns:
        hits = sum(1 for keyword in pattern.keywords if keyword in words)
        if hits == 0:
            continue
        confidence = min(50 + hits * 10, 90)
        if best is None or confidence > best.confidence:
            best = PatternMatch(bucket_id=pattern.bucket_id, confidence=confidence)

    if best is not None and best.confidence >= threshold:
        return best
    return None
