"""
Bucket Reasoner: LLM-backed bucket decisions.

Four prompted operations share one contract: the model must answer with bare
JSON, the answer goes through the tolerant decoder, and token usage is
recorded in the reasoner's UsageTracker.

    create_emergent_buckets  first 1-3 buckets for a bucket-less plan (batch)
    propose_new_bucket       one new bucket for an idea nothing fits
    break_tie                pick one of several near-equal buckets
    classify                 single-shot "assign existing or create new"

The reasoner does not recover from its own failures. MalformedResponse,
ProviderError and friends propagate to the orchestrator, which moves on to
the next fallback tier. Side work on buckets it creates (embedding, cache
invalidation) is best-effort and only logged on failure.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

from pydantic import ValidationError

from classification.cache import BucketEmbeddingCache
from classification.embeddings import EmbeddingService
from classification.router import ScoredBucket
from classification.usage import Usage, UsageTracker
from config import get_settings
from errors import MalformedResponse
from models import (
    Bucket,
    BucketCreate,
    BucketPatch,
    BucketProposal,
    ClassificationDecision,
    ClassificationResult,
    EmergentBucketProposal,
    Idea,
    TieBreakDecision,
    coerce_color,
)
from storage.base import BoardStore
from synthesis import prompts
from synthesis.json_decoder import decode_json_array, decode_json_object

logger = logging.getLogger(__name__)

MAX_EMERGENT_BUCKETS = 3


class CompletionProvider(Protocol):
    async def complete(self, prompt: str, max_tokens: int = 1024) -> tuple[str, Usage]:
        ...


@dataclass
class EmergentResult:
    """Buckets created by a batch run and the idea -> bucket assignments."""
    buckets: list[Bucket]
    assignments: dict[str, str] = field(default_factory=dict)
    unassigned: list[str] = field(default_factory=list)


def _clamp_confidence(value: Optional[float], default: int) -> int:
    if value is None:
        return default
    return int(round(max(0.0, min(100.0, float(value)))))


class BucketReasoner:
    def __init__(
        self,
        llm: CompletionProvider,
        store: BoardStore,
        embeddings: EmbeddingService,
        cache: BucketEmbeddingCache,
        usage: UsageTracker = None
    ):
        self.settings = get_settings()
        self.llm = llm
        self.store = store
        self.embeddings = embeddings
        self.cache = cache
        self.usage = usage or UsageTracker(
            "llm",
            input_price_per_1m=self.settings.llm_input_price_per_1m_tokens,
            output_price_per_1m=self.settings.llm_output_price_per_1m_tokens
        )

    async def _ask(self, prompt: str, max_tokens: int, label: str) -> str:
        text, usage = await self.llm.complete(prompt, max_tokens=max_tokens)
        self.usage.record(usage)
        logger.debug("LLM raw %s response: %s", label, text)
        return text

    # =========================================================================
    # Emergent bucket creation (batch)
    # =========================================================================

    async def create_emergent_buckets(
        self,
        plan_id: str,
        ideas: list[Idea],
        plan_context: str = None
    ) -> EmergentResult:
        """
        Invent the first buckets for a plan from its unbucketed ideas.

        Each idea is assigned at most once: the first bucket that claims an
        index wins, out-of-range indices are ignored, and ideas nobody claims
        are reported in `unassigned` and left unbucketed.
        """
        text = await self._ask(
            prompts.emergent_buckets_prompt(ideas, plan_context),
            max_tokens=1024,
            label="emergent-buckets"
        )
        raw_buckets = decode_json_array(text)

        proposals: list[EmergentBucketProposal] = []
        for raw in raw_buckets:
            try:
                proposal = EmergentBucketProposal.model_validate(raw)
            except ValidationError:
                logger.warning("Skipping malformed emergent bucket definition: %r", raw)
                continue
            if proposal.title.strip():
                proposals.append(proposal)

        if len(proposals) > MAX_EMERGENT_BUCKETS:
            logger.warning(
                "LLM proposed %d emergent buckets; keeping the first %d",
                len(proposals), MAX_EMERGENT_BUCKETS
            )
            proposals = proposals[:MAX_EMERGENT_BUCKETS]

        if not proposals:
            raise MalformedResponse("LLM returned no usable buckets", raw_text=text)

        result = EmergentResult(buckets=[])
        for order, proposal in enumerate(proposals):
            bucket = await self._create_bucket(plan_id, proposal, order)
            result.buckets.append(bucket)

            for number in proposal.idea_assignments:
                if not 1 <= number <= len(ideas):
                    continue
                idea_id = ideas[number - 1].id
                result.assignments.setdefault(idea_id, bucket.id)

        result.unassigned = [i.id for i in ideas if i.id not in result.assignments]
        if result.unassigned:
            logger.warning(
                "Emergent buckets for plan %s left %d idea(s) unassigned: %s",
                plan_id, len(result.unassigned), result.unassigned
            )

        self._invalidate(plan_id)
        return result

    # =========================================================================
    # New-category proposal (single idea)
    # =========================================================================

    async def propose_new_bucket(
        self,
        idea: Idea,
        existing_buckets: list[Bucket],
        plan_context: str = None
    ) -> ClassificationResult:
        text = await self._ask(
            prompts.new_bucket_prompt(idea, existing_buckets, plan_context),
            max_tokens=512,
            label="new-bucket"
        )
        try:
            proposal = BucketProposal.model_validate(decode_json_object(text))
        except ValidationError as e:
            raise MalformedResponse(f"Invalid new bucket definition: {e}", raw_text=text) from e

        if not proposal.title.strip():
            raise MalformedResponse("LLM did not return a title for the new bucket", raw_text=text)

        bucket = await self._create_bucket(
            idea.plan_id, proposal, await self.store.next_display_order(idea.plan_id)
        )
        self._invalidate(idea.plan_id)

        return ClassificationResult(
            bucket_id=bucket.id,
            confidence=self.settings.new_bucket_confidence,
            is_new_bucket=True
        )

    # =========================================================================
    # Tie-break
    # =========================================================================

    async def break_tie(
        self,
        idea: Idea,
        tied: list[ScoredBucket],
        plan_context: str = None
    ) -> ScoredBucket:
        """Pick one of the tied buckets. A bad index falls back to the first (best) entry."""
        if len(tied) == 1:
            return tied[0]

        text = await self._ask(
            prompts.tie_break_prompt(idea, tied, plan_context),
            max_tokens=512,
            label="tie-break"
        )
        try:
            decision = TieBreakDecision.model_validate(decode_json_object(text))
        except ValidationError as e:
            raise MalformedResponse(f"Invalid tie-break decision: {e}", raw_text=text) from e

        number = decision.chosen_bucket_number
        if number is not None and 1 <= number <= len(tied):
            chosen = tied[number - 1]
        else:
            logger.warning(
                "Tie-break index %r out of range for %d buckets; using top match",
                number, len(tied)
            )
            chosen = tied[0]

        logger.info(
            "LLM tie-break for idea %r chose %r: %s",
            idea.title, chosen.bucket.title, decision.reasoning
        )
        return chosen

    # =========================================================================
    # Full single-shot classification
    # =========================================================================

    async def classify(
        self,
        idea: Idea,
        existing_buckets: list[Bucket],
        plan_context: str = None
    ) -> ClassificationResult:
        text = await self._ask(
            prompts.classify_prompt(idea, existing_buckets, plan_context),
            max_tokens=512,
            label="classification"
        )
        try:
            decision = ClassificationDecision.model_validate(decode_json_object(text))
        except ValidationError as e:
            raise MalformedResponse(f"Invalid classification decision: {e}", raw_text=text) from e

        if len(decision.reasoning) < 10:
            logger.warning("LLM returned insufficient reasoning: %r", decision.reasoning)

        if decision.action == "assign_existing" and existing_buckets:
            number = decision.existing_bucket_number
            if number is not None and 1 <= number <= len(existing_buckets):
                bucket = existing_buckets[number - 1]
            else:
                bucket = existing_buckets[0]

            confidence = _clamp_confidence(
                decision.confidence, self.settings.llm_assign_default_confidence
            )
            if confidence < self.settings.pattern_match_threshold:
                logger.warning(
                    "Low confidence LLM assignment of %r to %r (%d): %s",
                    idea.title, bucket.title, confidence, decision.reasoning
                )
            logger.info(
                "LLM classification: %r -> existing %r (%d)",
                idea.title, bucket.title, confidence
            )
            return ClassificationResult(
                bucket_id=bucket.id, confidence=confidence, is_new_bucket=False
            )

        if decision.action == "create_new" and decision.new_bucket and decision.new_bucket.title.strip():
            bucket = await self._create_bucket(
                idea.plan_id,
                decision.new_bucket,
                await self.store.next_display_order(idea.plan_id)
            )
            self._invalidate(idea.plan_id)

            confidence = _clamp_confidence(
                decision.confidence, self.settings.new_bucket_confidence
            )
            logger.info(
                "LLM classification: %r -> new %r (%d)",
                idea.title, bucket.title, confidence
            )
            return ClassificationResult(
                bucket_id=bucket.id, confidence=confidence, is_new_bucket=True
            )

        raise MalformedResponse(
            f"Unusable classification action {decision.action!r}", raw_text=text
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _create_bucket(
        self,
        plan_id: str,
        proposal: BucketProposal,
        display_order: int
    ) -> Bucket:
        bucket = await self.store.create_bucket(BucketCreate(
            plan_id=plan_id,
            title=proposal.title.strip(),
            description=proposal.description or None,
            accent_color=coerce_color(proposal.accent_color),
            display_order=display_order
        ))

        try:
            embedding = await self.embeddings.embed_bucket(bucket)
            bucket = await self.store.update_bucket(
                bucket.id, BucketPatch(embedding=embedding)
            )
        except Exception:
            logger.error(
                "Failed to generate embedding for LLM-created bucket %s (%r)",
                bucket.id, bucket.title, exc_info=True
            )

        return bucket

    def _invalidate(self, plan_id: str):
        try:
            self.cache.invalidate(plan_id)
        except Exception:
            logger.error(
                "Failed to invalidate bucket embeddings cache for plan %s",
                plan_id, exc_info=True
            )
