"""
Classification Orchestrator: the state machine that files an idea into a bucket.

    IDLE ──(embeddings off / no buckets)──────────────────────► LLM_ONLY
      │                                                            │
      ▼                                                            │
    EMBED_IDEA ─► SCORE_BUCKETS ─┬─ clear winner ─► ACCEPT ──────┐ │
                                 ├─ tie ──────────► TIE_BREAK ───┤ │
                                 ├─ no match ─────► CREATE_NEW ──┤ │
                                 └─ no signal ─┐                 │ │
                                               ▼                 ▼ ▼
    (error in any of the above) ──────► LLM_FALLBACK ──────► PERSIST ─► DONE
                                               │ error            ▲
                                               ▼                  │
                                        PATTERN_FALLBACK ─────────┤
                                               │ no match         │
                                               ▼                  │
                                        DEFAULT_BUCKET ───────────┘

Every state handler takes the run and returns the next state. Errors raised
by a handler are routed by _next_state_on_error, so the fallback chain can be
exercised one state at a time. The machine always ends with a
ClassificationResult.

Emergent bucket creation is gated in front of the machine (handle_new_idea):
a plan with no buckets waits for a second idea, debounces, then batch-creates
its first buckets. The debounce is a batching window, not a lock, so two
batches for one plan are possible under heavy concurrency.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from classification.cache import BucketEmbeddingCache
from classification.decision_logger import DecisionLogger
from classification.embeddings import EmbeddingService
from classification.patterns import attempt_pattern_match, extract_bucket_patterns
from classification.router import RouteDecision, RouteOutcome, SimilarityRouter
from config import get_settings
from models import (
    Bucket,
    BucketColor,
    BucketCreate,
    BucketPatch,
    ClassificationResult,
    ClassificationStats,
    Idea,
    IdeaPatch,
)
from storage.base import BoardStore
from synthesis.reasoner import BucketReasoner

logger = logging.getLogger(__name__)


class State(str, Enum):
    IDLE = "idle"
    EMBED_IDEA = "embed_idea"
    SCORE_BUCKETS = "score_buckets"
    ACCEPT = "accept"
    TIE_BREAK = "tie_break"
    CREATE_NEW = "create_new"
    LLM_ONLY = "llm_only"
    LLM_FALLBACK = "llm_fallback"
    PATTERN_FALLBACK = "pattern_fallback"
    DEFAULT_BUCKET = "default_bucket"
    PERSIST = "persist"
    DONE = "done"


class ClassificationPath(str, Enum):
    """Terminal path that produced the result; names match ClassificationStats."""
    EMBEDDING_ONLY = "embedding_only"
    TIE_BREAK = "tie_break"
    NEW_BUCKET = "new_bucket"
    LLM_FALLBACK = "llm_fallback"
    LLM_ONLY = "llm_only"
    PATTERN_FALLBACK = "pattern_fallback"
    DEFAULT_BUCKET = "default_bucket"
    EMERGENT = "emergent"


# Where an exception raised inside a state sends the run
_ERROR_EDGES = {
    State.EMBED_IDEA: State.LLM_FALLBACK,
    State.SCORE_BUCKETS: State.LLM_FALLBACK,
    State.TIE_BREAK: State.LLM_FALLBACK,
    State.CREATE_NEW: State.LLM_FALLBACK,
    State.LLM_ONLY: State.PATTERN_FALLBACK,
    State.LLM_FALLBACK: State.PATTERN_FALLBACK,
    State.PATTERN_FALLBACK: State.DEFAULT_BUCKET,
}


@dataclass
class ClassificationRun:
    """Mutable state carried through one pass of the machine."""
    idea: Idea
    buckets: list[Bucket]
    plan_context: Optional[str] = None
    persist: bool = True
    state: State = State.IDLE
    idea_vector: Optional[list[float]] = None
    decision: Optional[RouteDecision] = None
    result: Optional[ClassificationResult] = None
    path: Optional[ClassificationPath] = None
    error: Optional[Exception] = None
    history: list[State] = field(default_factory=list)

    @property
    def best_similarity(self) -> Optional[float]:
        if self.decision and self.decision.best:
            return self.decision.best.similarity
        return None


class ClassificationOrchestrator:
    def __init__(
        self,
        store: BoardStore,
        embeddings: EmbeddingService,
        cache: BucketEmbeddingCache,
        reasoner: BucketReasoner,
        router: SimilarityRouter = None,
        decision_logger: DecisionLogger = None
    ):
        self.settings = get_settings()
        self.store = store
        self.embeddings = embeddings
        self.cache = cache
        self.reasoner = reasoner
        self.router = router or SimilarityRouter()
        self.decision_logger = decision_logger
        self._stats = ClassificationStats()
        self._handlers = {
            State.IDLE: self._idle,
            State.EMBED_IDEA: self._embed_idea,
            State.SCORE_BUCKETS: self._score_buckets,
            State.ACCEPT: self._accept,
            State.TIE_BREAK: self._tie_break,
            State.CREATE_NEW: self._create_new,
            State.LLM_ONLY: self._llm_only,
            State.LLM_FALLBACK: self._llm_fallback,
            State.PATTERN_FALLBACK: self._pattern_fallback,
            State.DEFAULT_BUCKET: self._default_bucket,
            State.PERSIST: self._persist,
        }

    # =========================================================================
    # Public API
    # =========================================================================

    def stats(self) -> ClassificationStats:
        return self._stats.model_copy()

    async def classify_idea(
        self,
        idea: Idea,
        existing_buckets: list[Bucket] = None,
        plan_context: str = None,
        persist: bool = True
    ) -> ClassificationResult:
        """
        Classify one idea into an existing or new bucket.

        Never raises for provider or parsing failures; the fallback chain
        always yields a result. The one exception is a storage failure while
        creating a default bucket for a plan that has none.
        """
        if existing_buckets is None:
            existing_buckets = await self.store.list_buckets_by_plan(idea.plan_id)

        run = ClassificationRun(
            idea=idea,
            buckets=list(existing_buckets),
            plan_context=plan_context,
            persist=persist
        )
        await self.run(run)
        return run.result

    async def run(self, run: ClassificationRun) -> ClassificationRun:
        """Drive a run from its current state to DONE."""
        while run.state is not State.DONE:
            handler = self._handlers[run.state]
            try:
                next_state = await handler(run)
            except Exception as e:
                next_state = self._next_state_on_error(run, e)
            run.history.append(run.state)
            run.state = next_state
        return run

    async def handle_new_idea(
        self,
        idea: Idea,
        plan_context: str = None
    ) -> Optional[ClassificationResult]:
        """
        Auto-classification entry point for a freshly submitted idea.

        - already bucketed: nothing to do
        - plan has buckets: classify the idea
        - no buckets, fewer than 2 ideas: leave it unbucketed
        - no buckets, 2+ ideas: debounce, then emergent batch creation

        Returns the ClassificationResult when the single-idea path ran, None
        otherwise. Emergent creation is best-effort singular, not exactly-once.
        """
        if idea.bucket_id:
            return None

        buckets = await self.store.list_buckets_by_plan(idea.plan_id)
        if buckets:
            return await self.classify_idea(idea, buckets, plan_context)

        ideas = await self.store.list_ideas_by_plan(idea.plan_id)
        if len(ideas) < 2:
            logger.info(
                "Plan %s has no buckets and %d idea(s); leaving idea %s unbucketed",
                idea.plan_id, len(ideas), idea.id
            )
            return None

        logger.info(
            "Scheduling emergent buckets for plan %s in %.1fs (%d ideas)",
            idea.plan_id, self.settings.emergent_debounce_seconds, len(ideas)
        )
        await asyncio.sleep(self.settings.emergent_debounce_seconds)

        # Another request may have finished a batch while we waited
        buckets = await self.store.list_buckets_by_plan(idea.plan_id)
        if buckets:
            current = await self.store.get_idea(idea.id)
            if current.bucket_id:
                return None
            return await self.classify_idea(current, buckets, plan_context)

        await self.run_emergent_batch(idea.plan_id, plan_context)
        return None

    async def run_emergent_batch(
        self,
        plan_id: str,
        plan_context: str = None
    ) -> list[Bucket]:
        """
        Create the first buckets for a plan from its unbucketed ideas.

        The idea list is re-read here, so submissions that arrived during the
        debounce window are included. If the LLM fails, everything goes into
        a single "General" bucket at reduced confidence.
        """
        ideas = [
            i for i in await self.store.list_ideas_by_plan(plan_id)
            if not i.bucket_id
        ]
        if len(ideas) < 2:
            return []

        try:
            emergent = await self.reasoner.create_emergent_buckets(
                plan_id, ideas, plan_context
            )
            buckets = emergent.buckets
            assignments = emergent.assignments
            confidence = self.settings.emergent_confidence
        except Exception:
            logger.error(
                "Emergent bucket creation failed for plan %s; using General bucket",
                plan_id, exc_info=True
            )
            general = await self._create_general_bucket(plan_id)
            buckets = [general]
            assignments = {i.id: general.id for i in ideas}
            confidence = self.settings.emergent_fallback_confidence

        for idea_id, bucket_id in assignments.items():
            try:
                await self.store.update_idea(
                    idea_id, IdeaPatch(bucket_id=bucket_id, confidence=confidence)
                )
            except Exception:
                logger.error(
                    "Failed to assign idea %s to emergent bucket %s",
                    idea_id, bucket_id, exc_info=True
                )
                continue
            await self._log_decision(
                plan_id, idea_id, ClassificationPath.EMERGENT,
                ClassificationResult(
                    bucket_id=bucket_id, confidence=confidence, is_new_bucket=True
                )
            )

        self._stats.emergent_batches += 1
        logger.info("Created %d emergent bucket(s) for plan %s", len(buckets), plan_id)
        return buckets

    # =========================================================================
    # States
    # =========================================================================

    async def _idle(self, run: ClassificationRun) -> State:
        self._stats.total += 1
        if not self.settings.use_embeddings_classification or not run.buckets:
            self._log_metrics(
                "Using LLM-only classification (embeddings disabled or no buckets)",
                run
            )
            return State.LLM_ONLY
        return State.EMBED_IDEA

    async def _embed_idea(self, run: ClassificationRun) -> State:
        if self.embeddings.is_valid(run.idea.embedding):
            run.idea_vector = run.idea.embedding
            return State.SCORE_BUCKETS

        run.idea_vector = await self.embeddings.embed_idea(run.idea)
        try:
            await self.store.update_idea(
                run.idea.id, IdeaPatch(embedding=run.idea_vector)
            )
        except Exception:
            logger.error(
                "Failed to persist embedding for idea %s", run.idea.id, exc_info=True
            )
        return State.SCORE_BUCKETS

    async def _score_buckets(self, run: ClassificationRun) -> State:
        vectors = await self.cache.get_bucket_vectors(run.idea.plan_id)
        candidates = [(b, vectors[b.id]) for b in run.buckets if b.id in vectors]

        run.decision = self.router.route(run.idea_vector, candidates)
        outcome = run.decision.outcome

        if self.settings.log_classification_metrics and run.decision.scored:
            logger.info(
                "Embedding similarities for idea %s: %s",
                run.idea.id,
                [(s.bucket.title, round(s.similarity, 4)) for s in run.decision.scored[:5]]
            )

        if outcome is RouteOutcome.NO_SIGNAL:
            logger.warning(
                "No bucket similarities for idea %s; falling back to LLM classification",
                run.idea.id
            )
            return State.LLM_FALLBACK
        if outcome is RouteOutcome.NO_MATCH:
            logger.info(
                "All bucket similarities below %.2f for idea %s (best %.4f); creating new bucket",
                self.router.min_similarity, run.idea.id, run.best_similarity
            )
            return State.CREATE_NEW
        if outcome is RouteOutcome.TIE:
            logger.info(
                "Tie between %d buckets for idea %s; invoking LLM tie-break",
                len(run.decision.tied), run.idea.id
            )
            return State.TIE_BREAK
        return State.ACCEPT

    async def _accept(self, run: ClassificationRun) -> State:
        best = run.decision.best
        run.result = ClassificationResult(
            bucket_id=best.bucket.id,
            confidence=self.router.confidence_for(best.similarity),
            is_new_bucket=False
        )
        run.path = ClassificationPath.EMBEDDING_ONLY
        return State.PERSIST

    async def _tie_break(self, run: ClassificationRun) -> State:
        chosen = await self.reasoner.break_tie(
            run.idea, run.decision.tied, run.plan_context
        )
        run.result = ClassificationResult(
            bucket_id=chosen.bucket.id,
            confidence=self.router.confidence_for(chosen.similarity),
            is_new_bucket=False
        )
        run.path = ClassificationPath.TIE_BREAK
        return State.PERSIST

    async def _create_new(self, run: ClassificationRun) -> State:
        run.result = await self.reasoner.propose_new_bucket(
            run.idea, run.buckets, run.plan_context
        )
        run.path = ClassificationPath.NEW_BUCKET
        return State.PERSIST

    async def _llm_only(self, run: ClassificationRun) -> State:
        run.result = await self.reasoner.classify(
            run.idea, run.buckets, run.plan_context
        )
        run.path = ClassificationPath.LLM_ONLY
        return State.PERSIST

    async def _llm_fallback(self, run: ClassificationRun) -> State:
        run.result = await self.reasoner.classify(
            run.idea, run.buckets, run.plan_context
        )
        run.path = ClassificationPath.LLM_FALLBACK
        return State.PERSIST

    async def _pattern_fallback(self, run: ClassificationRun) -> State:
        match = attempt_pattern_match(
            run.idea,
            extract_bucket_patterns(run.buckets),
            threshold=self.settings.pattern_match_threshold
        )
        if match is None:
            return State.DEFAULT_BUCKET

        logger.info(
            "Using pattern match fallback for idea %r -> %s (%d)",
            run.idea.title, match.bucket_id, match.confidence
        )
        run.result = ClassificationResult(
            bucket_id=match.bucket_id, confidence=match.confidence, is_new_bucket=False
        )
        run.path = ClassificationPath.PATTERN_FALLBACK
        return State.PERSIST

    async def _default_bucket(self, run: ClassificationRun) -> State:
        if run.buckets:
            bucket = min(run.buckets, key=lambda b: b.display_order)
            is_new = False
        else:
            # Storage failure here propagates: there is no bucket to return
            bucket = await self._create_general_bucket(run.idea.plan_id)
            is_new = True

        logger.info("Using default bucket %r for idea %r", bucket.title, run.idea.title)
        run.result = ClassificationResult(
            bucket_id=bucket.id,
            confidence=self.settings.default_bucket_confidence,
            is_new_bucket=is_new
        )
        run.path = ClassificationPath.DEFAULT_BUCKET
        return State.PERSIST

    async def _persist(self, run: ClassificationRun) -> State:
        counter = run.path.value
        setattr(self._stats, counter, getattr(self._stats, counter) + 1)

        if run.persist:
            try:
                await self.store.update_idea(
                    run.idea.id,
                    IdeaPatch(
                        bucket_id=run.result.bucket_id,
                        confidence=run.result.confidence
                    )
                )
            except Exception:
                logger.error(
                    "Failed to persist classification for idea %s", run.idea.id, exc_info=True
                )

        if run.result.is_new_bucket:
            self.cache.invalidate(run.idea.plan_id)

        self._log_metrics(
            f"Classified idea via {run.path.value} -> {run.result.bucket_id} "
            f"({run.result.confidence})",
            run
        )
        await self._log_decision(
            run.idea.plan_id, run.idea.id, run.path, run.result, run.best_similarity
        )
        return State.DONE

    # =========================================================================
    # Helpers
    # =========================================================================

    def _next_state_on_error(self, run: ClassificationRun, error: Exception) -> State:
        next_state = _ERROR_EDGES.get(run.state)
        if next_state is None:
            raise error

        run.error = error
        if self.settings.log_classification_metrics:
            logger.error(
                "Classification state %s failed for idea %s; moving to %s (stats: %s)",
                run.state.value, run.idea.id, next_state.value, self._stats.model_dump(),
                exc_info=error
            )
        else:
            logger.error(
                "Classification state %s failed for idea %s; moving to %s: %s",
                run.state.value, run.idea.id, next_state.value, error
            )
        return next_state

    async def _create_general_bucket(self, plan_id: str) -> Bucket:
        bucket = await self.store.create_bucket(BucketCreate(
            plan_id=plan_id,
            title="General",
            description="Uncategorized ideas",
            accent_color=BucketColor.GRAY,
            display_order=await self.store.next_display_order(plan_id)
        ))
        try:
            embedding = await self.embeddings.embed_bucket(bucket)
            bucket = await self.store.update_bucket(bucket.id, BucketPatch(embedding=embedding))
        except Exception:
            logger.error(
                "Failed to generate embedding for General bucket in plan %s",
                plan_id, exc_info=True
            )
        self.cache.invalidate(plan_id)
        return bucket

    def _log_metrics(self, message: str, run: ClassificationRun):
        if self.settings.log_classification_metrics:
            logger.info(
                "[classification] %s (idea %s, stats %s)",
                message, run.idea.id, self._stats.model_dump()
            )

    async def _log_decision(
        self,
        plan_id: str,
        idea_id: str,
        path: ClassificationPath,
        result: ClassificationResult,
        best_similarity: Optional[float] = None
    ):
        if self.decision_logger is None:
            return
        await self.decision_logger.log_decision(
            plan_id=plan_id,
            idea_id=idea_id,
            path=path.value,
            bucket_id=result.bucket_id,
            confidence=result.confidence,
            is_new_bucket=result.is_new_bucket,
            best_similarity=best_similarity
        )
