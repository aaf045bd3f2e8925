from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from models import (
    Bucket,
    CreateBucketRequest,
    Idea,
    MoveIdeaRequest,
    StatsResponse,
    SubmitIdeaRequest,
    UpdateBucketRequest,
    UpdateIdeaRequest,
)
from board_service import BoardService
from classification.cache import BucketEmbeddingCache
from classification.decision_logger import DecisionLogger
from classification.embeddings import EmbeddingService
from classification.orchestrator import ClassificationOrchestrator
from classification.router import SimilarityRouter
from errors import NotFound, PersistenceError
from storage import InMemoryBoardStore
from synthesis.openai_client import OpenAICompletionClient, OpenAIEmbeddingClient
from synthesis.reasoner import BucketReasoner
from config import get_settings


# Global instances
embedding_client: OpenAIEmbeddingClient = None
completion_client: OpenAICompletionClient = None
embeddings: EmbeddingService = None
reasoner: BucketReasoner = None
orchestrator: ClassificationOrchestrator = None
board_service: BoardService = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize and cleanup resources."""
    global embedding_client, completion_client, embeddings, reasoner, orchestrator, board_service

    settings = get_settings()
    store = InMemoryBoardStore()
    embedding_client = OpenAIEmbeddingClient()
    completion_client = OpenAICompletionClient()
    embeddings = EmbeddingService(embedding_client)
    cache = BucketEmbeddingCache(store, embeddings)
    reasoner = BucketReasoner(completion_client, store, embeddings, cache)
    orchestrator = ClassificationOrchestrator(
        store,
        embeddings,
        cache,
        reasoner,
        router=SimilarityRouter(),
        decision_logger=DecisionLogger()
    )
    board_service = BoardService(store, embeddings, cache, orchestrator)

    print("🗂️  Bucketboard backend started")
    print("   Classification: embeddings → tie-break / new bucket → LLM → patterns → default")
    print(f"   Embeddings: {settings.openai_embedding_model} ({settings.embedding_dimension} dims)"
          f"{'' if settings.use_embeddings_classification else ' [disabled]'}")
    print(f"   LLM: {settings.openai_model}")
    print(f"   Thresholds: min similarity {settings.min_similarity}, tie {settings.tie_threshold}")
    if not settings.openai_api_key:
        print("   ⚠️ OPENAI_API_KEY not set: classification will use pattern/default fallbacks")
    yield

    await embedding_client.close()
    await completion_client.close()
    print("Bucketboard backend stopped")


app = FastAPI(
    title="Bucketboard Backend",
    description="Collaborative planning board - automatic idea classification API",
    version="1.0.0",
    lifespan=lifespan
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    return JSONResponse(status_code=500, content={"detail": f"Storage error: {exc}"})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "bucketboard-backend"}


# =========================================================================
# Ideas
# =========================================================================

@app.get("/plans/{plan_id}/ideas", response_model=list[Idea], response_model_by_alias=True)
async def list_ideas(plan_id: str) -> list[Idea]:
    return await board_service.list_ideas(plan_id)


@app.post(
    "/plans/{plan_id}/ideas",
    status_code=201,
    response_model=Idea,
    response_model_by_alias=True
)
async def submit_idea(plan_id: str, request: SubmitIdeaRequest) -> Idea:
    """
    Add an idea to a plan.

    Without a bucketId the idea is auto-classified before the response is
    returned. The first ideas of a plan with no buckets wait out the emergent
    debounce window and come back with whatever bucket the batch gave them.
    """
    print(f"\n📥 New idea for plan {plan_id}: {request.title!r}")
    idea = await board_service.submit_idea(plan_id, request)
    if idea.bucket_id:
        print(f"   ✓ Filed in bucket {idea.bucket_id} ({idea.confidence})")
    else:
        print("   Left unbucketed")
    return idea


@app.patch("/ideas/{idea_id}", response_model=Idea, response_model_by_alias=True)
async def update_idea(idea_id: str, request: UpdateIdeaRequest) -> Idea:
    return await board_service.edit_idea(idea_id, request)


@app.patch("/ideas/{idea_id}/move", response_model=Idea, response_model_by_alias=True)
async def move_idea(idea_id: str, request: MoveIdeaRequest) -> Idea:
    """Manual move; never consults the classifier."""
    return await board_service.move_idea(idea_id, request.bucket_id)


# =========================================================================
# Buckets
# =========================================================================

@app.get("/plans/{plan_id}/buckets", response_model=list[Bucket], response_model_by_alias=True)
async def list_buckets(plan_id: str) -> list[Bucket]:
    return await board_service.list_buckets(plan_id)


@app.post(
    "/plans/{plan_id}/buckets",
    status_code=201,
    response_model=Bucket,
    response_model_by_alias=True
)
async def create_bucket(plan_id: str, request: CreateBucketRequest) -> Bucket:
    return await board_service.create_bucket(plan_id, request)


@app.patch("/buckets/{bucket_id}", response_model=Bucket, response_model_by_alias=True)
async def update_bucket(bucket_id: str, request: UpdateBucketRequest) -> Bucket:
    return await board_service.update_bucket(bucket_id, request)


# =========================================================================
# Diagnostics
# =========================================================================

@app.get("/stats", response_model=StatsResponse, response_model_by_alias=True)
async def stats() -> StatsResponse:
    """Provider usage/cost and classification path counters."""
    return StatsResponse(
        embeddings=embeddings.usage.snapshot(),
        llm=reasoner.usage.snapshot(),
        classification=orchestrator.stats()
    )


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=True
    )
