from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def to_camel(string: str) -> str:
    """Convert snake_case to camelCase."""
    components = string.split('_')
    return components[0] + ''.join(x.title() for x in components[1:])


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model with camelCase serialization for the board frontend."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class BucketColor(str, Enum):
    BLUE = "blue"
    GREEN = "green"
    ORANGE = "orange"
    PURPLE = "purple"
    PINK = "pink"
    TEAL = "teal"
    AMBER = "amber"
    ROSE = "rose"
    INDIGO = "indigo"
    EMERALD = "emerald"
    CYAN = "cyan"
    RED = "red"
    GRAY = "gray"


def coerce_color(value: Optional[str]) -> BucketColor:
    """Map free-form color names (usually from the LLM) onto the palette."""
    if not value:
        return BucketColor.GRAY
    try:
        return BucketColor(str(value).strip().lower())
    except ValueError:
        return BucketColor.GRAY


# =========================================================================
# Board records
# =========================================================================

class Bucket(CamelModel):
    """A named semantic category grouping related ideas on a plan."""
    id: str
    plan_id: str
    title: str
    description: Optional[str] = None
    accent_color: BucketColor = BucketColor.GRAY
    display_order: int = 0
    # Unit-length vector derived from title + description; never serialized
    embedding: Optional[list[float]] = Field(default=None, exclude=True)
    created_at: datetime = Field(default_factory=utcnow)


class Idea(CamelModel):
    """A single free-text submission to be categorized."""
    id: str
    plan_id: str
    bucket_id: Optional[str] = None
    title: str
    description: str = ""
    confidence: int = Field(default=0, ge=0, le=100)
    embedding: Optional[list[float]] = Field(default=None, exclude=True)
    created_at: datetime = Field(default_factory=utcnow)


class BucketCreate(CamelModel):
    """Storage input for a new bucket."""
    plan_id: str
    title: str
    description: Optional[str] = None
    accent_color: BucketColor = BucketColor.GRAY
    display_order: int = 0
    embedding: Optional[list[float]] = None


class BucketPatch(CamelModel):
    """Partial bucket update. Only explicitly set fields are written."""
    title: Optional[str] = None
    description: Optional[str] = None
    accent_color: Optional[BucketColor] = None
    display_order: Optional[int] = None
    embedding: Optional[list[float]] = None


class IdeaCreate(CamelModel):
    """Storage input for a new idea."""
    plan_id: str
    title: str
    description: str = ""
    bucket_id: Optional[str] = None
    confidence: int = Field(default=0, ge=0, le=100)


class IdeaPatch(CamelModel):
    """Partial idea update. Only explicitly set fields are written."""
    bucket_id: Optional[str] = None
    confidence: Optional[int] = Field(default=None, ge=0, le=100)
    title: Optional[str] = None
    description: Optional[str] = None
    embedding: Optional[list[float]] = None


class ClassificationResult(CamelModel):
    """The only classification contract returned to callers."""
    bucket_id: str
    confidence: int = Field(ge=0, le=100)
    is_new_bucket: bool = False


# =========================================================================
# LLM response shapes
# =========================================================================

class BucketProposal(BaseModel):
    """A category proposed by the LLM."""
    title: str = ""
    description: Optional[str] = None
    accent_color: Optional[str] = "gray"


class EmergentBucketProposal(BucketProposal):
    """A category from emergent batch creation with 1-based idea indices."""
    idea_assignments: list[int] = Field(default_factory=list)


class TieBreakDecision(BaseModel):
    chosen_bucket_number: Optional[int] = None
    reasoning: str = ""


class ClassificationDecision(BaseModel):
    """Single-shot "assign existing or create new" decision."""
    action: str
    reasoning: str = ""
    confidence: Optional[float] = None
    existing_bucket_number: Optional[int] = None
    new_bucket: Optional[BucketProposal] = None


# =========================================================================
# Diagnostics
# =========================================================================

class UsageSnapshot(BaseModel):
    """Point-in-time copy of a provider's usage counters."""
    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0


class ClassificationStats(BaseModel):
    """Counters for each terminal classification path."""
    total: int = 0
    embedding_only: int = 0
    tie_break: int = 0
    new_bucket: int = 0
    llm_fallback: int = 0
    llm_only: int = 0
    pattern_fallback: int = 0
    default_bucket: int = 0
    emergent_batches: int = 0


class StatsResponse(CamelModel):
    embeddings: UsageSnapshot
    llm: UsageSnapshot
    classification: ClassificationStats


# =========================================================================
# API requests
# =========================================================================

class SubmitIdeaRequest(CamelModel):
    """Request to add an idea to a plan (auto-classified unless bucket_id is set)."""
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    bucket_id: Optional[str] = None
    # Plan name / goal handed to the LLM prompts
    plan_context: Optional[str] = None


class UpdateIdeaRequest(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, min_length=1)


class MoveIdeaRequest(CamelModel):
    bucket_id: str


class CreateBucketRequest(CamelModel):
    title: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    accent_color: BucketColor = BucketColor.GRAY


class UpdateBucketRequest(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    accent_color: Optional[BucketColor] = None
