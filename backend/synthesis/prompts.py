"""
Prompt builders for the bucket reasoner.

Every prompt demands bare JSON (no prose, no code fences) so responses can go
straight through synthesis.json_decoder.
"""

from typing import Optional

from models import Bucket, BucketColor, Idea

COLOR_CHOICES = ", ".join(c.value for c in BucketColor)

JSON_ONLY = (
    "Return ONLY the JSON described below. No markdown, no code fences, "
    "no comments, no text before or after the JSON."
)


def _context_block(plan_context: Optional[str]) -> str:
    return f"PLAN CONTEXT: {plan_context}\n\n" if plan_context else ""


def _idea_block(idea: Idea) -> str:
    return (
        f"NEW IDEA:\n"
        f"Title: {idea.title}\n"
        f"Description: {idea.description or '(no description)'}"
    )


def _bucket_line(index: int, bucket: Bucket) -> str:
    line = f"{index}. {bucket.title}"
    if bucket.description:
        line += f" - {bucket.description}"
    return line


def emergent_buckets_prompt(ideas: list[Idea], plan_context: Optional[str] = None) -> str:
    idea_lines = "\n\n".join(
        f"{i}. {idea.title}\n   {idea.description or ''}"
        for i, idea in enumerate(ideas, start=1)
    )
    return f"""You are organizing the first ideas posted to a collaborative planning board.

{_context_block(plan_context)}IDEAS:
{idea_lines}

Create between 1 and 3 categories (buckets) that organize these ideas.

{JSON_ONLY}

[
  {{
    "title": "Bucket Name",
    "description": "Brief description",
    "accent_color": "blue",
    "idea_assignments": [1, 2]
  }}
]

Guidelines:
- Keep it simple; do not over-organize
- Every idea number must appear in exactly one bucket's idea_assignments
- Every bucket must have at least one idea
- Use specific names drawn from the content ("Venue Options", not "Ideas")
- accent_color must be one of: {COLOR_CHOICES}"""


def classify_prompt(
    idea: Idea,
    existing_buckets: list[Bucket],
    plan_context: Optional[str] = None
) -> str:
    bucket_lines = "\n".join(
        _bucket_line(i, b) for i, b in enumerate(existing_buckets, start=1)
    ) or "(none yet)"
    return f"""You are filing a new idea on a collaborative planning board.

{_context_block(plan_context)}{_idea_block(idea)}

EXISTING CATEGORIES:
{bucket_lines}

Decide whether the idea belongs in an existing category or needs a new one.

Assign to an existing category only if it clearly fits that category's purpose
and would not dilute it (roughly 70% confidence or more). Otherwise create a
new category.

{JSON_ONLY}

{{
  "action": "assign_existing" or "create_new",
  "reasoning": "1-2 sentence explanation",
  "confidence": 0-100,
  "existing_bucket_number": <number> or null,
  "new_bucket": {{"title": "Category Name", "description": "Brief description", "accent_color": "blue"}} or null
}}

Confidence should reflect the actual semantic fit (typically 40-95).
accent_color must be one of: {COLOR_CHOICES}"""


def tie_break_prompt(
    idea: Idea,
    tied: list,
    plan_context: Optional[str] = None
) -> str:
    """`tied` is a list of ScoredBucket, best first."""
    bucket_lines = "\n".join(
        f"{_bucket_line(i, entry.bucket)} (similarity: {entry.similarity:.3f})"
        for i, entry in enumerate(tied, start=1)
    )
    return f"""Several existing categories on a planning board fit a new idea almost equally well.

{_context_block(plan_context)}{_idea_block(idea)}

TIED CATEGORIES:
{bucket_lines}

Choose the single best category for this idea. Do NOT invent a new category.

{JSON_ONLY}

{{
  "chosen_bucket_number": 1,
  "reasoning": "1-2 sentence explanation"
}}"""


def new_bucket_prompt(
    idea: Idea,
    existing_buckets: list[Bucket],
    plan_context: Optional[str] = None
) -> str:
    bucket_lines = "\n".join(
        _bucket_line(i, b) for i, b in enumerate(existing_buckets, start=1)
    ) or "(none yet)"
    return f"""A new idea on a planning board does not fit any existing category.

{_context_block(plan_context)}{_idea_block(idea)}

EXISTING CATEGORIES (none is a good match):
{bucket_lines}

Propose ONE new category for this idea that is clearly distinct from the
existing ones.

{JSON_ONLY}

{{
  "title": "Category Name",
  "description": "Brief description",
  "accent_color": "blue"
}}

accent_color must be one of: {COLOR_CHOICES}"""
