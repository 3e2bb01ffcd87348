"""Pydantic models for the vision scorer's structured response.

These are the raw, untrusted shapes returned by the scoring model. Field
types are deliberately loose: the scoring rubric clamps scores and
normalises categories before anything downstream sees them.
"""

from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, Field


def _coerce_to_str(v: Any) -> str:
    """Coerce list values to a single string (some models return arrays)."""
    if v is None:
        return ""
    if isinstance(v, list):
        return ", ".join(str(item) for item in v)
    return str(v)


class ScorerIssue(BaseModel):
    category: Annotated[str, BeforeValidator(_coerce_to_str)] = Field(
        default="other",
        description=(
            "Issue category: content_mismatch, framing, technical, composition, "
            "text_overlap, face_blocked, poor_visibility, ai_text_detected, "
            "ai_ui_detected, off_brand, coherence"
        ),
    )
    severity: Annotated[str, BeforeValidator(_coerce_to_str)] = Field(
        default="minor", description="critical, major or minor"
    )
    description: Annotated[str, BeforeValidator(_coerce_to_str)] = Field(
        default="", description="Specific description of the problem"
    )


class ScorerResponse(BaseModel):
    """Structured output for scoring one artifact against its scene description."""

    dimension_scores: dict[str, float] = Field(
        default_factory=dict,
        description=(
            "Scores 0-100 keyed by content_match, framing, technical_quality, "
            "brand_compliance, coherence"
        ),
    )
    issues: list[ScorerIssue] = Field(
        default_factory=list, description="Problems found in the artifact (empty if none)"
    )
    matched_elements: list[str] = Field(
        default_factory=list,
        description=(
            "Required elements actually visible. Prefix on-screen text with 'text:' "
            "and overlays with 'overlay:'"
        ),
    )
    detected_framing: Optional[str] = Field(
        default=None, description="Observed framing: wide, medium, close_up or full_body"
    )
    improved_prompt_suggestion: Optional[str] = Field(
        default=None, description="A revised generation prompt that would fix the issues"
    )
