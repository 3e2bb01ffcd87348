"""Pydantic models for assessments, verdicts and the project quality report.

Assessment and SceneVerdict are frozen: once produced they are only ever
superseded by a newer evaluation, never edited in place.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Dimension(str, Enum):
    CONTENT_MATCH = "content_match"
    FRAMING = "framing"
    TECHNICAL_QUALITY = "technical_quality"
    BRAND_COMPLIANCE = "brand_compliance"
    COHERENCE = "coherence"


class IssueSeverity(str, Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


class IssueCategory(str, Enum):
    CONTENT_MISMATCH = "content_mismatch"
    FRAMING = "framing"
    TECHNICAL = "technical"
    COMPOSITION = "composition"
    TEXT_OVERLAP = "text_overlap"
    FACE_BLOCKED = "face_blocked"
    POOR_VISIBILITY = "poor_visibility"
    AI_TEXT_DETECTED = "ai_text_detected"
    AI_UI_DETECTED = "ai_ui_detected"
    OFF_BRAND = "off_brand"
    COHERENCE = "coherence"
    USER_REJECTED = "user_rejected"
    OTHER = "other"


class Issue(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: IssueCategory
    severity: IssueSeverity
    description: str = ""


class Assessment(BaseModel):
    """Result of scoring one artifact against one scene."""

    model_config = ConfigDict(frozen=True)

    dimension_scores: dict[Dimension, float]
    issues: tuple[Issue, ...] = ()
    overall_score: int = Field(ge=0, le=100)
    raw_score: int = Field(
        ge=0, le=100, description="Weighted score before hard-fail caps were applied"
    )
    hard_fail_reasons: tuple[str, ...] = ()
    matched_elements: tuple[str, ...] = ()
    detected_framing: Optional[str] = None
    improved_prompt_suggestion: Optional[str] = None
    degraded: bool = Field(
        default=False,
        description="True when the scorer was unavailable and a placeholder score was used",
    )

    @property
    def has_critical(self) -> bool:
        return any(i.severity == IssueSeverity.CRITICAL for i in self.issues)

    def count(self, severity: IssueSeverity) -> int:
        return sum(1 for i in self.issues if i.severity == severity)

    def categories(self) -> set[IssueCategory]:
        return {i.category for i in self.issues}


class VerdictStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    NEEDS_REVIEW = "needs_review"
    REJECTED = "rejected"


class SceneVerdict(BaseModel):
    """Classification of a scene's current artifact."""

    model_config = ConfigDict(frozen=True)

    scene_id: str
    status: VerdictStatus
    overall_score: int = 0
    user_approved: bool = False
    user_rejected: bool = False
    auto_approved: bool = False
    assessment: Optional[Assessment] = None
    artifact_ref: Optional[str] = None
    evaluated_at: Optional[datetime] = None

    @classmethod
    def pending(cls, scene_id: str) -> "SceneVerdict":
        """Verdict placeholder for a scene that has never been evaluated."""
        return cls(scene_id=scene_id, status=VerdictStatus.PENDING)

    @property
    def issues(self) -> tuple[Issue, ...]:
        return self.assessment.issues if self.assessment else ()


class QualityPolicy(BaseModel):
    """Thresholds applied by the scene evaluator and the quality gate."""

    auto_approve_threshold: int = 85
    hard_fail_floor: int = 50
    minimum_project_score: int = 70
    minimum_scene_score: int = 70
    maximum_major_issues: int = 3
    require_user_approval: bool = True
    allow_force_render: bool = True
    degraded_score: int = 70
    missing_text_cap: int = 45
    framing_conflict_cap: int = 55
    ai_text_cap: int = 60


class SceneStatusSummary(BaseModel):
    scene_id: str
    status: VerdictStatus
    overall_score: int
    user_approved: bool
    critical_issues: int
    major_issues: int


class ProjectQualityReport(BaseModel):
    """Project-wide projection over the current scene verdicts."""

    project_id: str
    overall_score: int
    scene_count: int
    approved_count: int
    needs_review_count: int
    rejected_count: int
    pending_count: int
    critical_issue_count: int
    major_issue_count: int
    minor_issue_count: int
    blocking_reasons: list[str]
    can_render: bool
    scenes: list[SceneStatusSummary] = Field(default_factory=list)

    @property
    def has_unevaluated(self) -> bool:
        return self.pending_count > 0
