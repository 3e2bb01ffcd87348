"""Pydantic models for regeneration strategies, attempts and escalations.

RegenerationStrategy.params is a tagged union keyed on ``kind`` so the
orchestrator can match each approach exhaustively.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from vidgate.schemas.quality import Assessment, IssueCategory, SceneVerdict
from vidgate.schemas.scene import MediaType


class RegenerationApproach(str, Enum):
    RETRY = "retry"
    ALTERNATE_PROVIDER = "alternate-provider"
    REFERENCE_BASED = "reference-based"
    SIMPLIFY_PROMPT = "simplify-prompt"
    STOCK_FOOTAGE = "stock-footage"
    ESCALATE = "escalate"


class RegenerationMode(str, Enum):
    """Caller-requested regeneration mode. AUTO follows the attempt ladder."""

    AUTO = "auto"
    STANDARD = "standard"
    WITH_REFERENCE = "with-reference"
    SIMPLIFIED_PROMPT = "simplified-prompt"
    DIFFERENT_PROVIDER = "different-provider"
    STOCK_SEARCH = "stock-search"


MODE_APPROACHES: dict[RegenerationMode, RegenerationApproach] = {
    RegenerationMode.STANDARD: RegenerationApproach.RETRY,
    RegenerationMode.WITH_REFERENCE: RegenerationApproach.REFERENCE_BASED,
    RegenerationMode.SIMPLIFIED_PROMPT: RegenerationApproach.SIMPLIFY_PROMPT,
    RegenerationMode.DIFFERENT_PROVIDER: RegenerationApproach.ALTERNATE_PROVIDER,
    RegenerationMode.STOCK_SEARCH: RegenerationApproach.STOCK_FOOTAGE,
}


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    IMPROVED = "improved"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Per-approach parameters
# ---------------------------------------------------------------------------

class RetryParams(BaseModel):
    kind: Literal["retry"] = "retry"
    prompt: str
    negative_prompt: str = ""


class AlternateProviderParams(BaseModel):
    kind: Literal["alternate-provider"] = "alternate-provider"
    prompt: str
    negative_prompt: str = ""
    excluded_providers: list[str] = Field(default_factory=list)


class ReferenceBasedParams(BaseModel):
    kind: Literal["reference-based"] = "reference-based"
    prompt: str
    reference_artifact_ref: str
    motion_intensity: Literal["minimal", "low", "medium"] = "medium"
    motion_style: str = "natural"


class SimplifyPromptParams(BaseModel):
    kind: Literal["simplify-prompt"] = "simplify-prompt"
    prompt: str
    original_prompt: str
    aggressive: bool = False


class StockFootageParams(BaseModel):
    kind: Literal["stock-footage"] = "stock-footage"
    search_query: str


class EscalateParams(BaseModel):
    kind: Literal["escalate"] = "escalate"
    reason: str
    suggest_stock_footage: bool = True
    stock_search_query: str = ""


StrategyParams = Annotated[
    Union[
        RetryParams,
        AlternateProviderParams,
        ReferenceBasedParams,
        SimplifyPromptParams,
        StockFootageParams,
        EscalateParams,
    ],
    Field(discriminator="kind"),
]


class FailurePattern(BaseModel):
    """Issue categories and providers that keep failing for one scene."""

    recurring_categories: list[IssueCategory] = Field(default_factory=list)
    failed_providers: list[str] = Field(default_factory=list)
    providers_to_avoid: list[str] = Field(default_factory=list)

    @property
    def detected(self) -> bool:
        return bool(self.recurring_categories)


class RegenerationStrategy(BaseModel):
    """A single decision authorizing the next attempt (or escalation)."""

    model_config = ConfigDict(frozen=True)

    approach: RegenerationApproach
    target_provider: Optional[str] = None
    confidence_score: float = Field(ge=0.0, le=1.0)
    warning: Optional[str] = None
    reasoning: str = ""
    params: StrategyParams
    failure_pattern: FailurePattern = Field(default_factory=FailurePattern)
    attempts_so_far: int = 0


class RegenerationAttempt(BaseModel):
    """One row of a scene's append-only attempt history."""

    model_config = ConfigDict(frozen=True)

    scene_id: str
    attempt_number: int = Field(ge=1)
    timestamp: datetime
    approach: RegenerationApproach
    provider_used: Optional[str] = None
    prompt_or_input_used: str = ""
    result_assessment: Optional[Assessment] = None
    artifact_ref: Optional[str] = None
    outcome: AttemptOutcome
    error: Optional[str] = None

    @property
    def score(self) -> Optional[int]:
        return self.result_assessment.overall_score if self.result_assessment else None


class GenerationRequest(BaseModel):
    """Provider-agnostic input handed to a MediaGenerator."""

    scene_id: str
    provider: str
    media_type: MediaType
    approach: RegenerationApproach
    prompt: str
    negative_prompt: str = ""
    reference_artifact_ref: Optional[str] = None
    motion_intensity: Optional[str] = None
    duration_seconds: float = 5.0
    aspect_ratio: str = "16:9"


class GenerationOutput(BaseModel):
    artifact_ref: str
    provider: str


class RegenerationStatus(str, Enum):
    SUCCESS = "success"
    ESCALATED = "escalated"
    CANCELLED = "cancelled"
    INCOMPLETE = "incomplete"
    SKIPPED = "skipped"


class RegenerationResult(BaseModel):
    """Outcome of one regenerate(scene_id) call."""

    scene_id: str
    status: RegenerationStatus
    attempts: list[RegenerationAttempt] = Field(
        default_factory=list, description="Attempts recorded during this call"
    )
    final_verdict: Optional[SceneVerdict] = None
    final_strategy: Optional[RegenerationStrategy] = None
    review_entry_id: Optional[str] = None
    budget_exhausted: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == RegenerationStatus.SUCCESS


class ReviewQueueEntry(BaseModel):
    """A scene handed to a human after automatic regeneration gave up."""

    id: str
    project_id: str
    scene_id: str
    reason: str = "auto_regeneration_failed"
    final_assessment: Optional[Assessment] = None
    attempt_history: list[RegenerationAttempt] = Field(default_factory=list)
    best_score: int = 0
    best_artifact_ref: Optional[str] = None
    suggested_stock_query: str = ""
    resolved: bool = False
    resolution_note: Optional[str] = None
    created_at: datetime
