"""Regeneration strategy engine.

Chooses how to regenerate a failing scene. The decision is a pure function
of the scene's attempt history (plus the scene's prompt and media type):
there is no internal counter, so asking twice with the same history gives
the same answer.

Attempt ladder (``n`` = attempts already recorded):

    n == 0  retry with the capability-routed provider
            (simplify-prompt, confidence 0.4, if the prompt is "impossible")
    n == 1  reference-based from the last artifact if it improved
            otherwise alternate-provider (next in fallback order)
    n == 2  reference-based with minimal motion if any artifact exists
            otherwise simplify-prompt with a drastically reduced prompt
    n >= 3  escalate (stock footage suggestion + human review)

Recurring issue categories never change the tier; they only steer
parameters inside it, such as which providers to avoid.
"""

import logging
import re
from collections import Counter
from typing import Optional

from pydantic import BaseModel, Field

from vidgate.schemas.quality import Assessment, IssueCategory
from vidgate.schemas.regeneration import (
    MODE_APPROACHES,
    AlternateProviderParams,
    AttemptOutcome,
    EscalateParams,
    FailurePattern,
    ReferenceBasedParams,
    RegenerationApproach,
    RegenerationAttempt,
    RegenerationMode,
    RegenerationStrategy,
    RetryParams,
    SimplifyPromptParams,
    StockFootageParams,
)
from vidgate.schemas.scene import Framing, MediaType
from vidgate.services.prompt_complexity import (
    ComplexityCategory,
    analyze_prompt,
    drastically_simplify,
    simplify_prompt,
)
from vidgate.services.provider_router import ProviderRouter

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3

# ---------------------------------------------------------------------------
# Confidence per ladder position
# ---------------------------------------------------------------------------
CONFIDENCE = {
    "retry": 0.8,
    "retry_complex": 0.6,
    "impossible": 0.4,
    "reference_partial": 0.7,
    "alternate": 0.6,
    "reference_minimal": 0.5,
    "simplify_aggressive": 0.4,
    "escalate": 0.8,
    "manual": 0.6,
}

# ---------------------------------------------------------------------------
# Prompt fixes keyed by issue category
# ---------------------------------------------------------------------------
ISSUE_PROMPT_FIXES: dict[IssueCategory, str] = {
    IssueCategory.AI_TEXT_DETECTED: "photorealistic, no text overlays, no UI elements, clean image",
    IssueCategory.AI_UI_DETECTED: "photorealistic, no text overlays, no UI elements, clean image",
    IssueCategory.CONTENT_MISMATCH: "focus on the main subject clearly visible",
    IssueCategory.TECHNICAL: "high resolution, sharp focus, professional quality",
    IssueCategory.POOR_VISIBILITY: "high resolution, sharp focus, professional quality",
    IssueCategory.COMPOSITION: "balanced composition, clear subject, uncluttered background",
    IssueCategory.TEXT_OVERLAP: "balanced composition, clear subject, uncluttered background",
    IssueCategory.FACE_BLOCKED: "face clearly visible, unobstructed view",
}
LATE_ATTEMPT_SUFFIX = "simple composition, single clear subject"
NEGATIVE_PROMPT = "garbled text, fake UI, distorted features, extra limbs, watermark"

SIMPLIFY_WARNING = (
    "Prompt drastically simplified to subject and lighting; specific details "
    "from the original description may be lost."
)

_STOP_WORDS = {
    "the", "and", "with", "from", "into", "onto", "that", "this", "their", "while",
    "then", "shot", "scene", "view", "very", "some", "over", "under",
}


class StrategyContext(BaseModel):
    """Everything the engine may look at when choosing the next strategy."""

    scene_id: str
    media_type: MediaType = MediaType.VIDEO
    prompt: str = ""
    content_tags: list[str] = Field(default_factory=list)
    framing: Optional[Framing] = None
    history: list[RegenerationAttempt] = Field(default_factory=list)
    latest_assessment: Optional[Assessment] = None
    current_provider: Optional[str] = None
    current_artifact_ref: Optional[str] = None
    budget_exhausted: bool = False
    mode: RegenerationMode = RegenerationMode.AUTO


# ---------------------------------------------------------------------------
# History helpers (pure)
# ---------------------------------------------------------------------------

def detect_failure_pattern(history: list[RegenerationAttempt]) -> FailurePattern:
    """Find issue categories that recur across at least two attempts."""
    counts: Counter = Counter()
    for attempt in history:
        if attempt.result_assessment is not None:
            counts.update(attempt.result_assessment.categories())
    recurring = [c for c in IssueCategory if counts[c] >= 2]

    failed: list[str] = []
    avoid: list[str] = []
    provider_failures: Counter = Counter()
    for attempt in history:
        provider = attempt.provider_used
        if not provider:
            continue
        if attempt.outcome == AttemptOutcome.FAILED:
            provider_failures[provider] += 1
            if provider not in failed:
                failed.append(provider)
        assessment = attempt.result_assessment
        if assessment is not None and assessment.categories() & set(recurring):
            if provider not in avoid:
                avoid.append(provider)
    for provider in failed:
        if provider_failures[provider] >= 2 and provider not in avoid:
            avoid.append(provider)

    return FailurePattern(
        recurring_categories=recurring,
        failed_providers=failed,
        providers_to_avoid=avoid,
    )


def best_artifact_attempt(history: list[RegenerationAttempt]) -> Optional[RegenerationAttempt]:
    """Highest-scoring attempt that produced an artifact; latest wins ties."""
    best: Optional[RegenerationAttempt] = None
    for attempt in history:
        if not attempt.artifact_ref:
            continue
        score = attempt.score if attempt.score is not None else -1
        best_score = best.score if best is not None and best.score is not None else -1
        if best is None or score >= best_score:
            best = attempt
    return best


def has_usable_artifact(history: list[RegenerationAttempt]) -> bool:
    """Whether the ladder can use a reference artifact at this history length."""
    if len(history) == 1:
        last = history[0]
        return last.outcome == AttemptOutcome.IMPROVED and bool(last.artifact_ref)
    return best_artifact_attempt(history) is not None


def improve_prompt(
    prompt: str,
    assessment: Optional[Assessment],
    attempt_number: int,
    *,
    framing: Optional[Framing] = None,
    emphasize: Optional[list[IssueCategory]] = None,
) -> str:
    """Append fixes for the issues the last assessment found.

    The scorer's own suggested prompt replaces the base prompt when present.
    From the third attempt on a "simple composition" suffix is added.
    """
    base = prompt
    categories: list[IssueCategory] = list(emphasize or [])
    if assessment is not None:
        if assessment.improved_prompt_suggestion:
            base = assessment.improved_prompt_suggestion
        for issue in assessment.issues:
            if issue.category not in categories:
                categories.append(issue.category)

    fixes: list[str] = []
    for category in categories:
        if category == IssueCategory.FRAMING and framing is not None:
            fix = f"{framing.value.replace('_', ' ')} shot"
        else:
            fix = ISSUE_PROMPT_FIXES.get(category)
        if fix and fix not in fixes:
            fixes.append(fix)
    if attempt_number >= 3:
        fixes.append(LATE_ATTEMPT_SUFFIX)

    parts = [base.strip().rstrip(",")] + fixes
    return ", ".join(p for p in parts if p)


def stock_search_query(prompt: str, tags: list[str]) -> str:
    """Short keyword query for a stock footage search."""
    words: list[str] = []
    for word in re.findall(r"[a-zA-Z]+", simplify_prompt(prompt).lower()):
        if len(word) > 3 and word not in _STOP_WORDS and word not in words:
            words.append(word)
    keywords = [t.lower() for t in tags if t] + words
    unique: list[str] = []
    for k in keywords:
        if k not in unique:
            unique.append(k)
    return " ".join(unique[:6])


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class StrategyEngine:
    """Stateless strategy selector over a scene's attempt history."""

    def __init__(
        self,
        router: ProviderRouter,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        stock_provider: str = "stock-library",
    ) -> None:
        self.router = router
        self.max_attempts = max_attempts
        self.stock_provider = stock_provider

    def select(self, ctx: StrategyContext) -> RegenerationStrategy:
        """Choose the next regeneration strategy for a scene.

        Args:
            ctx: Scene facts and the full, ordered attempt history.

        Returns:
            The strategy authorizing the next attempt, or an escalation.
        """
        n = len(ctx.history)
        pattern = detect_failure_pattern(ctx.history)

        if ctx.budget_exhausted:
            return self._escalate(ctx, pattern, "Project regeneration budget exhausted")
        if n >= self.max_attempts:
            return self._escalate(
                ctx, pattern, f"Automatic regeneration failed after {n} attempts"
            )

        if ctx.mode != RegenerationMode.AUTO:
            manual = self._manual(ctx, pattern)
            if manual is not None:
                return manual

        if n == 0:
            return self._first_attempt(ctx, pattern)
        if n == 1:
            return self._second_attempt(ctx, pattern)
        return self._third_attempt(ctx, pattern)

    # -- ladder tiers -------------------------------------------------------

    def _first_attempt(self, ctx: StrategyContext, pattern: FailurePattern) -> RegenerationStrategy:
        analysis = analyze_prompt(ctx.prompt, ctx.content_tags)

        if analysis.category == ComplexityCategory.IMPOSSIBLE:
            simplified = simplify_prompt(ctx.prompt) or ctx.prompt
            routed = self.router.route(
                simplified, ctx.content_tags, ctx.media_type, avoid=pattern.providers_to_avoid
            )
            return self._strategy(
                ctx,
                pattern,
                RegenerationApproach.SIMPLIFY_PROMPT,
                routed.provider,
                CONFIDENCE["impossible"],
                SimplifyPromptParams(prompt=simplified, original_prompt=ctx.prompt),
                reasoning=f"Prompt complexity {analysis.score} ({', '.join(analysis.factors)})",
                warning=analysis.warning,
            )

        routed = self.router.route(
            ctx.prompt,
            ctx.content_tags,
            ctx.media_type,
            avoid=pattern.providers_to_avoid,
            suggested=analysis.suggested_providers,
        )
        confidence = CONFIDENCE["retry_complex"] if analysis.is_complex else CONFIDENCE["retry"]
        return self._strategy(
            ctx,
            pattern,
            RegenerationApproach.RETRY,
            routed.provider,
            confidence,
            RetryParams(
                prompt=improve_prompt(ctx.prompt, ctx.latest_assessment, 1, framing=ctx.framing),
                negative_prompt=NEGATIVE_PROMPT,
            ),
            reasoning=(
                f"Best-fit provider {routed.provider} "
                f"(routing score {routed.score}, complexity {analysis.category.value})"
            ),
            warning=analysis.warning,
        )

    def _second_attempt(self, ctx: StrategyContext, pattern: FailurePattern) -> RegenerationStrategy:
        last = ctx.history[-1]
        prompt = improve_prompt(
            ctx.prompt,
            last.result_assessment or ctx.latest_assessment,
            2,
            framing=ctx.framing,
            emphasize=pattern.recurring_categories,
        )

        if has_usable_artifact(ctx.history):
            exclude = [p for p in [last.provider_used] if p] + pattern.providers_to_avoid
            provider = self.router.image_to_video_provider(ctx.media_type, exclude=exclude)
            return self._strategy(
                ctx,
                pattern,
                RegenerationApproach.REFERENCE_BASED,
                provider,
                CONFIDENCE["reference_partial"],
                ReferenceBasedParams(
                    prompt=prompt,
                    reference_artifact_ref=last.artifact_ref,
                    motion_intensity="low",
                ),
                reasoning=f"Attempt 1 improved to {last.score}; seeding {provider} with its artifact",
            )

        exclude = [p for p in [last.provider_used] if p] + pattern.providers_to_avoid
        provider = self.router.next_in_fallback(ctx.media_type, exclude, after=last.provider_used)
        return self._strategy(
            ctx,
            pattern,
            RegenerationApproach.ALTERNATE_PROVIDER,
            provider,
            CONFIDENCE["alternate"],
            AlternateProviderParams(
                prompt=prompt, negative_prompt=NEGATIVE_PROMPT, excluded_providers=exclude
            ),
            reasoning=f"{last.provider_used or 'previous provider'} failed; trying {provider}",
        )

    def _third_attempt(self, ctx: StrategyContext, pattern: FailurePattern) -> RegenerationStrategy:
        if has_usable_artifact(ctx.history):
            seed = best_artifact_attempt(ctx.history)
            provider = self.router.image_to_video_provider(
                ctx.media_type, exclude=pattern.providers_to_avoid
            )
            prompt = improve_prompt(
                ctx.prompt,
                seed.result_assessment or ctx.latest_assessment,
                3,
                framing=ctx.framing,
                emphasize=pattern.recurring_categories,
            )
            return self._strategy(
                ctx,
                pattern,
                RegenerationApproach.REFERENCE_BASED,
                provider,
                CONFIDENCE["reference_minimal"],
                ReferenceBasedParams(
                    prompt=prompt,
                    reference_artifact_ref=seed.artifact_ref,
                    motion_intensity="minimal",
                    motion_style="environmental",
                ),
                reasoning=(
                    f"Reusing best artifact from attempt {seed.attempt_number} "
                    "with minimal motion"
                ),
            )

        simplified = drastically_simplify(ctx.prompt, ctx.content_tags)
        used = [a.provider_used for a in ctx.history if a.provider_used]
        routed = self.router.route(
            simplified, ctx.content_tags, ctx.media_type, avoid=used + pattern.providers_to_avoid
        )
        return self._strategy(
            ctx,
            pattern,
            RegenerationApproach.SIMPLIFY_PROMPT,
            routed.provider,
            CONFIDENCE["simplify_aggressive"],
            SimplifyPromptParams(prompt=simplified, original_prompt=ctx.prompt, aggressive=True),
            reasoning="No usable artifact from earlier attempts; reducing prompt to subject and lighting",
            warning=SIMPLIFY_WARNING,
        )

    # -- manual modes -------------------------------------------------------

    def _manual(self, ctx: StrategyContext, pattern: FailurePattern) -> Optional[RegenerationStrategy]:
        approach = MODE_APPROACHES[ctx.mode]
        n = len(ctx.history)
        last_provider = ctx.history[-1].provider_used if ctx.history else ctx.current_provider
        prompt = improve_prompt(
            ctx.prompt, ctx.latest_assessment, n + 1, framing=ctx.framing,
            emphasize=pattern.recurring_categories,
        )
        reasoning = f"Requested mode {ctx.mode.value}"

        if approach == RegenerationApproach.RETRY:
            provider = ctx.current_provider or self.router.route(
                ctx.prompt, ctx.content_tags, ctx.media_type, avoid=pattern.providers_to_avoid
            ).provider
            return self._strategy(
                ctx, pattern, approach, provider, CONFIDENCE["manual"],
                RetryParams(prompt=prompt, negative_prompt=NEGATIVE_PROMPT),
                reasoning=reasoning,
            )

        if approach == RegenerationApproach.REFERENCE_BASED:
            seed = best_artifact_attempt(ctx.history)
            reference = seed.artifact_ref if seed is not None else ctx.current_artifact_ref
            if not reference:
                logger.info(
                    f"Scene {ctx.scene_id}: no artifact for reference-based mode, "
                    "falling back to the automatic ladder"
                )
                return None
            provider = self.router.image_to_video_provider(
                ctx.media_type, exclude=pattern.providers_to_avoid, prefer=ctx.current_provider
            )
            return self._strategy(
                ctx, pattern, approach, provider, CONFIDENCE["reference_partial"],
                ReferenceBasedParams(prompt=prompt, reference_artifact_ref=reference),
                reasoning=reasoning,
            )

        if approach == RegenerationApproach.SIMPLIFY_PROMPT:
            simplified = simplify_prompt(ctx.prompt) or drastically_simplify(ctx.prompt, ctx.content_tags)
            provider = self.router.route(
                simplified, ctx.content_tags, ctx.media_type, avoid=pattern.providers_to_avoid
            ).provider
            return self._strategy(
                ctx, pattern, approach, provider, CONFIDENCE["manual"],
                SimplifyPromptParams(prompt=simplified, original_prompt=ctx.prompt),
                reasoning=reasoning,
            )

        if approach == RegenerationApproach.ALTERNATE_PROVIDER:
            exclude: list[str] = []
            for p in [last_provider, ctx.current_provider, *pattern.providers_to_avoid]:
                if p and p not in exclude:
                    exclude.append(p)
            provider = self.router.next_in_fallback(ctx.media_type, exclude, after=last_provider)
            return self._strategy(
                ctx, pattern, approach, provider, CONFIDENCE["alternate"],
                AlternateProviderParams(
                    prompt=prompt, negative_prompt=NEGATIVE_PROMPT, excluded_providers=exclude
                ),
                reasoning=reasoning,
            )

        query = stock_search_query(ctx.prompt, ctx.content_tags)
        return self._strategy(
            ctx, pattern, RegenerationApproach.STOCK_FOOTAGE, self.stock_provider,
            CONFIDENCE["manual"],
            StockFootageParams(search_query=query),
            reasoning=reasoning,
        )

    # -- builders -----------------------------------------------------------

    def _escalate(self, ctx: StrategyContext, pattern: FailurePattern, reason: str) -> RegenerationStrategy:
        return self._strategy(
            ctx,
            pattern,
            RegenerationApproach.ESCALATE,
            None,
            CONFIDENCE["escalate"],
            EscalateParams(
                reason=reason,
                stock_search_query=stock_search_query(ctx.prompt, ctx.content_tags),
            ),
            reasoning=reason,
            warning="Manual review needed: consider stock footage or rewriting the scene.",
        )

    @staticmethod
    def _strategy(
        ctx: StrategyContext,
        pattern: FailurePattern,
        approach: RegenerationApproach,
        provider: Optional[str],
        confidence: float,
        params,
        *,
        reasoning: str,
        warning: Optional[str] = None,
    ) -> RegenerationStrategy:
        if pattern.detected:
            recurring = ", ".join(c.value for c in pattern.recurring_categories)
            reasoning = f"{reasoning}. Recurring issues: {recurring}"
            if pattern.providers_to_avoid:
                reasoning += f" (avoiding {', '.join(pattern.providers_to_avoid)})"
        return RegenerationStrategy(
            approach=approach,
            target_provider=provider,
            confidence_score=confidence,
            warning=warning,
            reasoning=reasoning,
            params=params,
            failure_pattern=pattern,
            attempts_so_far=len(ctx.history),
        )


def describe_strategy(strategy: RegenerationStrategy) -> str:
    """One-line suggestion shown to a reviewer before regenerating."""
    provider = strategy.target_provider or "n/a"
    texts = {
        RegenerationApproach.RETRY: f"Regenerate with {provider}, the best match for this content",
        RegenerationApproach.ALTERNATE_PROVIDER: f"Try a different provider: {provider}",
        RegenerationApproach.REFERENCE_BASED: f"Use the best previous result as a reference with {provider}",
        RegenerationApproach.SIMPLIFY_PROMPT: f"Simplify the prompt and regenerate with {provider}",
        RegenerationApproach.STOCK_FOOTAGE: "Search stock footage for this scene",
        RegenerationApproach.ESCALATE: "Automatic options exhausted: review manually or use stock footage",
    }
    text = f"{texts[strategy.approach]} (confidence {strategy.confidence_score:.0%})"
    if strategy.warning:
        text += f". {strategy.warning}"
    return text
