"""Scene evaluation: score an artifact and classify it into a SceneVerdict.

Verdict derivation (after hard-fail overrides in the scoring rubric):

    score < hard_fail_floor OR any critical issue  -> rejected
    user rejected                                   -> rejected
    score >= auto_approve_threshold (not degraded)  -> approved (auto)
    user approved                                   -> approved
    approval not required (not degraded)            -> approved
    otherwise                                       -> needs_review

Rejection is never cleared by a user approval; only a new artifact can
clear it.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from vidgate.schemas.quality import (
    Assessment,
    Issue,
    IssueCategory,
    IssueSeverity,
    QualityPolicy,
    SceneVerdict,
    VerdictStatus,
)
from vidgate.schemas.scene import Scene
from vidgate.services.scene_scorer import SceneScorer, ScoringOracleError
from vidgate.services.scoring_rubric import build_assessment, placeholder_assessment

logger = logging.getLogger(__name__)

# One initial call plus one retry
SCORER_ATTEMPTS = 2


def derive_verdict(
    scene_id: str,
    assessment: Assessment,
    policy: QualityPolicy,
    *,
    user_approved: bool = False,
    user_rejected: bool = False,
    artifact_ref: Optional[str] = None,
    evaluated_at: Optional[datetime] = None,
) -> SceneVerdict:
    """Classify an assessment under a policy.

    Pure: no I/O, no clock reads unless ``evaluated_at`` is omitted by the
    caller (it is only metadata and never affects the status).
    """
    score = assessment.overall_score
    auto_approved = False

    if score < policy.hard_fail_floor or assessment.has_critical:
        status = VerdictStatus.REJECTED
    elif user_rejected:
        status = VerdictStatus.REJECTED
    elif score >= policy.auto_approve_threshold and not assessment.degraded:
        status = VerdictStatus.APPROVED
        auto_approved = True
    elif user_approved or (not policy.require_user_approval and not assessment.degraded):
        status = VerdictStatus.APPROVED
    else:
        status = VerdictStatus.NEEDS_REVIEW

    return SceneVerdict(
        scene_id=scene_id,
        status=status,
        overall_score=score,
        user_approved=user_approved,
        user_rejected=user_rejected,
        auto_approved=auto_approved,
        assessment=assessment,
        artifact_ref=artifact_ref,
        evaluated_at=evaluated_at,
    )


def apply_user_decision(
    verdict: SceneVerdict,
    policy: QualityPolicy,
    *,
    approved: bool,
    reason: Optional[str] = None,
) -> SceneVerdict:
    """Record a reviewer's approve/reject on the current verdict.

    Approval sets ``user_approved`` but cannot lift a rejection. Rejection
    appends a major "User rejected" issue and marks the verdict rejected.

    Raises:
        ValueError: If the scene has never been evaluated.
    """
    if verdict.assessment is None:
        raise ValueError(f"Scene {verdict.scene_id} has not been evaluated yet")

    assessment = verdict.assessment
    if not approved:
        issue = Issue(
            category=IssueCategory.USER_REJECTED,
            severity=IssueSeverity.MAJOR,
            description=f"User rejected: {reason or 'no reason given'}",
        )
        assessment = assessment.model_copy(update={"issues": assessment.issues + (issue,)})

    return derive_verdict(
        verdict.scene_id,
        assessment,
        policy,
        user_approved=approved,
        user_rejected=not approved,
        artifact_ref=verdict.artifact_ref,
        evaluated_at=verdict.evaluated_at,
    )


def passes(verdict: SceneVerdict, policy: QualityPolicy) -> bool:
    """True if a regenerated artifact is good enough to replace the current one.

    Degraded (scorer-unavailable) verdicts never pass.
    """
    if verdict.assessment is None or verdict.assessment.degraded:
        return False
    return (
        verdict.status != VerdictStatus.REJECTED
        and verdict.overall_score >= policy.minimum_scene_score
    )


class SceneEvaluator:
    """Calls the scene scorer and turns its output into a SceneVerdict.

    Scorer failures (ScoringOracleError, malformed output, timeout) are
    retried once. If the retry also fails the artifact receives a degraded
    placeholder assessment: a minor technical issue, never auto-approved.
    """

    def __init__(
        self,
        scorer: SceneScorer,
        policy: QualityPolicy,
        *,
        timeout_seconds: float = 90.0,
        retry_wait_seconds: float = 1.0,
    ) -> None:
        self.scorer = scorer
        self.policy = policy
        self.timeout_seconds = timeout_seconds
        self.retry_wait_seconds = retry_wait_seconds

    async def assess(
        self, artifact_ref: str, scene: Scene, policy: Optional[QualityPolicy] = None
    ) -> Assessment:
        """Score an artifact, falling back to a placeholder assessment."""
        policy = policy or self.policy
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(SCORER_ATTEMPTS),
                wait=wait_fixed(self.retry_wait_seconds),
                retry=retry_if_exception_type(
                    (ScoringOracleError, ValidationError, asyncio.TimeoutError)
                ),
                reraise=True,
            ):
                with attempt:
                    response = await asyncio.wait_for(
                        self.scorer.score(artifact_ref, scene.expected_description),
                        timeout=self.timeout_seconds,
                    )
        except asyncio.TimeoutError:
            logger.warning(
                f"Scene {scene.index} scorer timed out after {self.timeout_seconds}s, "
                "using placeholder score"
            )
            return placeholder_assessment("scorer timeout", policy)
        except (ScoringOracleError, ValidationError) as e:
            logger.warning(f"Scene {scene.index} scorer failed twice, using placeholder: {e}")
            return placeholder_assessment(type(e).__name__, policy)
        except Exception as e:
            logger.exception(f"Scene {scene.index} scorer raised unexpectedly: {e}")
            return placeholder_assessment("scorer error", policy)

        return build_assessment(response, scene.expected_description, policy)

    async def evaluate(
        self,
        artifact_ref: str,
        scene: Scene,
        *,
        user_approved: bool = False,
        user_rejections: tuple[Issue, ...] = (),
        policy: Optional[QualityPolicy] = None,
    ) -> SceneVerdict:
        """Score ``artifact_ref`` for ``scene`` and derive its verdict.

        Args:
            artifact_ref: Handle of the generated media.
            scene: Scene the artifact was generated for.
            user_approved: Carry an existing approval for the same artifact.
            user_rejections: "User rejected" issues already recorded against
                the same artifact; when present the verdict stays rejected.
            policy: Project policy; defaults to the evaluator's policy.

        Returns:
            SceneVerdict for the artifact.
        """
        policy = policy or self.policy
        assessment = await self.assess(artifact_ref, scene, policy)
        if user_rejections:
            assessment = assessment.model_copy(
                update={"issues": assessment.issues + tuple(user_rejections)}
            )
        verdict = derive_verdict(
            scene.id,
            assessment,
            policy,
            user_approved=user_approved and not user_rejections,
            user_rejected=bool(user_rejections),
            artifact_ref=artifact_ref,
            evaluated_at=datetime.now(timezone.utc),
        )
        logger.info(
            f"Scene {scene.index} evaluated: score={verdict.overall_score} "
            f"status={verdict.status.value} issues={len(assessment.issues)}"
        )
        return verdict
