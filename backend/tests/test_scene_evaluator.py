"""Tests for verdict derivation, reviewer decisions and scorer fallback."""

import asyncio

import pytest

from conftest import FakeScorer, make_scene, scorer_response
from vidgate.schemas.llm_vision import ScorerResponse
from vidgate.schemas.quality import IssueCategory, IssueSeverity, QualityPolicy, SceneVerdict, VerdictStatus
from vidgate.schemas.scene import ExpectedDescription
from vidgate.services.scene_evaluator import SceneEvaluator, apply_user_decision, derive_verdict, passes
from vidgate.services.scene_scorer import ScoringOracleError
from vidgate.services.scoring_rubric import build_assessment, placeholder_assessment

POLICY = QualityPolicy()


def _assessment(score, issues=()):
    return build_assessment(scorer_response(score, issues=issues), ExpectedDescription(), POLICY)


# ---------------------------------------------------------------------------
# derive_verdict
# ---------------------------------------------------------------------------

def test_high_score_auto_approves():
    verdict = derive_verdict("s1", _assessment(90), POLICY)
    assert verdict.status == VerdictStatus.APPROVED
    assert verdict.auto_approved


def test_below_floor_is_rejected():
    assert derive_verdict("s1", _assessment(40), POLICY).status == VerdictStatus.REJECTED


def test_critical_issue_rejects_regardless_of_score():
    verdict = derive_verdict("s1", _assessment(95, issues=(("face_blocked", "critical"),)), POLICY)
    assert verdict.status == VerdictStatus.REJECTED
    assert not verdict.auto_approved


def test_middle_band_needs_review_until_user_approves():
    assessment = _assessment(72)
    assert derive_verdict("s1", assessment, POLICY).status == VerdictStatus.NEEDS_REVIEW

    approved = derive_verdict("s1", assessment, POLICY, user_approved=True)
    assert approved.status == VerdictStatus.APPROVED
    assert not approved.auto_approved


def test_no_user_approval_required_approves_middle_band():
    policy = QualityPolicy(require_user_approval=False)
    assert derive_verdict("s1", _assessment(72), policy).status == VerdictStatus.APPROVED


def test_user_approval_never_lifts_rejection():
    verdict = derive_verdict("s1", _assessment(30), POLICY, user_approved=True)
    assert verdict.status == VerdictStatus.REJECTED


def test_degraded_assessment_never_auto_approves():
    policy = QualityPolicy(degraded_score=90)
    verdict = derive_verdict("s1", placeholder_assessment("timeout", policy), policy)
    assert verdict.status == VerdictStatus.NEEDS_REVIEW
    assert not verdict.auto_approved


def test_degraded_assessment_waits_for_reviewer_without_approval_policy():
    policy = QualityPolicy(require_user_approval=False)
    assessment = placeholder_assessment("scorer timeout", policy)

    assert derive_verdict("s1", assessment, policy).status == VerdictStatus.NEEDS_REVIEW
    approved = derive_verdict("s1", assessment, policy, user_approved=True)
    assert approved.status == VerdictStatus.APPROVED


@pytest.mark.asyncio
async def test_scorer_outage_is_not_approved_without_approval_policy():
    policy = QualityPolicy(require_user_approval=False)
    scorer = FakeScorer(default=ScoringOracleError("down"))

    verdict = await SceneEvaluator(scorer, policy, retry_wait_seconds=0).evaluate("a.mp4", make_scene())

    assert verdict.assessment.degraded
    assert verdict.status == VerdictStatus.NEEDS_REVIEW


@pytest.mark.asyncio
async def test_carried_rejection_keeps_verdict_rejected():
    verdict = derive_verdict("s1", _assessment(90), POLICY)
    rejected = apply_user_decision(verdict, POLICY, approved=False, reason="off brand")
    carried = tuple(i for i in rejected.issues if i.category == IssueCategory.USER_REJECTED)

    again = await SceneEvaluator(FakeScorer(), POLICY, retry_wait_seconds=0).evaluate(
        "original.mp4", make_scene(), user_approved=True, user_rejections=carried
    )

    assert again.status == VerdictStatus.REJECTED
    assert again.user_rejected
    assert not again.user_approved
    assert again.issues[-1].description == "User rejected: off brand"


# ---------------------------------------------------------------------------
# apply_user_decision
# ---------------------------------------------------------------------------

def test_user_reject_adds_major_issue():
    verdict = derive_verdict("s1", _assessment(90), POLICY)
    rejected = apply_user_decision(verdict, POLICY, approved=False, reason="wrong product")

    assert rejected.status == VerdictStatus.REJECTED
    assert rejected.user_rejected
    issue = rejected.issues[-1]
    assert issue.category == IssueCategory.USER_REJECTED
    assert issue.severity == IssueSeverity.MAJOR
    assert issue.description == "User rejected: wrong product"


def test_user_approve_on_rejected_keeps_rejected():
    verdict = derive_verdict("s1", _assessment(35), POLICY)
    result = apply_user_decision(verdict, POLICY, approved=True)
    assert result.status == VerdictStatus.REJECTED
    assert result.user_approved


def test_user_decision_requires_evaluation():
    with pytest.raises(ValueError):
        apply_user_decision(SceneVerdict.pending("s1"), POLICY, approved=True)


def test_passes_excludes_degraded_and_rejected():
    assert passes(derive_verdict("s1", _assessment(75), POLICY), POLICY)
    assert not passes(derive_verdict("s1", _assessment(65), POLICY), POLICY)
    assert not passes(derive_verdict("s1", placeholder_assessment("x", POLICY), POLICY), POLICY)


# ---------------------------------------------------------------------------
# SceneEvaluator
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_evaluate_scores_and_classifies():
    scorer = FakeScorer(scorer_response(91))
    evaluator = SceneEvaluator(scorer, POLICY, retry_wait_seconds=0)

    verdict = await evaluator.evaluate("clip.mp4", make_scene())

    assert verdict.status == VerdictStatus.APPROVED
    assert verdict.artifact_ref == "clip.mp4"
    assert verdict.evaluated_at is not None
    assert scorer.calls == ["clip.mp4"]


@pytest.mark.asyncio
async def test_scorer_failure_is_retried_once():
    class FlakyScorer(FakeScorer):
        async def score(self, artifact_ref, expected) -> ScorerResponse:
            self.calls.append(artifact_ref)
            if len(self.calls) == 1:
                raise ScoringOracleError("malformed JSON")
            return scorer_response(88)

    scorer = FlakyScorer()
    verdict = await SceneEvaluator(scorer, POLICY, retry_wait_seconds=0).evaluate("a.mp4", make_scene())

    assert len(scorer.calls) == 2
    assert verdict.overall_score == 88
    assert not verdict.assessment.degraded


@pytest.mark.asyncio
async def test_second_scorer_failure_uses_placeholder():
    scorer = FakeScorer(ScoringOracleError("model unavailable"))
    verdict = await SceneEvaluator(scorer, POLICY, retry_wait_seconds=0).evaluate("a.mp4", make_scene())

    assert len(scorer.calls) == 2
    assert verdict.assessment.degraded
    assert verdict.overall_score == POLICY.degraded_score
    assert verdict.status == VerdictStatus.NEEDS_REVIEW


@pytest.mark.asyncio
async def test_scorer_timeout_uses_placeholder():
    class SlowScorer(FakeScorer):
        async def score(self, artifact_ref, expected) -> ScorerResponse:
            self.calls.append(artifact_ref)
            await asyncio.sleep(1)
            return scorer_response(99)

    scorer = SlowScorer()
    evaluator = SceneEvaluator(scorer, POLICY, timeout_seconds=0.01, retry_wait_seconds=0)
    verdict = await evaluator.evaluate("a.mp4", make_scene())

    assert len(scorer.calls) == 2
    assert verdict.assessment.degraded
    assert "timeout" in verdict.issues[0].description


@pytest.mark.asyncio
async def test_unexpected_scorer_error_uses_placeholder():
    scorer = FakeScorer(RuntimeError("boom"))
    verdict = await SceneEvaluator(scorer, POLICY, retry_wait_seconds=0).evaluate("a.mp4", make_scene())

    assert scorer.calls == ["a.mp4"]
    assert verdict.assessment.degraded
