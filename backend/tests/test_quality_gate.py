"""Tests for the project quality report and render authorization."""

import pytest

from conftest import scorer_response
from vidgate.schemas.quality import QualityPolicy, SceneVerdict, VerdictStatus
from vidgate.schemas.scene import ExpectedDescription
from vidgate.services.quality_gate import PolicyViolation, authorize_render, build_report
from vidgate.services.scene_evaluator import apply_user_decision, derive_verdict
from vidgate.services.scoring_rubric import build_assessment

POLICY = QualityPolicy()


def _verdict(scene_id, score, issues=(), user_approved=False):
    assessment = build_assessment(
        scorer_response(score, issues=issues), ExpectedDescription(), POLICY
    )
    return derive_verdict(scene_id, assessment, POLICY, user_approved=user_approved)


def test_needs_review_scene_blocks_render():
    report = build_report("p1", [_verdict("s1", 90), _verdict("s2", 75)], POLICY)

    assert report.needs_review_count == 1
    assert not report.can_render
    assert any("need review approval" in r for r in report.blocking_reasons)


def test_user_approved_scene_unblocks_render():
    verdicts = [_verdict("s1", 90), _verdict("s2", 75, user_approved=True)]
    report = build_report("p1", verdicts, POLICY)

    assert report.approved_count == 2
    assert report.blocking_reasons == []
    assert report.can_render


def test_all_auto_approved_without_issues_can_render():
    report = build_report("p1", [_verdict(f"s{i}", 85 + i) for i in range(3)], POLICY)

    assert report.blocking_reasons == []
    assert report.can_render
    assert report.overall_score == 86


def test_critical_issue_blocks_render():
    verdicts = [_verdict("s1", 90), _verdict("s2", 95, issues=(("ai_ui_detected", "critical"),))]
    report = build_report("p1", verdicts, POLICY)

    assert report.critical_issue_count == 1
    assert report.rejected_count == 1
    assert any("critical issue" in r for r in report.blocking_reasons)
    assert any("rejected" in r for r in report.blocking_reasons)


def test_low_overall_score_blocks_even_when_every_scene_approved():
    policy = QualityPolicy(minimum_project_score=90)
    verdicts = [_verdict("s1", 86), _verdict("s2", 88)]
    report = build_report("p1", verdicts, policy)

    assert report.approved_count == 2
    assert report.blocking_reasons == ["Overall score 87 is below minimum 90"]


def test_too_many_major_issues_block():
    majors = (("composition", "major"), ("technical", "major"))
    verdicts = [_verdict("s1", 90, issues=majors), _verdict("s2", 90, issues=majors)]
    report = build_report("p1", verdicts, POLICY)

    assert report.major_issue_count == 4
    assert any("exceed the maximum of 3" in r for r in report.blocking_reasons)


def test_pending_scenes_block_and_are_not_averaged():
    report = build_report("p1", [_verdict("s1", 90), SceneVerdict.pending("s2")], POLICY)

    assert report.pending_count == 1
    assert report.overall_score == 90
    assert report.has_unevaluated
    assert any("not yet evaluated" in r for r in report.blocking_reasons)


def test_empty_project_cannot_render():
    report = build_report("p1", [], POLICY)
    assert not report.can_render
    assert report.overall_score == 0


def test_report_is_independent_of_verdict_order():
    verdicts = [_verdict("s2", 75), _verdict("s1", 40), _verdict("s3", 92)]
    assert build_report("p1", verdicts, POLICY) == build_report("p1", list(reversed(verdicts)), POLICY)


def test_user_rejection_counts_as_major_issue():
    rejected = apply_user_decision(_verdict("s1", 90), POLICY, approved=False, reason="off brand")
    report = build_report("p1", [rejected], POLICY)

    assert report.rejected_count == 1
    assert report.major_issue_count == 1
    assert report.scenes[0].status == VerdictStatus.REJECTED


# ---------------------------------------------------------------------------
# authorize_render
# ---------------------------------------------------------------------------

def test_authorize_render_allows_clean_project():
    report = build_report("p1", [_verdict("s1", 90)], POLICY)
    decision = authorize_render(report, POLICY)
    assert decision.allowed
    assert not decision.overridden


def test_authorize_render_raises_with_blocking_reasons():
    report = build_report("p1", [_verdict("s1", 40)], POLICY)
    with pytest.raises(PolicyViolation) as exc_info:
        authorize_render(report, POLICY)
    assert exc_info.value.blocking_reasons == report.blocking_reasons
    assert not exc_info.value.unevaluated


def test_force_override_bypasses_blocking_reasons():
    report = build_report("p1", [_verdict("s1", 75)], POLICY)
    decision = authorize_render(report, POLICY, force_override=True)

    assert decision.allowed
    assert decision.overridden
    assert decision.bypassed_reasons == report.blocking_reasons


def test_force_override_disallowed_by_policy():
    policy = QualityPolicy(allow_force_render=False)
    report = build_report("p1", [_verdict("s1", 75)], policy)
    with pytest.raises(PolicyViolation):
        authorize_render(report, policy, force_override=True)


def test_force_override_cannot_skip_unevaluated_scenes():
    report = build_report("p1", [_verdict("s1", 90), SceneVerdict.pending("s2")], POLICY)
    with pytest.raises(PolicyViolation) as exc_info:
        authorize_render(report, POLICY, force_override=True)
    assert exc_info.value.unevaluated_scene_ids == ["s2"]
