"""Tests for score normalisation and hard-fail overrides."""

import pytest

from conftest import scorer_response
from vidgate.schemas.llm_vision import ScorerIssue, ScorerResponse
from vidgate.schemas.quality import Dimension, IssueCategory, IssueSeverity, QualityPolicy
from vidgate.schemas.scene import ExpectedDescription
from vidgate.services.scoring_rubric import (
    DIMENSION_WEIGHTS,
    MISSING_DIMENSION_SCORE,
    build_assessment,
    clamp_score,
    has_text_element,
    normalize_dimension_scores,
    normalize_issue,
    placeholder_assessment,
    weighted_score,
)

POLICY = QualityPolicy()


def test_weights_sum_to_one_with_content_dominant():
    assert sum(DIMENSION_WEIGHTS.values()) == pytest.approx(1.0)
    assert DIMENSION_WEIGHTS[Dimension.CONTENT_MATCH] >= 0.40
    assert max(DIMENSION_WEIGHTS, key=DIMENSION_WEIGHTS.get) == Dimension.CONTENT_MATCH


@pytest.mark.parametrize("value,expected", [(-5, 0.0), (140, 100.0), (float("nan"), 0.0), (62.5, 62.5)])
def test_clamp_score(value, expected):
    assert clamp_score(value) == expected


def test_weighted_score_uses_dimension_weights():
    scores = {
        Dimension.CONTENT_MATCH: 100,
        Dimension.TECHNICAL_QUALITY: 50,
        Dimension.FRAMING: 50,
        Dimension.BRAND_COMPLIANCE: 50,
        Dimension.COHERENCE: 50,
    }
    assert weighted_score(scores) == 70


def test_missing_dimensions_get_neutral_score_and_minor_issue():
    scores, issues = normalize_dimension_scores({"contentMatch": 90, "technical-quality": 200})
    assert scores[Dimension.CONTENT_MATCH] == 90
    assert scores[Dimension.TECHNICAL_QUALITY] == 100
    assert scores[Dimension.COHERENCE] == MISSING_DIMENSION_SCORE
    assert len(issues) == 3
    assert all(i.severity == IssueSeverity.MINOR for i in issues)


def test_unknown_category_becomes_minor_other():
    issue = normalize_issue(ScorerIssue(category="lens flare", severity="critical"))
    assert issue.category == IssueCategory.OTHER
    assert issue.severity == IssueSeverity.MINOR


def test_unknown_severity_becomes_minor():
    issue = normalize_issue(ScorerIssue(category="composition", severity="catastrophic"))
    assert issue.category == IssueCategory.COMPOSITION
    assert issue.severity == IssueSeverity.MINOR


def test_ai_text_is_always_critical():
    issue = normalize_issue(ScorerIssue(category="ai_text_detected", severity="minor"))
    assert issue.severity == IssueSeverity.CRITICAL


def test_clean_response_keeps_weighted_score():
    assessment = build_assessment(scorer_response(88), ExpectedDescription(), POLICY)
    assert assessment.overall_score == 88
    assert assessment.raw_score == 88
    assert assessment.hard_fail_reasons == ()
    assert not assessment.degraded


def test_missing_required_text_caps_at_45():
    expected = ExpectedDescription(required_text=["50% OFF"])
    assessment = build_assessment(scorer_response(92, matched=("woman", "kitchen")), expected, POLICY)
    assert assessment.overall_score == 45
    assert assessment.raw_score == 92
    assert "missing_required_text" in assessment.hard_fail_reasons
    assert assessment.has_critical


def test_required_text_present_is_not_capped():
    expected = ExpectedDescription(required_text=["50% OFF"])
    response = scorer_response(92, matched=("text: 50% off banner",))
    assert build_assessment(response, expected, POLICY).overall_score == 92


def test_framing_conflict_caps_at_55():
    expected = ExpectedDescription(framing="close-up")
    assessment = build_assessment(scorer_response(90, framing="wide shot"), expected, POLICY)
    assert assessment.overall_score == 55
    assert "framing_conflict" in assessment.hard_fail_reasons
    assert any(
        i.category == IssueCategory.FRAMING and i.severity == IssueSeverity.CRITICAL
        for i in assessment.issues
    )


def test_matching_framing_alias_is_not_a_conflict():
    expected = ExpectedDescription(framing="close_up")
    assessment = build_assessment(scorer_response(90, framing="Close-Up"), expected, POLICY)
    assert assessment.overall_score == 90
    assert assessment.detected_framing == "close_up"


def test_ai_text_caps_at_60():
    response = scorer_response(95, issues=(("ai_text_detected", "minor"),))
    assessment = build_assessment(response, ExpectedDescription(), POLICY)
    assert assessment.overall_score == 60
    assert assessment.has_critical


def test_caps_only_lower_the_score():
    response = scorer_response(30, issues=(("ai_text_detected", "critical"),))
    assessment = build_assessment(response, ExpectedDescription(required_text=["SALE"]), POLICY)
    assert assessment.overall_score == 30


def test_build_assessment_is_deterministic():
    response = ScorerResponse(
        dimension_scores={"content_match": 71.4, "framing": 66},
        issues=[ScorerIssue(category="composition", severity="major")],
    )
    expected = ExpectedDescription(required_elements=["bottle"])
    assert build_assessment(response, expected, POLICY) == build_assessment(response, expected, POLICY)


def test_has_text_element_matches_required_string():
    assert has_text_element(["Banner reading 'Summer Sale'"], ["summer sale"])
    assert not has_text_element(["woman", "kitchen"], ["summer sale"])


@pytest.mark.parametrize(
    "element", ["textured marble counter", "titled pan", "overlay-free background", "caption"]
)
def test_text_like_words_are_not_text_elements(element):
    assert not has_text_element([element], ["50% OFF"])


def test_labelled_text_elements_count():
    assert has_text_element(["Text: Summer Sale"], ["50% OFF"])
    assert has_text_element(["overlay: price tag"], ["50% OFF"])
    assert has_text_element(["caption : subtitles at bottom"], [])


def test_textured_surface_does_not_satisfy_required_text():
    expected = ExpectedDescription(required_text=["50% OFF"])
    response = scorer_response(95, matched=("textured marble counter",))

    assessment = build_assessment(response, expected, POLICY)

    assert assessment.overall_score == 45
    assert "missing_required_text" in assessment.hard_fail_reasons


def test_placeholder_is_degraded_with_minor_issue():
    assessment = placeholder_assessment("scorer timeout", POLICY)
    assert assessment.degraded
    assert assessment.overall_score == POLICY.degraded_score
    assert [i.severity for i in assessment.issues] == [IssueSeverity.MINOR]
    assert "placeholder" in assessment.issues[0].description
