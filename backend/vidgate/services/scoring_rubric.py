"""Scoring rubric: turn a raw scorer response into an Assessment.

Pure functions only. The scorer output is untrusted, so every value is
validated here before it can influence a verdict:

- dimension scores are clamped to [0, 100]; missing dimensions fall back
  to a neutral score and are reported as a minor issue
- unknown issue categories become ``other`` with ``minor`` severity
- unknown severities become ``minor``

Hard-fail overrides run after the weighted aggregate and only ever lower
the score:

- required on-screen text/overlay missing  -> cap 45, critical content_mismatch
- framing conflicts with the requested class -> cap 55, critical framing
- AI-garbled text detected                  -> cap 60, always critical
"""

import logging
import re
from typing import Optional

from vidgate.schemas.llm_vision import ScorerIssue, ScorerResponse
from vidgate.schemas.quality import (
    Assessment,
    Dimension,
    Issue,
    IssueCategory,
    IssueSeverity,
    QualityPolicy,
)
from vidgate.schemas.scene import ExpectedDescription, normalize_framing

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Dimension weights sum to 1.0; content match carries at least 40%
# ---------------------------------------------------------------------------
DIMENSION_WEIGHTS: dict[Dimension, float] = {
    Dimension.CONTENT_MATCH: 0.40,
    Dimension.TECHNICAL_QUALITY: 0.20,
    Dimension.FRAMING: 0.15,
    Dimension.BRAND_COMPLIANCE: 0.15,
    Dimension.COHERENCE: 0.10,
}

assert abs(sum(DIMENSION_WEIGHTS.values()) - 1.0) < 0.001, "Dimension weights must sum to 1.0"
assert DIMENSION_WEIGHTS[Dimension.CONTENT_MATCH] >= 0.40

# Score used for a dimension the scorer did not return
MISSING_DIMENSION_SCORE = 70.0

# Labels the scorer puts in front of on-screen text or overlays, e.g. "text: 50% OFF"
TEXT_ELEMENT_LABEL = re.compile(
    r"^(?:on[- ]screen text|text|overlay|caption|subtitle|title|headline|logo text)\s*:",
    re.IGNORECASE,
)


def clamp_score(value: float) -> float:
    """Clamp a score into [0, 100]; NaN becomes 0."""
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(100.0, float(value)))


def _normalize_key(value: str) -> str:
    return value.strip().lower().replace("-", "_").replace(" ", "_")


def _parse_dimension(key: str) -> Optional[Dimension]:
    normalized = _normalize_key(key)
    # camelCase keys from some models (contentMatch, technicalQuality)
    if normalized not in Dimension._value2member_map_:
        normalized = "".join(
            f"_{c.lower()}" if c.isupper() else c for c in key.strip()
        ).lstrip("_")
        normalized = _normalize_key(normalized)
    try:
        return Dimension(normalized)
    except ValueError:
        return None


def normalize_issue(raw: ScorerIssue) -> Issue:
    """Validate one scorer issue.

    Examples:
        >>> normalize_issue(ScorerIssue(category="ai-text-detected", severity="minor")).severity
        <IssueSeverity.CRITICAL: 'critical'>
        >>> normalize_issue(ScorerIssue(category="lens flare", severity="critical")).severity
        <IssueSeverity.MINOR: 'minor'>
    """
    try:
        category = IssueCategory(_normalize_key(raw.category))
    except ValueError:
        return Issue(
            category=IssueCategory.OTHER,
            severity=IssueSeverity.MINOR,
            description=raw.description or raw.category,
        )

    try:
        severity = IssueSeverity(_normalize_key(raw.severity))
    except ValueError:
        severity = IssueSeverity.MINOR

    if category == IssueCategory.AI_TEXT_DETECTED:
        severity = IssueSeverity.CRITICAL

    return Issue(category=category, severity=severity, description=raw.description)


def normalize_dimension_scores(raw: dict[str, float]) -> tuple[dict[Dimension, float], list[Issue]]:
    """Clamp scores and fill missing dimensions.

    Returns:
        Tuple of (scores for every dimension, issues describing omissions).
    """
    scores: dict[Dimension, float] = {}
    for key, value in raw.items():
        dim = _parse_dimension(key)
        if dim is None:
            logger.debug(f"Ignoring unknown scorer dimension {key!r}")
            continue
        try:
            scores[dim] = clamp_score(float(value))
        except (TypeError, ValueError):
            continue

    issues: list[Issue] = []
    for dim in Dimension:
        if dim not in scores:
            scores[dim] = MISSING_DIMENSION_SCORE
            issues.append(
                Issue(
                    category=IssueCategory.TECHNICAL,
                    severity=IssueSeverity.MINOR,
                    description=f"Scorer did not return a {dim.value} score",
                )
            )
    return scores, issues


def weighted_score(scores: dict[Dimension, float]) -> int:
    """Weighted aggregate of dimension scores, rounded to an int."""
    total = sum(scores[dim] * weight for dim, weight in DIMENSION_WEIGHTS.items())
    return int(round(clamp_score(total)))


def has_text_element(matched_elements: list[str], required_text: list[str]) -> bool:
    """True if the matched elements include on-screen text or an overlay.

    An element counts when it carries a text label ("text:", "overlay:",
    "caption:", ...) or contains one of the required strings. Unlabelled
    words like "textured" or "titled" do not count.
    """
    wanted = [t.strip().lower() for t in required_text if t.strip()]
    for element in matched_elements:
        lowered = element.strip().lower()
        if TEXT_ELEMENT_LABEL.match(lowered):
            return True
        if any(w in lowered for w in wanted):
            return True
    return False


def build_assessment(
    response: ScorerResponse,
    expected: ExpectedDescription,
    policy: QualityPolicy,
) -> Assessment:
    """Validate a scorer response and apply hard-fail overrides.

    Deterministic: the same response, description and policy always
    produce the same Assessment.

    Args:
        response: Raw scorer output.
        expected: What the scene is supposed to show.
        policy: Thresholds and hard-fail caps.

    Returns:
        Frozen Assessment.
    """
    scores, issues = normalize_dimension_scores(response.dimension_scores)
    issues = [normalize_issue(i) for i in response.issues] + issues

    raw_score = weighted_score(scores)
    score = raw_score
    hard_fails: list[str] = []

    if expected.required_text and not has_text_element(
        response.matched_elements, expected.required_text
    ):
        score = min(score, policy.missing_text_cap)
        missing = ", ".join(repr(t) for t in expected.required_text)
        hard_fails.append("missing_required_text")
        issues.append(
            Issue(
                category=IssueCategory.CONTENT_MISMATCH,
                severity=IssueSeverity.CRITICAL,
                description=f"Required on-screen text not found: {missing}",
            )
        )

    detected = normalize_framing(response.detected_framing)
    if expected.framing is not None and detected is not None and detected != expected.framing:
        score = min(score, policy.framing_conflict_cap)
        hard_fails.append("framing_conflict")
        issues.append(
            Issue(
                category=IssueCategory.FRAMING,
                severity=IssueSeverity.CRITICAL,
                description=(
                    f"Expected {expected.framing.value} framing, "
                    f"got {detected.value}"
                ),
            )
        )

    if any(i.category == IssueCategory.AI_TEXT_DETECTED for i in issues):
        score = min(score, policy.ai_text_cap)
        hard_fails.append("ai_text_detected")

    return Assessment(
        dimension_scores=scores,
        issues=tuple(issues),
        overall_score=score,
        raw_score=raw_score,
        hard_fail_reasons=tuple(hard_fails),
        matched_elements=tuple(response.matched_elements),
        detected_framing=detected.value if detected else response.detected_framing,
        improved_prompt_suggestion=response.improved_prompt_suggestion or None,
    )


def placeholder_assessment(reason: str, policy: QualityPolicy) -> Assessment:
    """Assessment used when the scorer could not evaluate the artifact.

    Carries a minor technical issue and ``degraded=True`` so it can never
    auto-approve or count as a passing regeneration.
    """
    score = float(policy.degraded_score)
    return Assessment(
        dimension_scores={dim: score for dim in Dimension},
        issues=(
            Issue(
                category=IssueCategory.TECHNICAL,
                severity=IssueSeverity.MINOR,
                description=f"Could not evaluate artifact - using placeholder score ({reason})",
            ),
        ),
        overall_score=int(score),
        raw_score=int(score),
        degraded=True,
    )
