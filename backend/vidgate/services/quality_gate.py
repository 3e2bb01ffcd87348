"""Project-level quality gate.

build_report() is a pure projection over the current scene verdicts: no
clock, no I/O, so the same inputs always produce the same report.
authorize_render() turns a report into a render decision and is the only
place a force-render override is honoured.
"""

import logging
from typing import Optional

from pydantic import BaseModel, Field

from vidgate.schemas.quality import (
    IssueSeverity,
    ProjectQualityReport,
    QualityPolicy,
    SceneStatusSummary,
    SceneVerdict,
    VerdictStatus,
)

logger = logging.getLogger(__name__)


class PolicyViolation(Exception):
    """Raised when rendering is attempted while the gate blocks it."""

    def __init__(
        self,
        message: str,
        blocking_reasons: list[str],
        unevaluated_scene_ids: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.blocking_reasons = blocking_reasons
        self.unevaluated_scene_ids = unevaluated_scene_ids or []

    @property
    def unevaluated(self) -> bool:
        return bool(self.unevaluated_scene_ids)


class RenderDecision(BaseModel):
    project_id: str
    allowed: bool
    overridden: bool = False
    bypassed_reasons: list[str] = Field(default_factory=list)


def _plural(n: int, word: str) -> str:
    return f"{n} {word}" if n == 1 else f"{n} {word}s"


def build_report(
    project_id: str,
    verdicts: list[SceneVerdict],
    policy: QualityPolicy,
) -> ProjectQualityReport:
    """Aggregate scene verdicts into a ProjectQualityReport.

    Blocking reasons accumulate independently, so one scene can contribute
    to several of them.

    Args:
        project_id: Project the verdicts belong to.
        verdicts: Current verdict per scene, pending verdicts included.
        policy: Thresholds to apply.

    Returns:
        Report with ``can_render`` true only when nothing blocks.
    """
    ordered = sorted(verdicts, key=lambda v: v.scene_id)
    evaluated = [v for v in ordered if v.status != VerdictStatus.PENDING]

    by_status = {status: 0 for status in VerdictStatus}
    for v in ordered:
        by_status[v.status] += 1

    critical = sum(1 for v in evaluated for i in v.issues if i.severity == IssueSeverity.CRITICAL)
    major = sum(1 for v in evaluated for i in v.issues if i.severity == IssueSeverity.MAJOR)
    minor = sum(1 for v in evaluated for i in v.issues if i.severity == IssueSeverity.MINOR)

    overall = (
        int(round(sum(v.overall_score for v in evaluated) / len(evaluated))) if evaluated else 0
    )

    unapproved_review = [
        v for v in ordered if v.status == VerdictStatus.NEEDS_REVIEW and not v.user_approved
    ]

    reasons: list[str] = []
    if not ordered:
        reasons.append("Project has no scenes")
    if critical:
        reasons.append(f"{_plural(critical, 'critical issue')} must be resolved")
    if by_status[VerdictStatus.REJECTED]:
        reasons.append(
            f"{_plural(by_status[VerdictStatus.REJECTED], 'scene')} rejected and must be regenerated"
        )
    if unapproved_review:
        reasons.append(f"{_plural(len(unapproved_review), 'scene')} need review approval")
    if evaluated and overall < policy.minimum_project_score:
        reasons.append(
            f"Overall score {overall} is below minimum {policy.minimum_project_score}"
        )
    if major > policy.maximum_major_issues:
        reasons.append(
            f"{_plural(major, 'major issue')} exceed the maximum of {policy.maximum_major_issues}"
        )
    if by_status[VerdictStatus.PENDING]:
        reasons.append(
            f"{_plural(by_status[VerdictStatus.PENDING], 'scene')} not yet evaluated"
        )

    scenes = [
        SceneStatusSummary(
            scene_id=v.scene_id,
            status=v.status,
            overall_score=v.overall_score,
            user_approved=v.user_approved,
            critical_issues=sum(1 for i in v.issues if i.severity == IssueSeverity.CRITICAL),
            major_issues=sum(1 for i in v.issues if i.severity == IssueSeverity.MAJOR),
        )
        for v in ordered
    ]

    return ProjectQualityReport(
        project_id=project_id,
        overall_score=overall,
        scene_count=len(ordered),
        approved_count=by_status[VerdictStatus.APPROVED],
        needs_review_count=by_status[VerdictStatus.NEEDS_REVIEW],
        rejected_count=by_status[VerdictStatus.REJECTED],
        pending_count=by_status[VerdictStatus.PENDING],
        critical_issue_count=critical,
        major_issue_count=major,
        minor_issue_count=minor,
        blocking_reasons=reasons,
        can_render=not reasons,
        scenes=scenes,
    )


def authorize_render(
    report: ProjectQualityReport,
    policy: QualityPolicy,
    *,
    force_override: bool = False,
) -> RenderDecision:
    """Decide whether a project may be rendered.

    Unevaluated scenes block unconditionally. Any other blocking reason can
    be bypassed with ``force_override`` when the policy allows it.

    Raises:
        PolicyViolation: If rendering is not allowed.
    """
    pending = [s.scene_id for s in report.scenes if s.status == VerdictStatus.PENDING]
    if pending:
        raise PolicyViolation(
            f"Project {report.project_id} has {_plural(len(pending), 'unevaluated scene')}",
            report.blocking_reasons,
            unevaluated_scene_ids=pending,
        )

    if report.can_render:
        return RenderDecision(project_id=report.project_id, allowed=True)

    if force_override and policy.allow_force_render:
        logger.warning(
            f"Force-render override for project {report.project_id} bypassing: "
            f"{'; '.join(report.blocking_reasons)}"
        )
        return RenderDecision(
            project_id=report.project_id,
            allowed=True,
            overridden=True,
            bypassed_reasons=list(report.blocking_reasons),
        )

    raise PolicyViolation(
        f"Project {report.project_id} cannot be rendered",
        report.blocking_reasons,
    )
