"""Tests for the project-level quality pipeline."""

import asyncio

import pytest

from conftest import FakeGenerator, make_scene, scorer_response
from vidgate.orchestrator.pipeline import NoArtifact, QualityPipeline
from vidgate.orchestrator.regeneration import SceneBusy
from vidgate.schemas.quality import IssueCategory, VerdictStatus
from vidgate.schemas.regeneration import RegenerationApproach, RegenerationStatus
from vidgate.schemas.scene import ExpectedDescription
from vidgate.services.quality_gate import PolicyViolation
from vidgate.services.scene_evaluator import derive_verdict
from vidgate.services.scene_repository import ProjectNotFound, SceneNotFound
from vidgate.services.scoring_rubric import build_assessment


def _add_evaluated(scenes, policy, scene_id, index, score):
    assessment = build_assessment(scorer_response(score), ExpectedDescription(), policy)
    verdict = derive_verdict(scene_id, assessment, policy, artifact_ref=f"{scene_id}.mp4")
    scenes.add_scene(make_scene(scene_id, index=index, artifact=f"{scene_id}.mp4"), verdict)


# ---------------------------------------------------------------------------
# Evaluation and review
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_evaluate_scene_stores_verdict(pipeline, scenes):
    scenes.add_scene(make_scene())

    verdict = await pipeline.evaluate_scene("scene-1")

    assert verdict.status == VerdictStatus.APPROVED
    assert verdict.artifact_ref == "original.mp4"
    assert (await scenes.get("scene-1")).status == "approved"
    assert (await scenes.get_verdict("scene-1")) == verdict


@pytest.mark.asyncio
async def test_evaluate_scene_without_artifact(pipeline, scenes):
    scenes.add_scene(make_scene(artifact=None))
    with pytest.raises(NoArtifact):
        await pipeline.evaluate_scene("scene-1")


@pytest.mark.asyncio
async def test_evaluate_unknown_scene(pipeline):
    with pytest.raises(SceneNotFound):
        await pipeline.evaluate_scene("nope")


@pytest.mark.asyncio
async def test_reviewer_approval_survives_reevaluation_of_same_artifact(pipeline, scenes, scorer):
    scorer.default = scorer_response(75)
    scenes.add_scene(make_scene())

    assert (await pipeline.evaluate_scene("scene-1")).status == VerdictStatus.NEEDS_REVIEW
    assert (await pipeline.review_scene("scene-1", approved=True)).status == VerdictStatus.APPROVED

    again = await pipeline.evaluate_scene("scene-1")
    assert again.status == VerdictStatus.APPROVED
    assert again.user_approved


@pytest.mark.asyncio
async def test_reviewer_rejection_survives_project_reevaluation(pipeline, scenes):
    scenes.add_scene(make_scene())
    assert (await pipeline.evaluate_scene("scene-1")).status == VerdictStatus.APPROVED
    await pipeline.review_scene("scene-1", approved=False, reason="wrong logo")

    report = await pipeline.evaluate_project("project-1")

    verdict = await scenes.get_verdict("scene-1")
    assert verdict.status == VerdictStatus.REJECTED
    assert verdict.user_rejected
    assert not verdict.auto_approved
    rejections = [i for i in verdict.issues if i.category == IssueCategory.USER_REJECTED]
    assert [i.description for i in rejections] == ["User rejected: wrong logo"]
    assert report.can_render is False


@pytest.mark.asyncio
async def test_rejection_does_not_carry_over_to_new_artifact(pipeline, scenes):
    scenes.add_scene(make_scene())
    await pipeline.evaluate_scene("scene-1")
    await pipeline.review_scene("scene-1", approved=False, reason="wrong logo")

    scene = await scenes.get("scene-1")
    scenes.add_scene(scene.model_copy(update={"current_artifact_ref": "fixed.mp4"}))

    verdict = await pipeline.evaluate_scene("scene-1")
    assert verdict.status == VerdictStatus.APPROVED
    assert not verdict.user_rejected


@pytest.mark.asyncio
async def test_reviewer_rejection(pipeline, scenes):
    scenes.add_scene(make_scene())
    await pipeline.evaluate_scene("scene-1")

    verdict = await pipeline.review_scene("scene-1", approved=False, reason="wrong logo")

    assert verdict.status == VerdictStatus.REJECTED
    assert verdict.user_rejected
    assert (await scenes.get("scene-1")).status == "rejected"


@pytest.mark.asyncio
async def test_review_requires_evaluation(pipeline, scenes):
    scenes.add_scene(make_scene())
    with pytest.raises(ValueError):
        await pipeline.review_scene("scene-1", approved=True)


@pytest.mark.asyncio
async def test_evaluate_project_builds_report(pipeline, scenes, scorer):
    scorer.by_artifact = {"a.mp4": scorer_response(90), "b.mp4": scorer_response(40)}
    scenes.add_scene(make_scene("s1", index=0, artifact="a.mp4"))
    scenes.add_scene(make_scene("s2", index=1, artifact="b.mp4"))
    scenes.add_scene(make_scene("s3", index=2, artifact=None))

    report = await pipeline.evaluate_project("project-1")

    assert report.scene_count == 3
    assert report.approved_count == 1
    assert report.rejected_count == 1
    assert report.pending_count == 1
    assert report.overall_score == 65
    assert not report.can_render


@pytest.mark.asyncio
async def test_project_policy_overrides_apply(pipeline, scenes):
    scenes.add_project("project-2", {"auto_approve_threshold": 95})
    scenes.add_scene(make_scene("s1", project_id="project-2"))

    verdict = await pipeline.evaluate_scene("s1")

    assert verdict.status == VerdictStatus.NEEDS_REVIEW
    assert (await pipeline.policy_for("project-2")).auto_approve_threshold == 95


@pytest.mark.asyncio
async def test_unknown_project(pipeline):
    with pytest.raises(ProjectNotFound):
        await pipeline.report("missing")


# ---------------------------------------------------------------------------
# Regeneration
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_regenerate_project_targets_rejected_scenes(pipeline, scenes, policy, generator):
    _add_evaluated(scenes, policy, "s1", 0, 40)
    _add_evaluated(scenes, policy, "s2", 1, 90)

    result = await pipeline.regenerate_project("project-1")

    assert [r.scene_id for r in result.results] == ["s1"]
    assert result.results[0].status == RegenerationStatus.SUCCESS
    assert [r.scene_id for r in generator.requests] == ["s1"]
    assert result.report.can_render
    assert not result.cancelled


@pytest.mark.asyncio
async def test_regenerate_project_skips_scene_fixed_while_waiting(pipeline, scenes, policy, generator, orchestrator):
    _add_evaluated(scenes, policy, "s1", 0, 40)
    lock = orchestrator.locks.for_scene("s1")
    await lock.acquire()
    try:
        sweep = asyncio.create_task(pipeline.regenerate_project("project-1"))
        for _ in range(5):
            await asyncio.sleep(0)
        assert not sweep.done()

        # Another loop lands a passing artifact while the sweep waits on the lock
        assessment = build_assessment(scorer_response(92), ExpectedDescription(), policy)
        await scenes.replace_artifact(
            "s1", "fixed.mp4", "veo-3.1",
            derive_verdict("s1", assessment, policy, artifact_ref="fixed.mp4"),
        )
    finally:
        lock.release()

    result = await sweep

    assert result.results[0].status == RegenerationStatus.SKIPPED
    assert result.results[0].attempts == []
    assert generator.requests == []
    assert (await scenes.get("s1")).current_artifact_ref == "fixed.mp4"
    assert result.report.can_render


@pytest.mark.asyncio
async def test_project_budget_is_shared(scenes, ledger, review_queue, evaluator, orchestrator, policy, scorer, generator):
    scorer.default = scorer_response(40)
    _add_evaluated(scenes, policy, "s1", 0, 40)
    _add_evaluated(scenes, policy, "s2", 1, 40)
    pipeline = QualityPipeline(
        scenes, ledger, review_queue, evaluator, orchestrator,
        policy=policy, project_attempt_budget=1,
    )

    result = await pipeline.regenerate_project("project-1")

    assert len(generator.requests) == 1
    assert result.budget_exhausted
    assert {r.status for r in result.results} == {RegenerationStatus.ESCALATED}
    assert len(await pipeline.review_queue_entries("project-1")) == 2


@pytest.mark.asyncio
async def test_cancel_stops_loops_after_current_attempt(pipeline, scenes, policy, scorer, orchestrator):
    scorer.default = scorer_response(40)
    _add_evaluated(scenes, policy, "s1", 0, 40)

    class CancellingGenerator(FakeGenerator):
        async def generate(self, request):
            assert pipeline.cancel_project("project-1")
            return await super().generate(request)

    orchestrator.generator = CancellingGenerator()

    result = await pipeline.regenerate_project("project-1")

    assert result.cancelled
    assert result.results[0].status == RegenerationStatus.CANCELLED
    assert len(result.results[0].attempts) == 1
    assert not pipeline.cancel_project("project-1")


@pytest.mark.asyncio
async def test_regenerate_scene_rejects_concurrent_loop(pipeline, scenes, policy, orchestrator):
    _add_evaluated(scenes, policy, "s1", 0, 40)
    async with orchestrator.locks.for_scene("s1"):
        with pytest.raises(SceneBusy):
            await pipeline.regenerate_scene("s1")


@pytest.mark.asyncio
async def test_strategy_preview_does_not_generate(pipeline, scenes, policy, generator, ledger):
    _add_evaluated(scenes, policy, "s1", 0, 40)

    preview = await pipeline.strategy_preview("s1")

    assert preview.attempts_so_far == 0
    assert preview.strategy.approach == RegenerationApproach.RETRY
    assert "confidence 80%" in preview.suggestion
    assert generator.requests == []
    assert await ledger.history("s1") == []


@pytest.mark.asyncio
async def test_attempts_lists_history(pipeline, scenes, policy):
    _add_evaluated(scenes, policy, "s1", 0, 40)
    await pipeline.regenerate_scene("s1")

    attempts = await pipeline.attempts("s1")
    assert [a.attempt_number for a in attempts] == [1]

    with pytest.raises(SceneNotFound):
        await pipeline.attempts("missing")


# ---------------------------------------------------------------------------
# Render gate and review queue
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_render_manifest_lists_current_artifacts(pipeline, scenes, policy):
    _add_evaluated(scenes, policy, "s2", 1, 92)
    _add_evaluated(scenes, policy, "s1", 0, 88)

    manifest = await pipeline.authorize_render("project-1")

    assert [s.artifact_ref for s in manifest.scenes] == ["s1.mp4", "s2.mp4"]
    assert not manifest.overridden


@pytest.mark.asyncio
async def test_render_blocked_and_forced(pipeline, scenes, policy):
    _add_evaluated(scenes, policy, "s1", 0, 75)

    with pytest.raises(PolicyViolation):
        await pipeline.authorize_render("project-1")

    manifest = await pipeline.authorize_render("project-1", force_override=True)
    assert manifest.overridden
    assert manifest.bypassed_reasons


@pytest.mark.asyncio
async def test_resolve_escalated_entry(pipeline, scenes, policy, scorer):
    scorer.default = scorer_response(40)
    _add_evaluated(scenes, policy, "s1", 0, 40)
    result = await pipeline.regenerate_scene("s1")

    entry = await pipeline.resolve_review(result.review_entry_id, note="used stock clip")

    assert entry.resolved
    assert entry.resolution_note == "used stock clip"
    assert await pipeline.review_queue_entries("project-1") == []
    assert len(await pipeline.review_queue_entries("project-1", include_resolved=True)) == 1
