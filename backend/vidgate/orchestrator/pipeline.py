"""Project-level quality pipeline.

Coordinates the quality gate for the API and CLI:
- Scene evaluation and reviewer decisions
- Per-scene and project-wide regeneration with a shared budget
- Project cancellation between attempts
- Quality reports and render authorization

Scenes are independent: project operations fan out per scene with a
bounded semaphore and build the report only after every scene finished.
"""

import asyncio
import logging
from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidgate.config import Settings, settings
from vidgate.orchestrator.regeneration import (
    RegenerationBudget,
    RegenerationOrchestrator,
    strategy_context,
)
from vidgate.orchestrator.state import FAILING_STATES, ensure_transition
from vidgate.schemas.quality import (
    IssueCategory,
    ProjectQualityReport,
    QualityPolicy,
    SceneVerdict,
)
from vidgate.schemas.regeneration import (
    RegenerationAttempt,
    RegenerationMode,
    RegenerationResult,
    RegenerationStrategy,
    ReviewQueueEntry,
)
from vidgate.services.attempt_ledger import AttemptLedger, SqlAttemptLedger
from vidgate.services.media_generator import HttpMediaGenerator, MediaGenerator
from vidgate.services.provider_router import ProviderRouter
from vidgate.services.quality_gate import authorize_render, build_report
from vidgate.services.review_queue import ReviewQueue, SqlReviewQueue
from vidgate.services.scene_evaluator import SceneEvaluator, apply_user_decision
from vidgate.services.scene_repository import SceneRepository, SqlSceneRepository
from vidgate.services.scene_scorer import SceneScorer, VisionSceneScorer
from vidgate.services.strategy_engine import StrategyEngine, describe_strategy

logger = logging.getLogger(__name__)


class NoArtifact(Exception):
    """Raised when a scene has no generated artifact to evaluate."""


class RenderScene(BaseModel):
    scene_id: str
    index: int
    artifact_ref: str
    duration_seconds: float


class RenderManifest(BaseModel):
    """What the renderer receives once the gate allows rendering."""

    project_id: str
    overridden: bool = False
    bypassed_reasons: list[str] = Field(default_factory=list)
    scenes: list[RenderScene] = Field(default_factory=list)


class StrategyPreview(BaseModel):
    scene_id: str
    attempts_so_far: int
    strategy: RegenerationStrategy
    suggestion: str


class ProjectRegenerationResult(BaseModel):
    project_id: str
    results: list[RegenerationResult] = Field(default_factory=list)
    report: ProjectQualityReport
    cancelled: bool = False
    budget_exhausted: bool = False


class QualityPipeline:
    """Facade over the evaluator, orchestrator, stores and quality gate."""

    def __init__(
        self,
        scenes: SceneRepository,
        ledger: AttemptLedger,
        review_queue: ReviewQueue,
        evaluator: SceneEvaluator,
        orchestrator: RegenerationOrchestrator,
        *,
        policy: QualityPolicy,
        scene_concurrency: int = 3,
        project_attempt_budget: Optional[int] = None,
        project_deadline_seconds: Optional[float] = None,
    ) -> None:
        self.scenes = scenes
        self.ledger = ledger
        self.review_queue = review_queue
        self.evaluator = evaluator
        self.orchestrator = orchestrator
        self.policy = policy
        self.scene_concurrency = scene_concurrency
        self.project_attempt_budget = project_attempt_budget
        self.project_deadline_seconds = project_deadline_seconds
        self._cancel_events: dict[str, asyncio.Event] = {}

    async def policy_for(self, project_id: str) -> QualityPolicy:
        """Configured policy with the project's overrides applied."""
        overrides = await self.scenes.policy_overrides(project_id)
        if not overrides:
            return self.policy
        return QualityPolicy.model_validate({**self.policy.model_dump(), **overrides})

    # -- evaluation ---------------------------------------------------------

    async def evaluate_scene(self, scene_id: str) -> SceneVerdict:
        """Score the scene's current artifact and store the verdict.

        A reviewer's approval or rejection is kept when the same artifact is
        re-evaluated.

        Raises:
            SceneNotFound: If the scene does not exist.
            NoArtifact: If the scene has nothing to evaluate.
        """
        async with self.orchestrator.locks.for_scene(scene_id):
            scene = await self.scenes.get(scene_id)
            if not scene.current_artifact_ref:
                raise NoArtifact(f"Scene {scene_id} has no artifact to evaluate")

            policy = await self.policy_for(scene.project_id)
            previous = await self.scenes.get_verdict(scene_id)
            same_artifact = previous.artifact_ref == scene.current_artifact_ref
            rejections = ()
            if same_artifact and previous.user_rejected:
                rejections = tuple(
                    i for i in previous.issues if i.category == IssueCategory.USER_REJECTED
                )
            verdict = await self.evaluator.evaluate(
                scene.current_artifact_ref,
                scene,
                user_approved=same_artifact and previous.user_approved,
                user_rejections=rejections,
                policy=policy,
            )
            ensure_transition(scene.status, verdict.status.value)
            await self.scenes.save_verdict(verdict)
            return verdict

    async def review_scene(
        self, scene_id: str, approved: bool, reason: Optional[str] = None
    ) -> SceneVerdict:
        """Record a reviewer's approval or rejection.

        Raises:
            SceneNotFound: If the scene does not exist.
            ValueError: If the scene has never been evaluated.
        """
        async with self.orchestrator.locks.for_scene(scene_id):
            scene = await self.scenes.get(scene_id)
            policy = await self.policy_for(scene.project_id)
            verdict = apply_user_decision(
                await self.scenes.get_verdict(scene_id), policy, approved=approved, reason=reason
            )
            await self.scenes.save_verdict(verdict)
            logger.info(
                f"Scene {scene.index} {'approved' if approved else 'rejected'} by reviewer: "
                f"status={verdict.status.value}"
            )
            return verdict

    async def evaluate_project(self, project_id: str) -> ProjectQualityReport:
        """Evaluate every scene that has an artifact, then build the report."""
        scenes = await self.scenes.list_scenes(project_id)
        semaphore = asyncio.Semaphore(self.scene_concurrency)

        async def _evaluate(scene_id: str) -> None:
            async with semaphore:
                await self.evaluate_scene(scene_id)

        await asyncio.gather(*(_evaluate(s.id) for s in scenes if s.current_artifact_ref))
        return await self.report(project_id)

    # -- regeneration -------------------------------------------------------

    async def regenerate_scene(
        self, scene_id: str, mode: RegenerationMode = RegenerationMode.AUTO
    ) -> RegenerationResult:
        """Regenerate one scene; raises SceneBusy if a loop already owns it."""
        scene = await self.scenes.get(scene_id)
        policy = await self.policy_for(scene.project_id)
        return await self.orchestrator.regenerate(
            scene_id, mode, policy=policy, fail_if_busy=True
        )

    async def regenerate_project(self, project_id: str) -> ProjectRegenerationResult:
        """Regenerate every rejected scene concurrently under a shared budget."""
        scenes = await self.scenes.list_scenes(project_id)
        policy = await self.policy_for(project_id)
        targets = [s for s in scenes if s.status in FAILING_STATES]

        cancel_event = self._cancel_events.setdefault(project_id, asyncio.Event())
        budget = RegenerationBudget(self.project_attempt_budget, self.project_deadline_seconds)
        semaphore = asyncio.Semaphore(self.scene_concurrency)

        async def _regenerate(scene_id: str) -> RegenerationResult:
            async with semaphore:
                return await self.orchestrator.regenerate(
                    scene_id,
                    policy=policy,
                    budget=budget,
                    cancel_event=cancel_event,
                    only_states=FAILING_STATES,
                )

        logger.info(f"Project {project_id}: regenerating {len(targets)} failing scene(s)")
        try:
            outcomes = await asyncio.gather(
                *(_regenerate(s.id) for s in targets), return_exceptions=True
            )
        finally:
            self._cancel_events.pop(project_id, None)

        results: list[RegenerationResult] = []
        for scene, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Scene {scene.index} regeneration failed: {outcome!r}")
                continue
            results.append(outcome)

        return ProjectRegenerationResult(
            project_id=project_id,
            results=results,
            report=await self.report(project_id),
            cancelled=cancel_event.is_set(),
            budget_exhausted=budget.exhausted,
        )

    def cancel_project(self, project_id: str) -> bool:
        """Signal running loops of a project to stop after their current attempt.

        Returns:
            True if a project run was in progress.
        """
        event = self._cancel_events.get(project_id)
        if event is None:
            return False
        event.set()
        logger.info(f"Project {project_id}: cancellation requested")
        return True

    async def strategy_preview(
        self, scene_id: str, mode: RegenerationMode = RegenerationMode.AUTO
    ) -> StrategyPreview:
        """The strategy the engine would choose now, without executing it."""
        scene = await self.scenes.get(scene_id)
        verdict = await self.scenes.get_verdict(scene_id)
        history = await self.ledger.history(scene_id)
        latest = next(
            (a.result_assessment for a in reversed(history) if a.result_assessment is not None),
            verdict.assessment,
        )
        strategy = self.orchestrator.engine.select(strategy_context(scene, history, latest, mode))
        return StrategyPreview(
            scene_id=scene_id,
            attempts_so_far=len(history),
            strategy=strategy,
            suggestion=describe_strategy(strategy),
        )

    async def attempts(self, scene_id: str) -> list[RegenerationAttempt]:
        await self.scenes.get(scene_id)
        return await self.ledger.history(scene_id)

    # -- gate ---------------------------------------------------------------

    async def report(self, project_id: str) -> ProjectQualityReport:
        verdicts = await self.scenes.verdicts_for_project(project_id)
        return build_report(project_id, verdicts, await self.policy_for(project_id))

    async def authorize_render(
        self, project_id: str, force_override: bool = False
    ) -> RenderManifest:
        """Check the gate and list the artifacts the renderer should use.

        Raises:
            PolicyViolation: If the gate blocks rendering.
        """
        report = await self.report(project_id)
        decision = authorize_render(
            report, await self.policy_for(project_id), force_override=force_override
        )
        scenes = await self.scenes.list_scenes(project_id)
        return RenderManifest(
            project_id=project_id,
            overridden=decision.overridden,
            bypassed_reasons=decision.bypassed_reasons,
            scenes=[
                RenderScene(
                    scene_id=s.id,
                    index=s.index,
                    artifact_ref=s.current_artifact_ref,
                    duration_seconds=s.duration_seconds,
                )
                for s in scenes
                if s.current_artifact_ref
            ],
        )

    # -- review queue -------------------------------------------------------

    async def review_queue_entries(
        self, project_id: Optional[str] = None, include_resolved: bool = False
    ) -> list[ReviewQueueEntry]:
        return await self.review_queue.list_entries(project_id, include_resolved=include_resolved)

    async def resolve_review(self, entry_id: str, note: Optional[str] = None) -> ReviewQueueEntry:
        return await self.review_queue.resolve(entry_id, note)


def build_pipeline(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    cfg: Optional[Settings] = None,
    *,
    scorer: Optional[SceneScorer] = None,
    generator: Optional[MediaGenerator] = None,
) -> QualityPipeline:
    """Wire a pipeline over the SQL stores and the configured providers."""
    cfg = cfg or settings
    if session_factory is None:
        from vidgate.db import async_session

        session_factory = async_session

    if scorer is None:
        from vidgate.services.llm import get_adapter

        scorer = VisionSceneScorer(
            get_adapter(cfg.scorer.vision_model, cfg.scorer),
            tmp_dir=cfg.storage.tmp_dir,
            max_retries=cfg.scorer.max_retries,
        )
    if generator is None:
        generator = HttpMediaGenerator(
            cfg.providers, timeout_seconds=cfg.regeneration.generation_timeout_seconds
        )

    scenes = SqlSceneRepository(session_factory)
    ledger = SqlAttemptLedger(session_factory)
    review_queue = SqlReviewQueue(session_factory)
    evaluator = SceneEvaluator(
        scorer, cfg.quality, timeout_seconds=cfg.regeneration.scorer_timeout_seconds
    )
    engine = StrategyEngine(
        ProviderRouter(cfg.providers),
        max_attempts=cfg.regeneration.max_generation_attempts,
        stock_provider=cfg.providers.stock_provider,
    )
    orchestrator = RegenerationOrchestrator(
        scenes,
        ledger,
        evaluator,
        generator,
        engine,
        review_queue,
        generation_timeout_seconds=cfg.regeneration.generation_timeout_seconds,
        transient_retry_attempts=cfg.regeneration.transient_retry_attempts,
    )
    return QualityPipeline(
        scenes,
        ledger,
        review_queue,
        evaluator,
        orchestrator,
        policy=cfg.quality,
        scene_concurrency=cfg.regeneration.scene_concurrency,
        project_attempt_budget=cfg.regeneration.project_attempt_budget,
        project_deadline_seconds=cfg.regeneration.project_deadline_seconds,
    )
