"""Per-scene regeneration loop.

One loop per scene, strictly sequential with itself:

    history -> strategy -> generate -> evaluate -> append attempt -> repeat

The loop stops on a passing artifact, on escalation, after a single
attempt in a manual mode, or when the cancel event is set (checked between
attempts only). Generator errors and timeouts become failed attempts with
no assessment; they move the ladder exactly like a low-quality result.

The scene's current artifact changes only on a passing attempt, so a
failed run never regresses a scene.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Collection, Optional

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from vidgate.orchestrator.state import (
    InvalidStateTransition,
    can_regenerate,
    status_after_regeneration,
)
from vidgate.schemas.quality import Assessment, QualityPolicy, SceneVerdict
from vidgate.schemas.regeneration import (
    AlternateProviderParams,
    AttemptOutcome,
    EscalateParams,
    GenerationOutput,
    GenerationRequest,
    ReferenceBasedParams,
    RegenerationApproach,
    RegenerationAttempt,
    RegenerationMode,
    RegenerationResult,
    RegenerationStatus,
    RegenerationStrategy,
    RetryParams,
    SimplifyPromptParams,
    StockFootageParams,
)
from vidgate.schemas.scene import Scene
from vidgate.services.attempt_ledger import AttemptLedger
from vidgate.services.media_generator import GenerationProviderError, MediaGenerator, is_retriable
from vidgate.services.review_queue import ESCALATION_REASON, ReviewQueue, build_entry
from vidgate.services.scene_evaluator import SceneEvaluator, passes
from vidgate.services.scene_repository import SceneRepository
from vidgate.services.strategy_engine import StrategyContext, StrategyEngine

logger = logging.getLogger(__name__)

BUDGET_ESCALATION_REASON = "regeneration_budget_exhausted"


class BudgetExhausted(Exception):
    """Raised when the project-level regeneration budget is used up."""


class SceneBusy(Exception):
    """Raised when a regeneration loop already owns the scene."""


class RegenerationBudget:
    """Project-wide cap on generation attempts and wall-clock time.

    Shared by every scene loop of one project run. Once exhausted, each
    remaining loop escalates at its next decision point.
    """

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        deadline_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_attempts = max_attempts
        self._clock = clock
        self._deadline = clock() + deadline_seconds if deadline_seconds is not None else None
        self.used = 0

    @property
    def exhausted(self) -> bool:
        if self.max_attempts is not None and self.used >= self.max_attempts:
            return True
        return self._deadline is not None and self._clock() >= self._deadline

    def consume(self) -> None:
        """Reserve one attempt.

        Raises:
            BudgetExhausted: If no attempts or time remain.
        """
        if self.exhausted:
            raise BudgetExhausted(
                f"Regeneration budget exhausted after {self.used} attempts"
            )
        self.used += 1


class SceneLocks:
    """One asyncio.Lock per scene id."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def for_scene(self, scene_id: str) -> asyncio.Lock:
        lock = self._locks.get(scene_id)
        if lock is None:
            lock = self._locks[scene_id] = asyncio.Lock()
        return lock

    def is_locked(self, scene_id: str) -> bool:
        lock = self._locks.get(scene_id)
        return lock is not None and lock.locked()


def strategy_context(
    scene: Scene,
    history: list[RegenerationAttempt],
    assessment: Optional[Assessment],
    mode: RegenerationMode = RegenerationMode.AUTO,
    *,
    budget_exhausted: bool = False,
) -> StrategyContext:
    """Collect the scene facts the strategy engine decides on."""
    expected = scene.expected_description
    return StrategyContext(
        scene_id=scene.id,
        media_type=scene.media_type,
        prompt=expected.visual_direction,
        content_tags=expected.content_tags,
        framing=expected.framing,
        history=history,
        latest_assessment=assessment,
        current_provider=scene.current_provider,
        current_artifact_ref=scene.current_artifact_ref,
        budget_exhausted=budget_exhausted,
        mode=mode,
    )


def build_request(scene: Scene, strategy: RegenerationStrategy) -> GenerationRequest:
    """Translate a strategy's typed parameters into a generator request."""
    params = strategy.params
    negative = ""
    reference = None
    motion = None

    if isinstance(params, (RetryParams, AlternateProviderParams)):
        prompt = params.prompt
        negative = params.negative_prompt
    elif isinstance(params, ReferenceBasedParams):
        prompt = params.prompt
        reference = params.reference_artifact_ref
        motion = params.motion_intensity
    elif isinstance(params, SimplifyPromptParams):
        prompt = params.prompt
    elif isinstance(params, StockFootageParams):
        prompt = params.search_query
    else:
        raise ValueError(f"Strategy {strategy.approach.value} does not generate media")

    return GenerationRequest(
        scene_id=scene.id,
        provider=strategy.target_provider or "",
        media_type=scene.media_type,
        approach=strategy.approach,
        prompt=prompt,
        negative_prompt=negative,
        reference_artifact_ref=reference,
        motion_intensity=motion,
        duration_seconds=scene.duration_seconds,
        aspect_ratio=scene.aspect_ratio,
    )


class RegenerationOrchestrator:
    """Runs the regeneration loop for one scene at a time per scene id."""

    def __init__(
        self,
        scenes: SceneRepository,
        ledger: AttemptLedger,
        evaluator: SceneEvaluator,
        generator: MediaGenerator,
        engine: StrategyEngine,
        review_queue: ReviewQueue,
        *,
        generation_timeout_seconds: float = 600.0,
        transient_retry_attempts: int = 3,
        retry_wait=None,
        locks: Optional[SceneLocks] = None,
    ) -> None:
        self.scenes = scenes
        self.ledger = ledger
        self.evaluator = evaluator
        self.generator = generator
        self.engine = engine
        self.review_queue = review_queue
        self.generation_timeout_seconds = generation_timeout_seconds
        self.transient_retry_attempts = transient_retry_attempts
        self.retry_wait = retry_wait or (
            wait_exponential(multiplier=2, min=4, max=120) + wait_random(0, 5)
        )
        self.locks = locks or SceneLocks()

    async def regenerate(
        self,
        scene_id: str,
        mode: RegenerationMode = RegenerationMode.AUTO,
        *,
        policy: Optional[QualityPolicy] = None,
        budget: Optional[RegenerationBudget] = None,
        cancel_event: Optional[asyncio.Event] = None,
        fail_if_busy: bool = False,
        only_states: Optional[Collection[str]] = None,
    ) -> RegenerationResult:
        """Regenerate a scene until it passes or escalates.

        Args:
            scene_id: Scene to regenerate.
            mode: AUTO follows the attempt ladder; any other mode authorizes
                a single attempt with the requested approach.
            policy: Project policy; defaults to the evaluator's policy.
            budget: Shared project budget, if any.
            cancel_event: Checked between attempts.
            fail_if_busy: Raise SceneBusy instead of waiting for a running loop.
            only_states: Skip the scene unless its status, read once the lock
                is held, is one of these.

        Returns:
            RegenerationResult describing the attempts made in this call.

        Raises:
            SceneNotFound: If the scene does not exist.
            SceneBusy: If ``fail_if_busy`` and a loop already owns the scene.
        """
        lock = self.locks.for_scene(scene_id)
        if fail_if_busy and lock.locked():
            raise SceneBusy(f"Scene {scene_id} is already being regenerated")
        async with lock:
            return await self._run(
                scene_id, mode, policy or self.evaluator.policy, budget, cancel_event, only_states
            )

    async def _run(
        self,
        scene_id: str,
        mode: RegenerationMode,
        policy: QualityPolicy,
        budget: Optional[RegenerationBudget],
        cancel_event: Optional[asyncio.Event],
        only_states: Optional[Collection[str]] = None,
    ) -> RegenerationResult:
        scene = await self.scenes.get(scene_id)
        verdict = await self.scenes.get_verdict(scene_id)

        if only_states is not None and scene.status not in only_states:
            logger.info(f"Scene {scene.index} is {scene.status} now, skipping regeneration")
            return RegenerationResult(
                scene_id=scene_id, status=RegenerationStatus.SKIPPED, final_verdict=verdict
            )

        if scene.status == "regenerating":
            logger.warning(f"Scene {scene.index} was left regenerating by an earlier run")
        elif not can_regenerate(scene.status):
            raise InvalidStateTransition(f"Scene cannot be regenerated from {scene.status}")
        await self.scenes.set_status(scene_id, "regenerating")

        assessment = verdict.assessment
        best_score = verdict.overall_score if assessment and not assessment.degraded else 0
        recorded: list[RegenerationAttempt] = []
        final_verdict: SceneVerdict = verdict
        strategy: Optional[RegenerationStrategy] = None
        status = RegenerationStatus.INCOMPLETE
        review_entry_id: Optional[str] = None
        budget_hit = False

        try:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info(f"Scene {scene.index} regeneration cancelled")
                    status = RegenerationStatus.CANCELLED
                    break

                history = await self.ledger.history(scene_id)
                budget_hit = budget is not None and budget.exhausted
                strategy = self.engine.select(
                    strategy_context(scene, history, assessment, mode, budget_exhausted=budget_hit)
                )
                logger.info(
                    f"Scene {scene.index} attempt {len(history) + 1}: {strategy.approach.value} "
                    f"via {strategy.target_provider} (confidence {strategy.confidence_score})"
                )

                if strategy.approach == RegenerationApproach.ESCALATE:
                    review_entry_id = await self._escalate(scene, history, assessment, strategy, budget_hit)
                    status = RegenerationStatus.ESCALATED
                    break

                if budget is not None:
                    try:
                        budget.consume()
                    except BudgetExhausted:
                        continue

                attempt, new_verdict = await self._attempt(
                    scene, strategy, len(history) + 1, best_score, policy
                )
                await self.ledger.append(attempt)
                recorded.append(attempt)
                if attempt.result_assessment is not None:
                    assessment = attempt.result_assessment

                if attempt.outcome == AttemptOutcome.SUCCESS and new_verdict is not None:
                    await self.scenes.replace_artifact(
                        scene_id, attempt.artifact_ref, attempt.provider_used, new_verdict
                    )
                    final_verdict = new_verdict
                    status = RegenerationStatus.SUCCESS
                    break

                if attempt.score is not None and not attempt.result_assessment.degraded:
                    best_score = max(best_score, attempt.score)

                if mode != RegenerationMode.AUTO:
                    break
        finally:
            await self.scenes.set_status(
                scene_id,
                status_after_regeneration(
                    final_verdict.status, escalated=status == RegenerationStatus.ESCALATED
                ),
            )

        logger.info(
            f"Scene {scene.index} regeneration finished: {status.value} "
            f"after {len(recorded)} attempt(s)"
        )
        return RegenerationResult(
            scene_id=scene_id,
            status=status,
            attempts=recorded,
            final_verdict=final_verdict,
            final_strategy=strategy,
            review_entry_id=review_entry_id,
            budget_exhausted=budget_hit,
        )

    async def _escalate(self, scene, history, assessment, strategy, budget_hit: bool) -> str:
        params = strategy.params
        query = params.stock_search_query if isinstance(params, EscalateParams) else ""
        entry = build_entry(
            scene.project_id,
            scene.id,
            history,
            assessment,
            reason=BUDGET_ESCALATION_REASON if budget_hit else ESCALATION_REASON,
            suggested_stock_query=query,
        )
        entry = await self.review_queue.enqueue(entry)
        logger.warning(f"Scene {scene.index} escalated to human review: {strategy.reasoning}")
        return entry.id

    async def _generate(self, request: GenerationRequest) -> GenerationOutput:
        """Call the generator, retrying transient provider errors with backoff."""
        output: Optional[GenerationOutput] = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.transient_retry_attempts),
            wait=self.retry_wait,
            retry=retry_if_exception(is_retriable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                output = await self.generator.generate(request)
        return output

    async def _attempt(
        self,
        scene: Scene,
        strategy: RegenerationStrategy,
        attempt_number: int,
        best_score: int,
        policy: QualityPolicy,
    ) -> tuple[RegenerationAttempt, Optional[SceneVerdict]]:
        request = build_request(scene, strategy)
        error: Optional[str] = None
        output: Optional[GenerationOutput] = None

        try:
            output = await asyncio.wait_for(
                self._generate(request), timeout=self.generation_timeout_seconds
            )
        except asyncio.TimeoutError:
            error = f"{request.provider} timed out after {self.generation_timeout_seconds}s"
        except GenerationProviderError as e:
            error = str(e)
        except Exception as e:
            logger.exception(f"Scene {scene.index} generator raised unexpectedly")
            error = f"Unexpected generator error: {e}"

        timestamp = datetime.now(timezone.utc)
        if output is None:
            logger.warning(f"Scene {scene.index} attempt {attempt_number} failed: {error}")
            return (
                RegenerationAttempt(
                    scene_id=scene.id,
                    attempt_number=attempt_number,
                    timestamp=timestamp,
                    approach=strategy.approach,
                    provider_used=request.provider,
                    prompt_or_input_used=request.prompt,
                    result_assessment=None,
                    artifact_ref=None,
                    outcome=AttemptOutcome.FAILED,
                    error=error,
                ),
                None,
            )

        verdict = await self.evaluator.evaluate(output.artifact_ref, scene, policy=policy)
        degraded = verdict.assessment is not None and verdict.assessment.degraded
        if passes(verdict, policy):
            outcome = AttemptOutcome.SUCCESS
        elif verdict.overall_score > best_score and not degraded:
            outcome = AttemptOutcome.IMPROVED
        else:
            outcome = AttemptOutcome.FAILED

        return (
            RegenerationAttempt(
                scene_id=scene.id,
                attempt_number=attempt_number,
                timestamp=timestamp,
                approach=strategy.approach,
                provider_used=output.provider,
                prompt_or_input_used=request.prompt,
                result_assessment=verdict.assessment,
                artifact_ref=output.artifact_ref,
                outcome=outcome,
            ),
            verdict,
        )
