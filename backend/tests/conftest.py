"""Shared fixtures: scripted scorer and generator fakes over in-memory stores."""

from typing import Optional, Union

import pytest
from tenacity import wait_none

from vidgate.config import ProvidersConfig
from vidgate.orchestrator.pipeline import QualityPipeline
from vidgate.orchestrator.regeneration import RegenerationOrchestrator
from vidgate.schemas.llm_vision import ScorerIssue, ScorerResponse
from vidgate.schemas.quality import QualityPolicy
from vidgate.schemas.regeneration import GenerationOutput, GenerationRequest
from vidgate.schemas.scene import ExpectedDescription, Scene
from vidgate.services.attempt_ledger import InMemoryAttemptLedger
from vidgate.services.media_generator import MediaGenerator
from vidgate.services.provider_router import ProviderRouter
from vidgate.services.review_queue import InMemoryReviewQueue
from vidgate.services.scene_evaluator import SceneEvaluator
from vidgate.services.scene_repository import InMemorySceneRepository
from vidgate.services.scene_scorer import SceneScorer
from vidgate.services.strategy_engine import StrategyEngine


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def scorer_response(
    score: float,
    issues: tuple[tuple[str, str], ...] = (),
    matched: tuple[str, ...] = (),
    framing: Optional[str] = None,
    suggestion: Optional[str] = None,
) -> ScorerResponse:
    """Response scoring every dimension at ``score``."""
    return ScorerResponse(
        dimension_scores={
            "content_match": score,
            "framing": score,
            "technical_quality": score,
            "brand_compliance": score,
            "coherence": score,
        },
        issues=[ScorerIssue(category=c, severity=s, description=f"{c} problem") for c, s in issues],
        matched_elements=list(matched),
        detected_framing=framing,
        improved_prompt_suggestion=suggestion,
    )


def make_scene(
    scene_id: str = "scene-1",
    project_id: str = "project-1",
    index: int = 0,
    prompt: str = "A woman smiles at the camera in a bright kitchen",
    artifact: Optional[str] = "original.mp4",
    provider: Optional[str] = "kling-2.5-turbo",
    **expected,
) -> Scene:
    return Scene(
        id=scene_id,
        project_id=project_id,
        index=index,
        expected_description=ExpectedDescription(visual_direction=prompt, **expected),
        current_artifact_ref=artifact,
        current_provider=provider,
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

Scripted = Union[ScorerResponse, Exception]


class FakeScorer(SceneScorer):
    """Returns a scripted response per artifact ref, else ``default``."""

    def __init__(self, default: Optional[Scripted] = None, by_artifact: Optional[dict[str, Scripted]] = None):
        self.default = default if default is not None else scorer_response(90)
        self.by_artifact = dict(by_artifact or {})
        self.calls: list[str] = []

    async def score(self, artifact_ref: str, expected: ExpectedDescription) -> ScorerResponse:
        self.calls.append(artifact_ref)
        result = self.by_artifact.get(artifact_ref, self.default)
        if isinstance(result, Exception):
            raise result
        return result


class FakeGenerator(MediaGenerator):
    """Produces ``gen-<n>.mp4`` artifacts, or raises scripted errors in order."""

    def __init__(self, errors: Optional[list[Optional[Exception]]] = None):
        self.errors = list(errors or [])
        self.requests: list[GenerationRequest] = []

    async def generate(self, request: GenerationRequest) -> GenerationOutput:
        self.requests.append(request)
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error
        return GenerationOutput(
            artifact_ref=f"gen-{len(self.requests)}.mp4", provider=request.provider
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def policy() -> QualityPolicy:
    return QualityPolicy()


@pytest.fixture
def providers() -> ProvidersConfig:
    return ProvidersConfig()


@pytest.fixture
def engine(providers) -> StrategyEngine:
    return StrategyEngine(ProviderRouter(providers))


@pytest.fixture
def scorer() -> FakeScorer:
    return FakeScorer()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def scenes() -> InMemorySceneRepository:
    repo = InMemorySceneRepository()
    repo.add_project("project-1")
    return repo


@pytest.fixture
def ledger() -> InMemoryAttemptLedger:
    return InMemoryAttemptLedger()


@pytest.fixture
def review_queue() -> InMemoryReviewQueue:
    return InMemoryReviewQueue()


@pytest.fixture
def evaluator(scorer, policy) -> SceneEvaluator:
    return SceneEvaluator(scorer, policy, timeout_seconds=5, retry_wait_seconds=0)


@pytest.fixture
def orchestrator(scenes, ledger, evaluator, generator, engine, review_queue) -> RegenerationOrchestrator:
    return RegenerationOrchestrator(
        scenes,
        ledger,
        evaluator,
        generator,
        engine,
        review_queue,
        generation_timeout_seconds=5,
        transient_retry_attempts=3,
        retry_wait=wait_none(),
    )


@pytest.fixture
def pipeline(scenes, ledger, review_queue, evaluator, orchestrator, policy) -> QualityPipeline:
    return QualityPipeline(
        scenes,
        ledger,
        review_queue,
        evaluator,
        orchestrator,
        policy=policy,
        scene_concurrency=2,
    )
