"""API route handlers and Pydantic request/response schemas."""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel

from vidgate import __version__
from vidgate.orchestrator.pipeline import (
    NoArtifact,
    QualityPipeline,
    RenderManifest,
    StrategyPreview,
    build_pipeline,
)
from vidgate.orchestrator.state import InvalidStateTransition
from vidgate.schemas.quality import ProjectQualityReport, SceneVerdict
from vidgate.schemas.regeneration import (
    RegenerationAttempt,
    RegenerationMode,
    ReviewQueueEntry,
)
from vidgate.services.quality_gate import PolicyViolation
from vidgate.services.review_queue import ReviewEntryNotFound
from vidgate.services.scene_repository import ProjectNotFound, SceneNotFound
from vidgate.workers.processing_tasks import (
    TASK_STATUS,
    is_running,
    project_task_id,
    regenerate_project_task,
    regenerate_scene_task,
    scene_task_id,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

_pipeline: Optional[QualityPipeline] = None


def get_pipeline() -> QualityPipeline:
    """Process-wide pipeline over the configured database and providers."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline()
    return _pipeline


# ============================================================================
# Pydantic Schemas
# ============================================================================

class ReviewRequest(BaseModel):
    """Request schema for POST /api/scenes/{id}/review."""
    approved: bool
    reason: Optional[str] = None


class RegenerateRequest(BaseModel):
    """Request schema for POST /api/scenes/{id}/regenerate."""
    mode: RegenerationMode = RegenerationMode.AUTO


class RenderRequest(BaseModel):
    """Request schema for POST /api/projects/{id}/render."""
    force_override: bool = False


class ResolveRequest(BaseModel):
    note: Optional[str] = None


class TaskAccepted(BaseModel):
    task_id: str
    status: str
    status_url: str


class CancelResponse(BaseModel):
    project_id: str
    cancelled: bool


class TaskStatusResponse(BaseModel):
    """Response schema for background task progress."""
    status: str  # processing, complete, error
    current_step: Optional[str] = None
    progress: dict = {}
    error: Optional[str] = None


# ============================================================================
# Error mapping
# ============================================================================

def _not_found(exc: Exception) -> HTTPException:
    return HTTPException(status_code=404, detail=str(exc))


def _policy_violation(exc: PolicyViolation) -> HTTPException:
    detail = {
        "error": str(exc),
        "blocking_reasons": exc.blocking_reasons,
        "unevaluated_scene_ids": exc.unevaluated_scene_ids,
    }
    return HTTPException(status_code=400 if exc.unevaluated else 403, detail=detail)


def _accepted(task_id: str) -> TaskAccepted:
    return TaskAccepted(task_id=task_id, status="started", status_url=f"/api/tasks/{task_id}")


# ============================================================================
# Scene Endpoints
# ============================================================================

@router.post("/scenes/{scene_id}/evaluate", response_model=SceneVerdict)
async def evaluate_scene(scene_id: str, pipeline: QualityPipeline = Depends(get_pipeline)):
    """Score the scene's current artifact and store its verdict."""
    try:
        return await pipeline.evaluate_scene(scene_id)
    except SceneNotFound as e:
        raise _not_found(e)
    except NoArtifact as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InvalidStateTransition as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/scenes/{scene_id}/review", response_model=SceneVerdict)
async def review_scene(
    scene_id: str, request: ReviewRequest, pipeline: QualityPipeline = Depends(get_pipeline)
):
    """Record a reviewer's approval or rejection of the current artifact."""
    try:
        return await pipeline.review_scene(scene_id, request.approved, request.reason)
    except SceneNotFound as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/scenes/{scene_id}/regenerate", status_code=202, response_model=TaskAccepted)
async def regenerate_scene(
    scene_id: str,
    background_tasks: BackgroundTasks,
    request: Optional[RegenerateRequest] = None,
    pipeline: QualityPipeline = Depends(get_pipeline),
):
    """Start a regeneration loop for one scene in background.

    Returns 409 if a loop for the scene is already running.
    """
    try:
        await pipeline.scenes.get(scene_id)
    except SceneNotFound as e:
        raise _not_found(e)

    task_id = scene_task_id(scene_id)
    if is_running(task_id) or pipeline.orchestrator.locks.is_locked(scene_id):
        raise HTTPException(status_code=409, detail=f"Scene {scene_id} is already being regenerated")

    mode = (request or RegenerateRequest()).mode
    TASK_STATUS[task_id] = {"status": "processing", "current_step": "queued", "progress": {}}
    background_tasks.add_task(regenerate_scene_task, pipeline, scene_id, mode)
    logger.info(f"Queued regeneration for scene {scene_id} ({mode.value})")
    return _accepted(task_id)


@router.get("/scenes/{scene_id}/attempts", response_model=list[RegenerationAttempt])
async def list_attempts(scene_id: str, pipeline: QualityPipeline = Depends(get_pipeline)):
    try:
        return await pipeline.attempts(scene_id)
    except SceneNotFound as e:
        raise _not_found(e)


@router.get("/scenes/{scene_id}/strategy", response_model=StrategyPreview)
async def preview_strategy(
    scene_id: str,
    mode: RegenerationMode = RegenerationMode.AUTO,
    pipeline: QualityPipeline = Depends(get_pipeline),
):
    """The strategy the engine would choose next, without running it."""
    try:
        return await pipeline.strategy_preview(scene_id, mode)
    except SceneNotFound as e:
        raise _not_found(e)


# ============================================================================
# Project Endpoints
# ============================================================================

@router.get("/projects/{project_id}/report", response_model=ProjectQualityReport)
async def project_report(project_id: str, pipeline: QualityPipeline = Depends(get_pipeline)):
    try:
        return await pipeline.report(project_id)
    except ProjectNotFound as e:
        raise _not_found(e)


@router.post("/projects/{project_id}/evaluate", response_model=ProjectQualityReport)
async def evaluate_project(project_id: str, pipeline: QualityPipeline = Depends(get_pipeline)):
    """Evaluate every scene with an artifact and return the fresh report."""
    try:
        return await pipeline.evaluate_project(project_id)
    except ProjectNotFound as e:
        raise _not_found(e)


@router.post("/projects/{project_id}/regenerate", status_code=202, response_model=TaskAccepted)
async def regenerate_project(
    project_id: str,
    background_tasks: BackgroundTasks,
    pipeline: QualityPipeline = Depends(get_pipeline),
):
    """Regenerate all rejected scenes of a project in background."""
    try:
        await pipeline.scenes.list_scenes(project_id)
    except ProjectNotFound as e:
        raise _not_found(e)

    task_id = project_task_id(project_id)
    if is_running(task_id):
        raise HTTPException(status_code=409, detail=f"Project {project_id} is already regenerating")

    TASK_STATUS[task_id] = {"status": "processing", "current_step": "queued", "progress": {}}
    background_tasks.add_task(regenerate_project_task, pipeline, project_id)
    return _accepted(task_id)


@router.post("/projects/{project_id}/cancel", response_model=CancelResponse)
async def cancel_project(project_id: str, pipeline: QualityPipeline = Depends(get_pipeline)):
    """Stop a running project regeneration after the current attempts."""
    return CancelResponse(project_id=project_id, cancelled=pipeline.cancel_project(project_id))


@router.post("/projects/{project_id}/render", response_model=RenderManifest)
async def render_project(
    project_id: str,
    request: Optional[RenderRequest] = None,
    pipeline: QualityPipeline = Depends(get_pipeline),
):
    """Authorize rendering and return the scene artifacts to render.

    Returns 403 with blocking reasons when the gate blocks, 400 when scenes
    have never been evaluated.
    """
    force = (request or RenderRequest()).force_override
    try:
        return await pipeline.authorize_render(project_id, force_override=force)
    except ProjectNotFound as e:
        raise _not_found(e)
    except PolicyViolation as e:
        raise _policy_violation(e)


# ============================================================================
# Review Queue Endpoints
# ============================================================================

@router.get("/review-queue", response_model=list[ReviewQueueEntry])
async def list_review_queue(
    project_id: Optional[str] = None,
    include_resolved: bool = False,
    pipeline: QualityPipeline = Depends(get_pipeline),
):
    try:
        return await pipeline.review_queue_entries(project_id, include_resolved)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Invalid project_id: {e}")


@router.post("/review-queue/{entry_id}/resolve", response_model=ReviewQueueEntry)
async def resolve_review_entry(
    entry_id: str,
    request: Optional[ResolveRequest] = None,
    pipeline: QualityPipeline = Depends(get_pipeline),
):
    try:
        return await pipeline.resolve_review(entry_id, (request or ResolveRequest()).note)
    except ReviewEntryNotFound as e:
        raise _not_found(e)


# ============================================================================
# Tasks & Health
# ============================================================================

@router.get("/tasks/{task_id}", response_model=TaskStatusResponse)
async def get_task_status(task_id: str):
    """Get progress for a background regeneration task."""
    if task_id not in TASK_STATUS:
        raise HTTPException(status_code=404, detail="Task not found")
    return TaskStatusResponse(**TASK_STATUS[task_id])


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": __version__,
    }
