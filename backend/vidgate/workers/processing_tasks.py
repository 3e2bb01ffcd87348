"""Background regeneration tasks with in-memory progress tracking.

Regeneration loops can run for many minutes, so the API starts them as
background tasks and clients poll ``TASK_STATUS`` through ``/api/tasks``.
"""

import logging

from vidgate.orchestrator.pipeline import QualityPipeline
from vidgate.schemas.regeneration import RegenerationMode

logger = logging.getLogger(__name__)

# Module-level dict for in-memory progress tracking
TASK_STATUS: dict[str, dict] = {}


def scene_task_id(scene_id: str) -> str:
    return f"regenerate_{scene_id}"


def project_task_id(project_id: str) -> str:
    return f"regenerate_project_{project_id}"


def is_running(task_id: str) -> bool:
    return TASK_STATUS.get(task_id, {}).get("status") == "processing"


async def regenerate_scene_task(
    pipeline: QualityPipeline, scene_id: str, mode: RegenerationMode
) -> None:
    """Run one scene's regeneration loop in background.

    Args:
        pipeline: Pipeline the request was accepted by
        scene_id: Scene UUID as string
        mode: Regeneration mode
    """
    task_id = scene_task_id(scene_id)
    TASK_STATUS[task_id] = {
        "status": "processing",
        "current_step": "regenerating",
        "progress": {"scene_id": scene_id, "mode": mode.value},
    }

    try:
        result = await pipeline.regenerate_scene(scene_id, mode)
        TASK_STATUS[task_id] = {
            "status": "complete",
            "current_step": result.status.value,
            "progress": {
                "scene_id": scene_id,
                "attempts": len(result.attempts),
                "final_status": result.final_verdict.status.value
                if result.final_verdict
                else None,
                "review_entry_id": result.review_entry_id,
            },
        }
    except Exception as e:
        logger.error(f"Regeneration failed for scene {scene_id}: {e}", exc_info=True)
        TASK_STATUS[task_id] = {
            "status": "error",
            "error": str(e),
            "current_step": TASK_STATUS.get(task_id, {}).get("current_step", "unknown"),
        }


async def regenerate_project_task(pipeline: QualityPipeline, project_id: str) -> None:
    """Regenerate every failing scene of a project in background."""
    task_id = project_task_id(project_id)
    TASK_STATUS[task_id] = {
        "status": "processing",
        "current_step": "regenerating",
        "progress": {"project_id": project_id},
    }

    try:
        outcome = await pipeline.regenerate_project(project_id)
        TASK_STATUS[task_id] = {
            "status": "complete",
            "current_step": "cancelled" if outcome.cancelled else "complete",
            "progress": {
                "project_id": project_id,
                "scenes": {r.scene_id: r.status.value for r in outcome.results},
                "overall_score": outcome.report.overall_score,
                "can_render": outcome.report.can_render,
                "budget_exhausted": outcome.budget_exhausted,
            },
        }
    except Exception as e:
        logger.error(f"Project regeneration failed for {project_id}: {e}", exc_info=True)
        TASK_STATUS[task_id] = {
            "status": "error",
            "error": str(e),
            "current_step": TASK_STATUS.get(task_id, {}).get("current_step", "unknown"),
        }
