"""CLI commands for vidgate using Typer and Rich.

Commands:
- import-project: Load a project and its scenes from YAML or JSON
- evaluate / evaluate-project: Score scene artifacts
- approve / reject: Record reviewer decisions
- regenerate / regenerate-project: Run regeneration loops
- strategy: Preview the next regeneration strategy
- report / render: Quality gate report and render authorization
- review-queue: List escalated scenes
"""

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from vidgate import validate_dependencies
from vidgate.db import async_session, init_database
from vidgate.orchestrator.pipeline import NoArtifact, QualityPipeline, build_pipeline
from vidgate.orchestrator.regeneration import SceneBusy
from vidgate.orchestrator.state import InvalidStateTransition
from vidgate.schemas.quality import ProjectQualityReport, SceneVerdict
from vidgate.schemas.regeneration import RegenerationMode, RegenerationResult
from vidgate.services.quality_gate import PolicyViolation
from vidgate.services.scene_repository import ProjectNotFound, SceneNotFound, SqlSceneRepository

app = typer.Typer(name="vidgate", help="Quality gate and regeneration for AI-generated video scenes")
console = Console()

# Errors reported as a one-line message instead of a traceback
_USER_ERRORS = (
    SceneNotFound,
    ProjectNotFound,
    NoArtifact,
    SceneBusy,
    InvalidStateTransition,
    ValueError,
)


async def _pipeline() -> QualityPipeline:
    await init_database()
    return build_pipeline()


def _run(coro):
    """Run a command coroutine, turning domain errors into exit code 1."""
    try:
        return asyncio.run(coro)
    except PolicyViolation as e:
        console.print(f"[red]Error:[/red] {e}")
        for reason in e.blocking_reasons:
            console.print(f"  [red]-[/red] {reason}")
        raise typer.Exit(code=1)
    except _USER_ERRORS as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)


# ============================================================================
# Commands
# ============================================================================

@app.command("import-project")
def import_project(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Project file (.yaml or .json)"),
):
    """Create a project and its scenes from a YAML or JSON file.

    The file holds ``name``, optional ``policy_overrides`` and a ``scenes``
    list; each scene may carry an existing ``current_artifact_ref``.
    """
    text = path.read_text(encoding="utf-8")
    try:
        data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/red] Could not parse {path}: {e}")
        raise typer.Exit(code=1)

    if not isinstance(data, dict) or not isinstance(data.get("scenes"), list):
        console.print(f"[red]Error:[/red] {path} must define a 'scenes' list")
        raise typer.Exit(code=1)

    _run(_import_async(data, default_name=path.stem))


async def _import_async(data: dict, default_name: str):
    await init_database()
    repo = SqlSceneRepository(async_session)
    project_id = await repo.create_project(
        data.get("name") or default_name,
        data["scenes"],
        policy_overrides=data.get("policy_overrides"),
    )
    console.print(f"[green]Created project:[/green] {project_id}")

    table = Table(title="Scenes")
    table.add_column("#", justify="right")
    table.add_column("Scene ID", style="cyan")
    table.add_column("Type")
    table.add_column("Media")
    table.add_column("Artifact")
    for scene in await repo.list_scenes(project_id):
        table.add_row(
            str(scene.index),
            scene.id,
            scene.scene_type.value,
            scene.media_type.value,
            scene.current_artifact_ref or "[dim]none[/dim]",
        )
    console.print(table)


@app.command()
def evaluate(scene_id: str = typer.Argument(..., help="Scene UUID")):
    """Score a scene's current artifact."""
    validate_dependencies()
    _run(_evaluate_async(scene_id))


async def _evaluate_async(scene_id: str):
    pipeline = await _pipeline()
    with console.status("[bold green]Scoring artifact..."):
        verdict = await pipeline.evaluate_scene(scene_id)
    _print_verdict(verdict)


@app.command("evaluate-project")
def evaluate_project(project_id: str = typer.Argument(..., help="Project UUID")):
    """Score every scene of a project and print the quality report."""
    validate_dependencies()
    _run(_evaluate_project_async(project_id))


async def _evaluate_project_async(project_id: str):
    pipeline = await _pipeline()
    with console.status("[bold green]Scoring scenes..."):
        report = await pipeline.evaluate_project(project_id)
    _print_report(report)


@app.command()
def approve(scene_id: str = typer.Argument(..., help="Scene UUID")):
    """Approve a scene's current artifact."""
    _run(_review_async(scene_id, True, None))


@app.command()
def reject(
    scene_id: str = typer.Argument(..., help="Scene UUID"),
    reason: str = typer.Option(..., "--reason", "-r", help="Why the artifact is rejected"),
):
    """Reject a scene's current artifact."""
    _run(_review_async(scene_id, False, reason))


async def _review_async(scene_id: str, approved: bool, reason: Optional[str]):
    pipeline = await _pipeline()
    verdict = await pipeline.review_scene(scene_id, approved, reason)
    _print_verdict(verdict)


@app.command()
def regenerate(
    scene_id: str = typer.Argument(..., help="Scene UUID"),
    mode: RegenerationMode = typer.Option(RegenerationMode.AUTO, "--mode", "-m", help="Regeneration mode"),
):
    """Regenerate a scene until it passes or escalates to human review."""
    validate_dependencies()
    _run(_regenerate_async(scene_id, mode))


async def _regenerate_async(scene_id: str, mode: RegenerationMode):
    pipeline = await _pipeline()
    with console.status(f"[bold green]Regenerating scene ({mode.value})..."):
        result = await pipeline.regenerate_scene(scene_id, mode)
    _print_regeneration(result)


@app.command("regenerate-project")
def regenerate_project(project_id: str = typer.Argument(..., help="Project UUID")):
    """Regenerate every rejected scene of a project."""
    validate_dependencies()
    _run(_regenerate_project_async(project_id))


async def _regenerate_project_async(project_id: str):
    pipeline = await _pipeline()
    try:
        with console.status("[bold green]Regenerating failing scenes..."):
            outcome = await pipeline.regenerate_project(project_id)
    except KeyboardInterrupt:
        pipeline.cancel_project(project_id)
        console.print("[yellow]Regeneration interrupted.[/yellow]")
        raise typer.Exit(code=130)

    for result in outcome.results:
        _print_regeneration(result)
    if outcome.budget_exhausted:
        console.print("[yellow]Project regeneration budget exhausted[/yellow]")
    _print_report(outcome.report)


@app.command()
def strategy(
    scene_id: str = typer.Argument(..., help="Scene UUID"),
    mode: RegenerationMode = typer.Option(RegenerationMode.AUTO, "--mode", "-m", help="Regeneration mode"),
):
    """Show the strategy the next regeneration attempt would use."""
    _run(_strategy_async(scene_id, mode))


async def _strategy_async(scene_id: str, mode: RegenerationMode):
    pipeline = await _pipeline()
    preview = await pipeline.strategy_preview(scene_id, mode)
    s = preview.strategy
    lines = [
        f"[bold]Approach:[/bold] {s.approach.value}",
        f"[bold]Provider:[/bold] {s.target_provider or '-'}",
        f"[bold]Confidence:[/bold] {s.confidence_score:.2f}",
        f"[bold]Attempts so far:[/bold] {preview.attempts_so_far}",
        f"[bold]Reasoning:[/bold] {s.reasoning}",
    ]
    if s.warning:
        lines.append(f"[yellow]Warning:[/yellow] {s.warning}")
    console.print(Panel("\n".join(lines), title=preview.suggestion))


@app.command()
def report(project_id: str = typer.Argument(..., help="Project UUID")):
    """Show the project quality report."""
    _run(_report_async(project_id))


async def _report_async(project_id: str):
    pipeline = await _pipeline()
    _print_report(await pipeline.report(project_id))


@app.command()
def render(
    project_id: str = typer.Argument(..., help="Project UUID"),
    force: bool = typer.Option(False, "--force", help="Override blocking reasons if policy allows"),
):
    """Authorize rendering and list the artifacts to render."""
    _run(_render_async(project_id, force))


async def _render_async(project_id: str, force: bool):
    pipeline = await _pipeline()
    manifest = await pipeline.authorize_render(project_id, force_override=force)
    if manifest.overridden:
        console.print("[yellow]Force override bypassed:[/yellow]")
        for reason in manifest.bypassed_reasons:
            console.print(f"  [yellow]-[/yellow] {reason}")

    table = Table(title=f"Render manifest {project_id}")
    table.add_column("#", justify="right")
    table.add_column("Scene ID", style="cyan")
    table.add_column("Duration", justify="right")
    table.add_column("Artifact")
    for scene in manifest.scenes:
        table.add_row(str(scene.index), scene.scene_id, f"{scene.duration_seconds:.1f}s", scene.artifact_ref)
    console.print(table)
    console.print("[green]✓[/green] Render authorized")


@app.command("review-queue")
def review_queue(
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Only this project"),
    all_entries: bool = typer.Option(False, "--all", help="Include resolved entries"),
):
    """List scenes escalated to human review."""
    _run(_review_queue_async(project, all_entries))


async def _review_queue_async(project_id: Optional[str], include_resolved: bool):
    pipeline = await _pipeline()
    entries = await pipeline.review_queue_entries(project_id, include_resolved)
    if not entries:
        console.print("[dim]Review queue is empty[/dim]")
        return

    table = Table(title="Review queue")
    table.add_column("Entry ID", style="cyan")
    table.add_column("Scene ID")
    table.add_column("Reason")
    table.add_column("Attempts", justify="right")
    table.add_column("Best", justify="right")
    table.add_column("Stock query")
    table.add_column("Resolved")
    for entry in entries:
        table.add_row(
            entry.id,
            entry.scene_id,
            entry.reason,
            str(len(entry.attempt_history)),
            str(entry.best_score) if entry.best_score is not None else "-",
            entry.suggested_stock_query or "-",
            "yes" if entry.resolved else "no",
        )
    console.print(table)


# ============================================================================
# Output helpers
# ============================================================================

def _print_verdict(verdict: SceneVerdict) -> None:
    color = _get_status_color(verdict.status.value)
    flags = []
    if verdict.auto_approved:
        flags.append("auto-approved")
    if verdict.user_approved:
        flags.append("user-approved")
    if verdict.assessment is not None and verdict.assessment.degraded:
        flags.append("placeholder score")
    suffix = f" ({', '.join(flags)})" if flags else ""
    console.print(
        f"Scene {verdict.scene_id}: [{color}]{verdict.status.value}[/{color}] "
        f"score {verdict.overall_score}{suffix}"
    )
    for issue in verdict.issues:
        console.print(f"  [{_severity_color(issue.severity.value)}]{issue.severity.value}[/] "
                      f"{issue.category.value}: {issue.description}")


def _print_regeneration(result: RegenerationResult) -> None:
    table = Table(title=f"Scene {result.scene_id}: {result.status.value}")
    table.add_column("#", justify="right")
    table.add_column("Approach")
    table.add_column("Provider")
    table.add_column("Score", justify="right")
    table.add_column("Outcome")
    for a in result.attempts:
        table.add_row(
            str(a.attempt_number),
            a.approach.value,
            a.provider_used or "-",
            str(a.score) if a.score is not None else "-",
            a.outcome.value if a.error is None else f"{a.outcome.value}: {a.error}",
        )
    console.print(table)
    if result.review_entry_id:
        console.print(f"[yellow]Escalated to review queue:[/yellow] {result.review_entry_id}")


def _print_report(report: ProjectQualityReport) -> None:
    table = Table(title=f"Quality report {report.project_id}")
    table.add_column("Scene ID", style="cyan")
    table.add_column("Status")
    table.add_column("Score", justify="right")
    table.add_column("Critical", justify="right")
    table.add_column("Major", justify="right")
    for s in report.scenes:
        color = _get_status_color(s.status.value)
        table.add_row(
            s.scene_id,
            f"[{color}]{s.status.value}[/{color}]",
            str(s.overall_score),
            str(s.critical_issues),
            str(s.major_issues),
        )
    console.print(table)
    console.print(
        f"Overall score: [bold]{report.overall_score}[/bold]  "
        f"approved {report.approved_count}/{report.scene_count}, "
        f"needs review {report.needs_review_count}, rejected {report.rejected_count}, "
        f"pending {report.pending_count}"
    )
    if report.can_render:
        console.print("[green]✓[/green] Ready to render")
    else:
        console.print("[red]✗ Render blocked:[/red]")
        for reason in report.blocking_reasons:
            console.print(f"  [red]-[/red] {reason}")


def _get_status_color(status: str) -> str:
    """Get Rich color for a scene status.

    Color coding:
    - approved: green
    - rejected/escalated: red
    - needs_review/regenerating: yellow
    - pending: dim
    """
    if status == "approved":
        return "green"
    elif status in ("rejected", "escalated"):
        return "red"
    elif status in ("needs_review", "regenerating"):
        return "yellow"
    elif status == "pending":
        return "dim"
    else:
        return "white"


def _severity_color(severity: str) -> str:
    return {"critical": "red", "major": "yellow"}.get(severity, "dim")
