"""
DOCBATCH CLI — The Interface

Planning:
  docbatch plan --repo <path>                 (scan, batch, create file tasks)
  docbatch plan --repo <path> --step modules  (one task per module)

Work loop (for the external generator):
  docbatch next  --repo <path> --step files   (dispatch the oldest pending task)
  docbatch check --repo <path> <task_id>...   (auto-complete from artifacts)
  docbatch retry --repo <path> <task_id>
  docbatch cancel --repo <path> <task_id>

Inspection:
  docbatch status  --repo <path>
  docbatch history --repo <path> <task_id>
  docbatch reset   --repo <path> --yes
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

import typer
from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.table import Table

from docbatch.analysis import analyze_project, group_modules
from docbatch.config_loader import DocBatchConfig, load_config
from docbatch.errors import DocBatchError
from docbatch.identity import BANNER, __codename__, __tagline__, __version__
from docbatch.orchestrator import TaskOrchestrator, open_orchestrator
from docbatch.planning.planner import PlanSummary
from docbatch.tasks.definitions import TaskDefinitionBuilder
from docbatch.tasks.steps import OutputLayout

# Load .env from current directory
load_dotenv()

app = typer.Typer(
    name="docbatch",
    help=f"{__codename__} — {__tagline__}",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

STATUS_COLORS = {
    "pending": "cyan",
    "in_progress": "yellow",
    "completed": "green",
    "validation_failed": "magenta",
    "retry_pending": "cyan",
    "failed": "red",
    "cancelled": "dim",
}


def version_callback(value: bool):
    if value:
        console.print(f"{__codename__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
):
    pass


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _print_banner():
    console.print(f"[bright_green]{BANNER}[/]")
    console.print(f"  [dim]v{__version__} — {__tagline__}[/]\n")


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    if verbose:
        logger.add(
            lambda msg: console.print(f"[dim]{msg}[/]", highlight=False),
            level="DEBUG",
            format="{time:HH:mm:ss} | {level:<7} | {message}",
        )
    else:
        logger.add(
            lambda msg: console.print(f"[dim]{msg}[/]", highlight=False),
            level="WARNING",
            format="{message}",
        )


def _open(repo: Path, verbose: bool = False) -> tuple[Path, DocBatchConfig, TaskOrchestrator]:
    _configure_logging(verbose)
    repo = repo.resolve()
    if not repo.is_dir():
        console.print(f"[red]Repository not found: {repo}[/]")
        raise typer.Exit(1)
    try:
        config = load_config(repo)
        return repo, config, open_orchestrator(repo, config)
    except DocBatchError as e:
        _fail(e)


def _fail(error: Exception):
    console.print(f"[red]✗ {error}[/]")
    raise typer.Exit(1)


def _status(value: str) -> str:
    return f"[{STATUS_COLORS.get(value, 'white')}]{value}[/]"


def _print_summary(summary: PlanSummary) -> None:
    table = Table(title="Plan Summary", border_style="cyan")
    table.add_column("Metric")
    table.add_column("Value")
    for category, count in summary.file_distribution.items():
        table.add_row(f"{category} files", str(count))
    for batch_type, count in summary.batch_distribution.items():
        table.add_row(batch_type, str(count))
    table.add_row("Total tokens", f"{summary.total_tokens:,}")
    table.add_row("Batched tokens", f"{summary.batched_tokens:,}")
    table.add_row("Avg files/batch", f"{summary.average_files_per_batch}")
    console.print(table)

    if summary.error_files or summary.rejected_files:
        issues = Table(title="Needs Manual Handling", border_style="red")
        issues.add_column("File")
        issues.add_column("Reason")
        for issue in summary.error_files + summary.rejected_files:
            issues.add_row(issue.path, issue.reason)
        console.print(issues)

    for rec in summary.recommendations:
        console.print(f"  [yellow]→[/] {rec}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def plan(
    repo: Path = typer.Option(..., "--repo", "-r", help="Path to the project"),
    step: str = typer.Option("files", "--step", "-s", help="Step to plan: files, modules, relations, architecture"),
    replace: bool = typer.Option(False, "--replace", help="Drop existing tasks for this step first"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan without creating tasks"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Scan the project and create tasks for a step."""
    _print_banner()
    repo, config, orchestrator = _open(repo, verbose)

    try:
        config.step(step)
        builder = TaskDefinitionBuilder(config)
        if step == "files":
            with console.status("[cyan]Analyzing project...[/]"):
                result = analyze_project(repo, config)
            _print_summary(result.planning.summary)
            definitions = result.definitions
        elif step == "modules":
            result = analyze_project(repo, config)
            definitions = builder.build_module_definitions(group_modules(result.records))
        else:
            definitions = [builder.build_step_definition(step)]

        if dry_run:
            console.print(f"\n[dim]Dry run: {len(definitions)} tasks not created.[/]")
            return

        if replace:
            orchestrator.clear_tasks(repo, step)
        elif orchestrator.list_tasks(repo, step):
            console.print(f"[yellow]Tasks for step '{step}' already exist. Use --replace to re-plan.[/]")
            raise typer.Exit(1)

        tasks = orchestrator.create_batch_tasks(definitions, repo, step)
    except DocBatchError as e:
        _fail(e)

    console.print(f"\n[bold green]✓ {len(tasks)} tasks created for step '{step}'[/]")


@app.command("next")
def next_task(
    repo: Path = typer.Option(..., "--repo", "-r", help="Path to the project"),
    step: str = typer.Option("files", "--step", "-s"),
    as_json: bool = typer.Option(False, "--json", help="Print the task definition as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Dispatch the oldest pending task of a step."""
    repo, config, orchestrator = _open(repo, verbose)
    try:
        task = orchestrator.get_next_task(repo, step)
        orchestrator.flush()
    except DocBatchError as e:
        _fail(e)

    if task is None:
        console.print(f"[dim]No pending tasks for step '{step}'.[/]")
        return

    if as_json:
        console.print_json(task.definition.model_dump_json())
        return

    layout = OutputLayout(config)
    console.print(f"[bold]{task.id}[/] ({task.definition.type.value}, ~{task.definition.estimated_tokens:,} tokens)")
    for path in task.definition.files:
        console.print(f"  [cyan]•[/] {path}")
    console.print("[bold]Write:[/]")
    for name in task.definition.expected_outputs:
        console.print(f"  → {layout.resolve(repo, step, name)}")


@app.command()
def check(
    task_ids: List[str] = typer.Argument(None, help="Task ids to check (default: all in progress)"),
    repo: Path = typer.Option(..., "--repo", "-r", help="Path to the project"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Check artifacts and auto-complete finished tasks."""
    repo, config, orchestrator = _open(repo, verbose)
    ids = task_ids or [
        t.id for t in orchestrator.list_tasks(repo)
        if t.status.value in ("in_progress", "validation_failed")
    ]
    if not ids:
        console.print("[dim]Nothing to check.[/]")
        return

    results = orchestrator.batch_check(ids, repo)
    table = Table(title="Completion Check", border_style="cyan")
    table.add_column("Task")
    table.add_column("Result")
    table.add_column("Detail")
    for r in results:
        if r.check is None:
            table.add_row(r.task_id, "[red]error[/]", r.error or "")
        else:
            missing = ", ".join(a.name for a in r.check.missing_files)
            table.add_row(r.task_id, _status(r.check.status.value), missing or r.check.message)
    console.print(table)


@app.command()
def retry(
    task_id: str = typer.Argument(..., help="Task to re-queue"),
    repo: Path = typer.Option(..., "--repo", "-r", help="Path to the project"),
    max_retries: Optional[int] = typer.Option(None, "--max-retries", help="Override the step's retry budget"),
):
    """Re-queue a task, or fail it once its retries are spent."""
    repo, config, orchestrator = _open(repo)
    try:
        outcome = orchestrator.retry_task(task_id, max_retries)
        orchestrator.flush()
    except DocBatchError as e:
        _fail(e)

    if outcome.retried:
        console.print(f"[green]✓ {task_id} re-queued ({outcome.retry_count}/{outcome.max_retries})[/]")
    else:
        console.print(f"[red]✗ {task_id} failed: retries exhausted ({outcome.retry_count}/{outcome.max_retries})[/]")


@app.command()
def cancel(
    task_id: str = typer.Argument(...),
    repo: Path = typer.Option(..., "--repo", "-r", help="Path to the project"),
    reason: Optional[str] = typer.Option(None, "--reason"),
):
    """Cancel a task. Cancelled tasks are terminal."""
    repo, config, orchestrator = _open(repo)
    try:
        orchestrator.cancel_task(task_id, reason)
        orchestrator.flush()
    except DocBatchError as e:
        _fail(e)
    console.print(f"[dim]{task_id} cancelled.[/]")


@app.command()
def status(
    repo: Path = typer.Option(..., "--repo", "-r", help="Path to the project"),
    step: Optional[str] = typer.Option(None, "--step", "-s"),
    show_tasks: bool = typer.Option(False, "--tasks", "-t", help="List every task"),
):
    """Show task statistics."""
    repo, config, orchestrator = _open(repo)
    stats = orchestrator.statistics()

    table = Table(title=f"Tasks — {repo.name}", border_style="cyan")
    table.add_column("Step")
    for s in STATUS_COLORS:
        table.add_column(s)
    table.add_column("total")
    for step_type, counts in sorted(stats["by_step"].items()):
        if step and step_type != step:
            continue
        table.add_row(step_type, *(str(counts.get(s, 0)) for s in STATUS_COLORS), str(counts["total"]))
    console.print(table)

    if show_tasks:
        tasks_table = Table(border_style="dim")
        tasks_table.add_column("Task")
        tasks_table.add_column("Step")
        tasks_table.add_column("Status")
        tasks_table.add_column("Retries")
        tasks_table.add_column("Files")
        for task in orchestrator.list_tasks(repo, step):
            tasks_table.add_row(
                task.id, task.step_type, _status(task.status.value),
                f"{task.retry_count}/{task.max_retries}", str(len(task.definition.files)),
            )
        console.print(tasks_table)


@app.command()
def history(
    task_id: str = typer.Argument(...),
    repo: Path = typer.Option(..., "--repo", "-r", help="Path to the project"),
):
    """Show the state transitions recorded for a task."""
    repo, config, orchestrator = _open(repo)
    state = orchestrator.states.get_state(task_id)
    if state is None:
        console.print(f"[red]No state recorded for {task_id}[/]")
        raise typer.Exit(1)

    table = Table(title=f"History — {task_id}", border_style="cyan")
    table.add_column("Time", style="dim")
    table.add_column("Status")
    table.add_column("Metadata", style="dim")
    for entry in state.history + [state]:
        table.add_row(entry.timestamp[:19], _status(entry.status.value), json.dumps(entry.metadata)[:80])
    console.print(table)


@app.command()
def reset(
    repo: Path = typer.Option(..., "--repo", "-r", help="Path to the project"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Back up and clear every task and state for a project."""
    repo, config, orchestrator = _open(repo)
    if not yes and not typer.confirm("Clear all tasks and states?"):
        raise typer.Exit(1)
    try:
        backup = orchestrator.states.reset()
        removed = orchestrator.clear_tasks(repo)
    except DocBatchError as e:
        _fail(e)
    console.print(f"[green]✓ Cleared {removed} tasks[/] [dim](backup: {backup or 'none'})[/]")


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app()
