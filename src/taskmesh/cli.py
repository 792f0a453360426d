"""Command line interface for taskmesh."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .agents.orchestrator import Orchestrator
from .config import ConfigError, ProjectConfig
from .execution.monitor import ExecutionEvent
from .log import configure_logging
from .tasks.base import Priority, Subtask, Task
from .tasks.decomposer import Decomposition

app = typer.Typer(help="Decompose tasks and run them across a team of agents")
console = Console()

_STATUS_STYLE = {
    "running": "[cyan]working...",
    "completed": "[green]completed",
    "failed": "[red]failed",
}


def _load(config_path: Path) -> ProjectConfig:
    try:
        return ProjectConfig.from_file(config_path)
    except (ConfigError, OSError) as exc:
        console.print(f"[bold red]Invalid configuration:[/] {exc}")
        raise typer.Exit(code=2) from exc


def _orchestrator(config: ProjectConfig) -> Orchestrator:
    try:
        return Orchestrator.from_config(config)
    except (ConfigError, ImportError, TypeError, ValueError) as exc:
        console.print(f"[bold red]Invalid configuration:[/] {escape(str(exc))}")
        raise typer.Exit(code=2) from exc


def _manager_id(config: ProjectConfig) -> str:
    try:
        return config.manager_id()
    except ConfigError as exc:
        console.print(f"[bold red]Invalid configuration:[/] {exc}")
        raise typer.Exit(code=2) from exc


def _preview(value: Any, limit: int = 200) -> str:
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return text if len(text) <= limit else text[: limit - 3] + "..."


def _render_plan(decomposition: Decomposition) -> None:
    titles = {subtask.id: subtask.title for subtask in decomposition.subtasks}
    plan = Table(title="Execution Plan", show_lines=True)
    plan.add_column("#")
    plan.add_column("Subtask")
    plan.add_column("Capabilities")
    plan.add_column("Depends on")
    plan.add_column("Complexity")
    for index, subtask in enumerate(decomposition.subtasks, start=1):
        plan.add_row(
            str(index),
            subtask.title,
            ", ".join(subtask.required_capabilities),
            ", ".join(titles.get(dep, dep) for dep in subtask.dependencies),
            str(subtask.complexity),
        )
    console.print(plan)
    estimate = decomposition.estimate
    console.print(
        f"Estimated {estimate.estimated_minutes:g} min, total complexity {estimate.total_complexity}, "
        f"{estimate.parallelizable_tasks} parallelizable / {estimate.sequential_tasks} sequential"
    )


def _print_run_metrics(task: Task) -> None:
    run_metrics = task.metadata.get("metrics")
    if run_metrics is None:
        return
    console.print(f"Retries: {run_metrics.retry_count}, success rate {run_metrics.success_rate:.0f}%")


@app.command()
def inspect(config_path: Path = typer.Argument(..., help="Config to inspect")) -> None:
    """Print the agents and tools defined by a configuration file."""

    config = _load(config_path)
    manager_id = _manager_id(config)
    console.print(f"[bold]Project:[/] {config.name}\n{config.description or ''}")
    console.print(f"[bold]Manager:[/] {manager_id}")
    agents = Table(title="Agents", show_lines=True)
    agents.add_column("ID")
    agents.add_column("Role")
    agents.add_column("Tools")
    agents.add_column("Description")
    for spec in config.agents.values():
        agents.add_row(spec.id, spec.role, ", ".join(spec.tools), spec.description or "")
    console.print(agents)
    if config.tool_specs:
        console.print("[bold]Tools[/]")
        for spec in config.tool_specs.values():
            console.print(f"- {spec.name}: {spec.description}")
    if config.workflows:
        console.print("[bold]Workflows[/]")
        for workflow in config.workflows.values():
            console.print(f"- {workflow.id} ({workflow.type.value}, {len(workflow.steps)} steps)")


@app.command()
def plan(
    config_path: Path = typer.Argument(..., help="Path to YAML configuration"),
    title: str = typer.Option(..., help="Task title"),
    description: str = typer.Option(..., help="Task description"),
    priority: Priority = typer.Option(Priority.MEDIUM, help="Task priority"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
) -> None:
    """Decompose a task with the manager agent without executing it."""

    configure_logging(verbose)
    orchestrator = _orchestrator(_load(config_path))
    task = Task.create(title, description, priority)
    try:
        decomposition = asyncio.run(orchestrator.plan(task))
    except Exception as exc:
        console.print(f"[bold red]Decomposition failed:[/] {exc}")
        raise typer.Exit(code=1) from exc
    _render_plan(decomposition)


@app.command()
def run(
    config_path: Path = typer.Argument(..., help="Path to YAML configuration"),
    title: str = typer.Option(..., help="Task title"),
    description: str = typer.Option(..., help="Task description"),
    priority: Priority = typer.Option(Priority.MEDIUM, help="Task priority"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
) -> None:
    """Decompose a task and execute its subtasks across the configured agents."""

    configure_logging(verbose)
    config = _load(config_path)
    orchestrator = _orchestrator(config)
    task = Task.create(title, description, priority)
    console.print(f"[bold green]Running project[/] {config.name}: {task.title}")

    progress = Progress(
        SpinnerColumn(style="cyan"),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.fields[status]}"),
        transient=False,
    )
    rows: Dict[str, Any] = {}

    def on_event(event: ExecutionEvent) -> None:
        if event.subtask_id not in rows:
            rows[event.subtask_id] = progress.add_task(event.message or event.subtask_id, total=1.0, status="")
        progress.update(
            rows[event.subtask_id],
            completed=event.progress,
            status=_STATUS_STYLE.get(event.status, event.status),
        )

    unsubscribe = orchestrator.monitor.subscribe(on_event)
    try:
        with progress:
            result = asyncio.run(orchestrator.process_task(task))
    finally:
        unsubscribe()

    table = Table(title="Subtask outputs", show_lines=True)
    table.add_column("Subtask")
    table.add_column("Agent")
    table.add_column("Status")
    table.add_column("Output")
    for subtask_id in task.metadata.get("subtask_ids", []):
        subtask: Subtask = orchestrator.store.get("subtasks", subtask_id)
        outcome = subtask.result
        if outcome is None:
            text = ""
        elif outcome.success:
            text = escape(_preview(outcome.output))
        else:
            text = f"[red]{outcome.error.code}[/]: {escape(outcome.error.message)}"
        table.add_row(subtask.title, subtask.assigned_agent_id or "-", subtask.status.value, text)
    console.print(table)

    metrics = result.metrics
    if result.success:
        console.print(
            f"[bold green]Task completed[/] in {metrics.duration:.0f} ms "
            f"(cpu {metrics.resource_usage.cpu:.2f}, memory {metrics.resource_usage.memory:.0f} MB)"
        )
        _print_run_metrics(task)
        return
    console.print(f"[bold red]Task failed[/] {result.error.code}: {escape(result.error.message)}")
    _print_run_metrics(task)
    raise typer.Exit(code=1)


@app.command()
def workflow(
    config_path: Path = typer.Argument(..., help="Path to YAML configuration"),
    workflow_id: str = typer.Argument(..., help="Workflow defined under 'workflows:'"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
) -> None:
    """Run a hand-authored workflow from the configuration."""

    configure_logging(verbose)
    config = _load(config_path)
    if workflow_id not in config.workflows:
        console.print(f"[bold red]Unknown workflow:[/] {escape(workflow_id)}")
        raise typer.Exit(code=2)
    orchestrator = _orchestrator(config)
    execution = asyncio.run(orchestrator.run_workflow(workflow_id))

    table = Table(title=f"Workflow {workflow_id}", show_lines=True)
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Attempts")
    table.add_column("Output")
    for step in execution.steps:
        text = escape(_preview(step.output)) if step.status == "completed" else f"[red]{escape(step.error or '')}[/]"
        table.add_row(step.step_id, step.status, str(step.attempts), text)
    console.print(table)

    metrics = execution.metrics
    console.print(
        f"{metrics.total_duration:.0f} ms, {metrics.retry_count} retries, success rate {metrics.success_rate:.0f}%"
    )
    if execution.status != "completed":
        console.print(f"[bold red]Workflow failed[/] {escape(execution.error.message)}")
        raise typer.Exit(code=1)
    console.print("[bold green]Workflow completed[/]")


def main() -> None:  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
