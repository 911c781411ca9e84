"""
Root Typer application for the taskward CLI.

Run one scheduler pass from cron or a Kubernetes CronJob::

    */5 * * * *  taskward run --registry myapp.tasks:REGISTRY
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import typer
from typer import Typer

from taskward.cli.utils import console, fail, load_registry, open_store, output
from taskward.core.errors import TaskSchedulerError
from taskward.core.scheduling import TaskOutcome, TaskScheduler, derive_lock_id, next_occurrence
from taskward.framework.logging import configure_logging

app = Typer(
    name="taskward",
    help="taskward: cron-driven background tasks with advisory locks.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

REGISTRY_OPTION = typer.Option(
    None,
    "--registry",
    "-r",
    envvar="TASKWARD_REGISTRY",
    help="Task registry as module:ATTRIBUTE.",
)
DATABASE_OPTION = typer.Option(None, "--database", "-d", help="Override TASKWARD_DATABASE_URL.")
JSON_OPTION = typer.Option(False, "--json")


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from taskward import __version__

        typer.echo(f"taskward {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override TASKWARD_LOG_LEVEL."),
) -> None:
    """taskward CLI: run scheduler passes and inspect task history."""
    configure_logging(level=log_level, force=True)


# ── Commands ─────────────────────────────────────────────────────────────


async def _run_pass(scheduler: TaskScheduler):
    try:
        return await scheduler.run()
    finally:
        await scheduler.store.close()


@app.command("run")
def run_pass(
    registry: str | None = REGISTRY_OPTION,
    database: str | None = DATABASE_OPTION,
    json_out: bool = JSON_OPTION,
) -> None:
    """Run one scheduler pass over every registered task.

    Exits 0 once the pass completes, even when individual tasks failed;
    those are listed in the report and recorded in run history.
    """
    tasks = load_registry(registry)
    store, settings = open_store(database)
    scheduler = TaskScheduler(
        tasks,
        store,
        retry_window=timedelta(minutes=settings.retry_window_minutes),
        disabled_tasks=settings.disabled_tasks,
        instance_id=settings.instance_id,
    )
    try:
        report = asyncio.run(_run_pass(scheduler))
    except TaskSchedulerError as e:
        fail(e)
    output(report, as_json=json_out, title=f"Pass {report.pass_id}")


async def _trigger(scheduler: TaskScheduler, name: str) -> TaskOutcome:
    try:
        return await scheduler.trigger(name)
    finally:
        await scheduler.store.close()


@app.command("trigger")
def trigger_task(
    name: str = typer.Argument(..., help="Task name"),
    registry: str | None = REGISTRY_OPTION,
    database: str | None = DATABASE_OPTION,
) -> None:
    """Run one task now, regardless of its schedule."""
    tasks = load_registry(registry)
    if name not in tasks:
        fail(TaskSchedulerError.task_not_found(name))

    store, settings = open_store(database)
    scheduler = TaskScheduler(
        tasks,
        store,
        retry_window=timedelta(minutes=settings.retry_window_minutes),
        disabled_tasks=settings.disabled_tasks,
        instance_id=settings.instance_id,
    )
    outcome = asyncio.run(_trigger(scheduler, name))
    console.print(f"{name}: [bold]{outcome.value}[/bold]")
    if outcome != TaskOutcome.COMPLETED:
        raise typer.Exit(code=1)


@app.command("tasks")
def list_tasks(
    registry: str | None = REGISTRY_OPTION,
    json_out: bool = JSON_OPTION,
) -> None:
    """List registered tasks with their schedule and next occurrence."""
    tasks = load_registry(registry)
    now = datetime.now(UTC)
    rows = [
        {
            "name": name,
            "cron": task.schedule.cron,
            "timezone": task.schedule.timezone,
            "enabled": task.schedule.enabled,
            "timeout_minutes": task.timeout,
            "retry_policy": task.retry_policy.value,
            "lock_id": derive_lock_id(name),
            "next_run": next_occurrence(task.schedule.cron, now, task.schedule.timezone).isoformat(),
        }
        for name, task in tasks.items()
    ]
    output(rows, as_json=json_out, title="Tasks")


@app.command("lock-id")
def lock_id(name: str = typer.Argument(..., help="Task name")) -> None:
    """Print the advisory lock id derived from a task name."""
    typer.echo(derive_lock_id(name))


async def _recent_runs(store, name: str, since: datetime):
    try:
        return await store.get_recent_task_runs(name, since)
    finally:
        await store.close()


@app.command("runs")
def list_runs(
    name: str = typer.Argument(..., help="Task name"),
    hours: int = typer.Option(24, "--hours", help="Look back this many hours."),
    limit: int = typer.Option(20, "--limit", "-n"),
    database: str | None = DATABASE_OPTION,
    json_out: bool = JSON_OPTION,
) -> None:
    """Show recent runs of a task, newest first."""
    store, _ = open_store(database)
    since = store.get_current_time() - timedelta(hours=hours)
    try:
        runs = asyncio.run(_recent_runs(store, name, since))
    except TaskSchedulerError as e:
        fail(e)
    output(runs[:limit], as_json=json_out, title=f"Runs: {name}")
