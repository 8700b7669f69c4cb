"""Typer CLI entrypoint for the job feed importer."""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigRepository, Dialect, ScheduleConfig, ScheduleType, SourceConfig
from .logging_conf import available_source_logs, configure_logging, tail_log
from .models import ImportLog, ImportStatus
from .orchestrator import ImportOrchestrator
from .scheduler import APSchedulerAdapter

app = typer.Typer(help="Job feed importer command line", no_args_is_help=True, rich_markup_mode=None)
source_app = typer.Typer(name="source", help="Manage configured feeds", no_args_is_help=True)
queue_app = typer.Typer(name="queue", help="Inspect and operate the task queue", no_args_is_help=True)
logs_app = typer.Typer(name="logs", help="Browse import logs", no_args_is_help=True)
log_app = typer.Typer(name="log", help="Show application log files", no_args_is_help=True)

console = Console()

_STATUS_STYLES = {
    ImportStatus.SUCCESS.value: "green",
    ImportStatus.PARTIAL.value: "yellow",
    ImportStatus.FAILED.value: "red",
}


@dataclass
class AppState:
    repository: ConfigRepository
    orchestrator: ImportOrchestrator
    scheduler: APSchedulerAdapter | None = None


def build_state(verbose: bool) -> AppState:
    configure_logging(verbose=verbose)
    repository = ConfigRepository()
    scheduler = APSchedulerAdapter()
    orchestrator = ImportOrchestrator.from_config(repository, scheduler=scheduler)
    return AppState(repository=repository, orchestrator=orchestrator, scheduler=scheduler)


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _format_schedule(schedule: ScheduleConfig) -> str:
    if not schedule.enabled:
        return "disabled"
    if schedule.type is ScheduleType.CRON:
        return f"cron ({schedule.value})"
    return f"interval ({schedule.value})"


def _styled_status(status: str) -> str:
    style = _STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def _render_sources_table(sources: Sequence[SourceConfig]) -> Table:
    table = Table(title=f"Feeds · {len(sources)} configured", box=box.SIMPLE_HEAD)
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("URL", overflow="fold")
    table.add_column("Dialect", style="magenta")
    table.add_column("Batch", justify="right")
    table.add_column("Enabled", style="yellow")
    for source in sources:
        table.add_row(
            source.display_name,
            source.url,
            source.dialect.value,
            str(source.batch_size or "-"),
            "yes" if source.enabled else "no",
        )
    return table


def _render_log_table(log: ImportLog) -> Table:
    table = Table(title=log.file_name, box=box.SIMPLE_HEAD, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", _styled_status(log.status.value))
    table.add_row("Fetched", str(log.total_fetched))
    table.add_row("New", str(log.new_jobs))
    table.add_row("Updated", str(log.updated_jobs))
    table.add_row("Failed", str(log.failed_jobs))
    table.add_row("Time (ms)", str(log.processing_time_ms))
    if log.error:
        table.add_row("Error", f"[red]{log.error}[/red]")
    for failure in log.failed_jobs_reasons[:10]:
        table.add_row(f"  {failure.item}", failure.reason)
    return table


def _render_rows(title: str, columns: Sequence[str], rows: Iterable[Sequence[Any]]) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAD)
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*(str(value) for value in row))
    return table


app.add_typer(source_app, name="source")
app.add_typer(queue_app, name="queue")
app.add_typer(logs_app, name="logs")
app.add_typer(log_app, name="log")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging", is_flag=True),
) -> None:
    ctx.obj = build_state(verbose)


@app.command("serve", help="Run workers and the scheduler until interrupted.")
def serve(
    ctx: typer.Context,
    schedule: bool = typer.Option(True, "--schedule/--no-schedule", help="Enqueue scheduled imports."),
) -> None:
    state = _get_state(ctx)
    orchestrator = state.orchestrator
    if not schedule:
        orchestrator.scheduler = None
    config = orchestrator.global_config
    console.print(
        f"Starting {config.worker_concurrency} workers, schedule: {_format_schedule(config.schedule) if schedule else 'off'}",
        style="cyan",
    )
    orchestrator.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Shutting down, waiting for in-flight imports…", style="yellow")
    finally:
        orchestrator.shutdown(wait=True)


@app.command("trigger", help="Enqueue an import task for one or more feed URLs.")
def trigger(
    ctx: typer.Context,
    urls: List[str] = typer.Argument(..., help="Feed URLs imported by the task, in order."),
    priority: Optional[int] = typer.Option(None, "--priority", "-p", help="Higher runs first."),
) -> None:
    state = _get_state(ctx)
    task_id = state.orchestrator.trigger_import(urls, priority)
    console.print(f"Enqueued task {task_id} ({len(urls)} feeds)", style="green")


@app.command("import-now", help="Import a single feed synchronously and print its log.")
def import_now(ctx: typer.Context, url: str = typer.Argument(..., help="Feed URL.")) -> None:
    state = _get_state(ctx)
    log = state.orchestrator.run_import_now(url)
    console.print(_render_log_table(log))
    if log.status is ImportStatus.FAILED:
        raise typer.Exit(code=1)


@app.command("stats", help="Show import overview, daily trends and per-source figures.")
def stats(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    summary = state.orchestrator.get_import_stats()
    overview = summary["overview"]
    console.print(
        _render_rows(
            "Overview",
            ["Total", "Successful", "Failed", "Recent", "Success rate"],
            [
                [
                    overview["totalImports"],
                    overview["successfulImports"],
                    overview["failedImports"],
                    overview["recentImports"],
                    f"{overview['successRate']}%",
                ]
            ],
        )
    )
    console.print(
        _render_rows(
            "Trends",
            ["Date", "Imports", "Jobs", "New", "Updated", "Failed"],
            [
                [t["date"], t["totalImports"], t["totalJobs"], t["newJobs"], t["updatedJobs"], t["failedJobs"]]
                for t in summary["trends"]
            ],
        )
    )
    console.print(
        _render_rows(
            "Sources",
            ["Source", "Imports", "Success rate", "Fetched", "New", "Updated", "Failed", "Avg ms", "Last import"],
            [
                [
                    s["sourceUrl"],
                    s["totalImports"],
                    f"{s['successRate']}%",
                    s["totalJobsFetched"],
                    s["totalNewJobs"],
                    s["totalUpdatedJobs"],
                    s["totalFailedJobs"],
                    s["avgProcessingTime"],
                    s["lastImport"],
                ]
                for s in summary["sourceStats"]
            ],
        )
    )


@queue_app.command("stats", help="Count tasks per state.")
def queue_stats(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    counts = state.orchestrator.get_queue_stats()
    console.print(_render_rows("Queue", list(counts.keys()), [list(counts.values())]))


@queue_app.command("failed", help="List tasks that exhausted their retries.")
def queue_failed(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", help="Number of tasks to show."),
) -> None:
    state = _get_state(ctx)
    tasks = state.orchestrator.broker.failed_tasks(limit)
    if not tasks:
        console.print("No failed tasks.", style="dim")
        return
    console.print(
        _render_rows(
            "Failed tasks",
            ["Task", "Attempts", "Sources", "Last error"],
            [[task.id, task.attempt, ", ".join(task.source_urls), task.last_error or "-"] for task in tasks],
        )
    )


@queue_app.command("retry", help="Move a failed task back to the waiting queue.")
def queue_retry(ctx: typer.Context, task_id: str = typer.Argument(..., help="Failed task id.")) -> None:
    state = _get_state(ctx)
    if not state.orchestrator.broker.retry_failed(task_id):
        console.print(f"No failed task `{task_id}`.", style="red")
        raise typer.Exit(code=1)
    console.print(f"Task {task_id} re-queued.", style="green")


@queue_app.command("drain", help="Process queued tasks in this process until the queue is empty.")
def queue_drain(
    ctx: typer.Context,
    max_tasks: Optional[int] = typer.Option(None, "--max", help="Stop after N tasks."),
) -> None:
    state = _get_state(ctx)
    processed = state.orchestrator.worker_pool.drain(max_tasks)
    console.print(f"Processed {processed} task(s).", style="green")


@logs_app.command("list", help="Show import logs, newest first.")
def logs_list(
    ctx: typer.Context,
    page: int = typer.Option(1, "--page", min=1),
    limit: int = typer.Option(10, "--limit", min=1),
) -> None:
    state = _get_state(ctx)
    result = state.orchestrator.get_import_logs(page=page, limit=limit)
    pagination = result["pagination"]
    if not result["logs"]:
        console.print("No import logs yet.", style="dim")
        return
    table = Table(
        title=f"Import logs · page {pagination['page']}/{max(pagination['totalPages'], 1)} · {pagination['total']} total",
        box=box.SIMPLE_HEAD,
    )
    for column in ("Time", "File", "Status", "Fetched", "New", "Updated", "Failed", "ms"):
        table.add_column(column)
    for log in result["logs"]:
        table.add_row(
            log["timestamp"],
            log["fileName"],
            _styled_status(log["status"]),
            str(log["totalFetched"]),
            str(log["newJobs"]),
            str(log["updatedJobs"]),
            str(log["failedJobs"]),
            str(log["processingTimeMs"]),
        )
    console.print(table)


@source_app.command("list", help="List configured feeds and the scheduled trigger.")
def source_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    sources = state.repository.list_sources()
    if not sources:
        console.print("No feeds configured, add one with `job-importer source add URL`.", style="yellow")
        raise typer.Exit(code=0)
    console.print(_render_sources_table(sources))
    console.print(
        f"Schedule: {_format_schedule(state.orchestrator.global_config.schedule)}", style="dim"
    )


@source_app.command("add", help="Add or replace a feed configuration.")
def source_add(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="Feed URL."),
    name: Optional[str] = typer.Option(None, "--name", help="Display name, also used for log files."),
    dialect: Dialect = typer.Option(Dialect.AUTO, "--dialect", case_sensitive=False),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", min=1),
    enabled: bool = typer.Option(True, "--enabled/--disabled"),
) -> None:
    state = _get_state(ctx)
    try:
        config = SourceConfig(url=url, name=name, dialect=dialect, batch_size=batch_size, enabled=enabled)
    except ValueError as exc:
        console.print(f"Invalid feed configuration: {exc}", style="red")
        raise typer.Exit(code=1) from exc
    path = state.repository.save_source(config)
    console.print(f"Saved feed `{config.display_name}` to {path}", style="green")


@source_app.command("remove", help="Remove a feed configuration.")
def source_remove(ctx: typer.Context, url: str = typer.Argument(..., help="Feed URL.")) -> None:
    state = _get_state(ctx)
    if not state.repository.delete_source(url):
        console.print(f"No feed configured for `{url}`.", style="red")
        raise typer.Exit(code=1)
    console.print(f"Removed feed `{url}`.", style="green")


@log_app.command("list", help="List per-feed log files.")
def log_list() -> None:
    logs = list(available_source_logs())
    if not logs:
        console.print("No feed logs yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="Print the tail of the application log or of a feed log.")
def log_show(
    ctx: typer.Context,
    source: Optional[str] = typer.Option(None, "--source", help="Feed log name (without .log)."),
    tail: int = typer.Option(100, "--tail", min=1, help="Number of lines."),
) -> None:
    state = _get_state(ctx)
    base_dir: Path = state.repository.locator.logs_dir
    path = base_dir / "sources" / f"{source}.log" if source else base_dir / "importer.log"
    lines = tail_log(path, tail)
    if not lines:
        console.print("No log lines yet.", style="dim")
        return
    console.print(f"{path.name} · last {len(lines)} lines", style="cyan")
    console.print("".join(lines), markup=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
