"""Typer CLI for the analytics engine.

Runs pipelines, reports and dashboards against JSON/YAML record files,
inspects cron expressions and drives scheduled reports.
"""

import asyncio
import json
import logging
import time
from datetime import timedelta
from pathlib import Path
from typing import Any, List, Optional

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from analytics_engine.exceptions import AnalyticsError

console = Console()
app = typer.Typer(
    name="analytics",
    help="Aggregation pipelines, reports, dashboards and scheduled report runs.",
    add_completion=False,
    no_args_is_help=True,
)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging level and format."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _run_async(coro):
    """Run an async coroutine from synchronous CLI context."""
    return asyncio.run(coro)


def _fail(message: str) -> None:
    console.print("[red]✘[/red] " + escape(message))
    raise typer.Exit(code=1)


def _read_file(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as fh:
        if path.suffix == ".json":
            return json.load(fh)
        return yaml.safe_load(fh)


def _parse_params(pairs: Optional[List[str]]) -> dict[str, Any]:
    """Turn ``key=value`` pairs into a dict; values are YAML-typed."""
    params: dict[str, Any] = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise typer.BadParameter(f"Expected key=value, got {pair!r}")
        key, raw = pair.split("=", 1)
        params[key.strip()] = yaml.safe_load(raw) if raw else ""
    return params


def _build_service(
    config_path: str,
    definitions: Optional[Path] = None,
    data_dir: Optional[Path] = None,
):
    """Lazy-import and return a configured AnalyticsService."""
    from analytics_engine.app import AnalyticsService
    from analytics_engine.config import load_config

    config = load_config(config_path)
    if data_dir is not None:
        config.data_dir = str(data_dir)
    service = AnalyticsService(config)
    service.restore()
    if definitions is not None:
        service.load_definitions(definitions, skip_existing=True)
    return service


def _format_cell(value: Any) -> str:
    if value is None:
        return "[dim]null[/dim]"
    if isinstance(value, (dict, list)):
        return escape(json.dumps(value, default=str))
    return escape(str(value))


def _print_rows(rows: list[dict[str, Any]], title: str) -> None:
    """Pretty-print result records using Rich."""
    columns: list[str] = []
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)
    table = Table(title=title, show_header=True, header_style="bold magenta")
    for column in columns:
        table.add_column(column, style="cyan" if column == "_id" else None)
    for row in rows:
        table.add_row(*(_format_cell(row.get(c)) for c in columns))
    console.print(table)


def _print_metadata(metadata) -> None:
    console.print(
        f"{metadata.records_processed} records in, "
        f"{metadata.stages_executed} stages, "
        f"{metadata.execution_time_ms:.1f}ms"
    )


# ------------------------------------------------------------------
# validate / aggregate
# ------------------------------------------------------------------
@app.command()
def validate(
    pipeline_file: Path = typer.Argument(..., exists=True, help="Pipeline JSON/YAML file."),
    max_stages: Optional[int] = typer.Option(None, "--max-stages", help="Stage ceiling."),
) -> None:
    """Validate a pipeline definition without fetching data."""
    from analytics_engine.modules.aggregation import AggregationEngine

    try:
        engine = AggregationEngine(max_stages=max_stages)
        stages = engine.compile(_read_file(pipeline_file))
    except AnalyticsError as exc:
        _fail(str(exc))
    console.print(f"[green]✔[/green] Pipeline valid ({len(stages)} stages).")


@app.command()
def aggregate(
    pipeline_file: Path = typer.Argument(..., exists=True, help="Pipeline JSON/YAML file."),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", "-d", help="Directory of <object>.json files."),
    config_path: str = typer.Option("config/settings.yaml", "--config", "-c", help="Settings file."),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON instead of a table."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Run an ad-hoc pipeline against record files."""
    _setup_logging(verbose)
    from analytics_engine.config import load_config
    from analytics_engine.integrations import JsonFileDataSource
    from analytics_engine.modules.aggregation import AggregationEngine

    try:
        config = load_config(config_path)
        engine = AggregationEngine(max_stages=config.max_pipeline_stages)
        source = JsonFileDataSource(data_dir if data_dir is not None else config.data_dir)
        result = _run_async(engine.execute(_read_file(pipeline_file), source))
    except AnalyticsError as exc:
        _fail(str(exc))

    if as_json:
        console.print_json(json.dumps(result.to_dict(), default=str))
        return
    _print_rows(result.data, title="Pipeline: " + pipeline_file.name)
    _print_metadata(result.metadata)


# ------------------------------------------------------------------
# cron
# ------------------------------------------------------------------
@app.command()
def cron(
    expression: str = typer.Argument(..., help='Cron expression, e.g. "0 9 * * 1".'),
    start: Optional[str] = typer.Option(None, "--from", help="ISO-8601 reference instant (default now)."),
    count: int = typer.Option(5, "--count", "-n", help="Number of upcoming runs to list."),
) -> None:
    """Parse a cron expression and list its next run times."""
    from analytics_engine.modules.scheduling import next_run_after, parse_cron
    from analytics_engine.utils.timeutils import isoformat, parse_timestamp

    try:
        parsed = parse_cron(expression)
        moment = parse_timestamp(start) if start else None
        runs = []
        for _ in range(max(1, count)):
            moment = next_run_after(parsed, moment)
            runs.append(isoformat(moment))
    except (AnalyticsError, ValueError) as exc:
        _fail(str(exc))

    table = Table(title="Cron: " + expression, show_header=True, header_style="bold magenta")
    table.add_column("Field", style="cyan")
    table.add_column("Kind")
    table.add_column("Value")
    for name in ("minute", "hour", "day_of_month", "month", "day_of_week"):
        field = getattr(parsed, name)
        value = field.value if field.value is not None else field.interval
        table.add_row(name, field.kind.value, "" if value is None else str(value))
    console.print(table)
    for index, run in enumerate(runs, start=1):
        console.print(f"{index}. {run}")


# ------------------------------------------------------------------
# report / dashboard
# ------------------------------------------------------------------
@app.command()
def report(
    report_id: str = typer.Argument(..., help="Report id."),
    definitions: Optional[Path] = typer.Option(None, "--definitions", "-f", exists=True, help="Reports/dashboards/schedules file."),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", "-d", help="Directory of <object>.json files."),
    param: Optional[List[str]] = typer.Option(None, "--param", "-p", help="Report parameter as key=value."),
    config_path: str = typer.Option("config/settings.yaml", "--config", "-c", help="Settings file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Execute a report definition."""
    _setup_logging(verbose)
    try:
        service = _build_service(config_path, definitions, data_dir)
        result = _run_async(
            service.reports.execute(report_id, _parse_params(param), service.data_source)
        )
    except AnalyticsError as exc:
        _fail(str(exc))

    console.print(Panel(f"[bold cyan]{result.report_name}[/bold cyan] ({result.report_id})"))
    _print_rows(result.data, title="Executed " + result.executed_at)
    _print_metadata(result.metadata)


@app.command()
def dashboard(
    dashboard_id: str = typer.Argument(..., help="Dashboard id."),
    definitions: Optional[Path] = typer.Option(None, "--definitions", "-f", exists=True, help="Reports/dashboards/schedules file."),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", "-d", help="Directory of <object>.json files."),
    isolate: bool = typer.Option(False, "--isolate", help="Report failing widgets instead of aborting."),
    config_path: str = typer.Option("config/settings.yaml", "--config", "-c", help="Settings file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Execute every widget of a dashboard."""
    _setup_logging(verbose)
    try:
        service = _build_service(config_path, definitions, data_dir)
        board = service.dashboards.require(dashboard_id)
        results = _run_async(
            service.dashboards.execute_dashboard(dashboard_id, service.data_source, isolate or None)
        )
    except AnalyticsError as exc:
        _fail(str(exc))

    console.print(Panel(f"[bold cyan]Dashboard: {board.name}[/bold cyan]"))
    for widget in board.widgets:
        result = results[widget.id]
        if result.error:
            console.print(f"[red]✘ {escape(widget.title or widget.id)}: {escape(result.error)}[/red]")
            continue
        _print_rows(result.data, title=f"{widget.title or widget.id} ({widget.type})")


# ------------------------------------------------------------------
# scheduling
# ------------------------------------------------------------------
@app.command("run-due")
def run_due(
    definitions: Optional[Path] = typer.Option(None, "--definitions", "-f", exists=True, help="Reports/dashboards/schedules file."),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", "-d", help="Directory of <object>.json files."),
    config_path: str = typer.Option("config/settings.yaml", "--config", "-c", help="Settings file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Run every due scheduled report once."""
    _setup_logging(verbose)
    try:
        service = _build_service(config_path, definitions, data_dir)
        executed = _run_async(service.run_due())
    except AnalyticsError as exc:
        _fail(str(exc))

    table = Table(title="Schedules", show_header=True, header_style="bold magenta")
    table.add_column("Schedule", style="cyan")
    table.add_column("Report")
    table.add_column("Status")
    table.add_column("Next run")
    for entry in service.scheduler.list_schedules():
        if entry.id in executed:
            state = "[green]✔ executed[/green]"
        elif entry.id in service.scheduler.last_errors:
            state = "[red]✘ " + escape(service.scheduler.last_errors[entry.id][:60]) + "[/red]"
        elif not entry.enabled:
            state = "[yellow]○ disabled[/yellow]"
        else:
            state = "waiting"
        table.add_row(entry.id, entry.report_id, state, entry.next_run)
    console.print(table)
    console.print(f"{len(executed)} scheduled report(s) executed.")


@app.command()
def watch(
    definitions: Optional[Path] = typer.Option(None, "--definitions", "-f", exists=True, help="Reports/dashboards/schedules file."),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", "-d", help="Directory of <object>.json files."),
    config_path: str = typer.Option("config/settings.yaml", "--config", "-c", help="Settings file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Poll for due scheduled reports until interrupted."""
    _setup_logging(verbose)
    try:
        service = _build_service(config_path, definitions, data_dir)
        runner = service.start_scheduler()
    except (AnalyticsError, RuntimeError) as exc:
        _fail(str(exc))

    interval = timedelta(seconds=service.config.poll_interval_seconds)
    console.print(
        Panel(f"[bold cyan]Watching {len(service.scheduler)} schedules every {interval}[/bold cyan]")
    )
    try:
        while runner.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Stopping...")
    finally:
        service.stop_scheduler()


# ------------------------------------------------------------------
# status
# ------------------------------------------------------------------
@app.command()
def status(
    config_path: str = typer.Option("config/settings.yaml", "--config", "-c", help="Settings file."),
    definitions: Optional[Path] = typer.Option(None, "--definitions", "-f", exists=True, help="Reports/dashboards/schedules file."),
) -> None:
    """Show component health."""
    try:
        service = _build_service(config_path, definitions)
    except (AnalyticsError, ValueError) as exc:
        _fail(str(exc))

    table = Table(title="Analytics Status", show_header=True, header_style="bold magenta")
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Details")
    icons = {
        "ok": "[green]✔ OK[/green]",
        "warning": "[yellow]⚠ Warning[/yellow]",
        "error": "[red]✘ Error[/red]",
    }
    for name, info in service.get_status().items():
        table.add_row(name.title(), icons.get(info["status"], info["status"]), info["details"])
    console.print(table)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
