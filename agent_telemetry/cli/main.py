"""
CLI interface for Agent Telemetry.

Provides command-line access to the event store and the metrics computers.
"""

import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from agent_telemetry.config.loader import Settings, load_settings
from agent_telemetry.core.stats import format_duration, format_tokens
from agent_telemetry.metrics import (
    compute_agent_comparison,
    compute_budget_metrics,
    compute_cost_metrics,
    compute_duration_metrics,
    compute_failed_runs,
    compute_model_cost_breakdown,
    compute_run_metrics,
    compute_task_cost_metrics,
    compute_token_metrics,
)
from agent_telemetry.metrics.types import BudgetStatus
from agent_telemetry.storage.errors import TelemetryError
from agent_telemetry.storage.event_store import EventStore

app = typer.Typer()
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1

CLI_ERRORS = (TelemetryError, ValueError, OSError, yaml.YAMLError)

PERIOD_HELP = "Period: today, 24h, 3d, 7d, 30d, 3m, 6m, 12m, wtd, mtd, ytd, all, custom"


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_FAIL)


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj


def _store(ctx: typer.Context) -> EventStore:
    settings = _settings(ctx)
    return EventStore(settings.directory, settings.telemetry)


def _print_json(data: Any) -> None:
    # Plain print keeps the output machine-readable (no rich markup or wrapping)
    print(json.dumps(data, indent=2))


def _percent(ratio: float) -> str:
    return f"{ratio * 100:.1f}%"


def _parse_fields(values: List[str]) -> Dict[str, Any]:
    """Turn ``key=value`` pairs into event fields; values are read as JSON when possible."""
    fields = {}
    for item in values:
        key, sep, raw = item.partition("=")
        if not sep or not key:
            raise ValueError(f"expected key=value, got {item!r}")
        try:
            fields[key.replace("-", "_")] = json.loads(raw)
        except json.JSONDecodeError:
            fields[key.replace("-", "_")] = raw
    return fields


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="AGENT_TELEMETRY_CONFIG",
        help="Path to a YAML configuration file"
    ),
    directory: Optional[Path] = typer.Option(
        None,
        "--dir",
        "-d",
        envvar="AGENT_TELEMETRY_DIR",
        help="Telemetry directory (overrides the configuration file)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging")
):
    """Agent Telemetry CLI."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        )

    try:
        settings = load_settings(config) if config else Settings()
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        _fail(f"could not load configuration: {e}")
    if directory:
        settings = dataclasses.replace(settings, directory=directory)
    ctx.obj = settings

    if ctx.invoked_subcommand is None:
        console.print("Agent Telemetry - Use --help to see available commands")


@app.command()
def status(ctx: typer.Context):
    """Show where telemetry is stored and how much there is."""
    settings = _settings(ctx)
    store = _store(ctx)
    files = store.partition_files()

    console.print(f"Directory: {settings.directory}")
    console.print(f"Enabled: {'yes' if store.is_enabled() else 'no'}")
    console.print(f"Retention: {settings.telemetry.retention_days} days")
    console.print(f"Partitions: {len(files)}")
    if files:
        console.print(f"Oldest: {files[0].name}")
        console.print(f"Newest: {files[-1].name}")


@app.command()
def emit(
    ctx: typer.Context,
    event_type: str = typer.Argument(..., help="Event type, e.g. run.completed"),
    task_id: Optional[str] = typer.Option(None, "--task", "-t", help="Task the event belongs to"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project the event belongs to"),
    field: List[str] = typer.Option(
        [],
        "--field",
        "-f",
        help="Event field as key=value (repeatable), e.g. -f agent=claude -f success=true"
    )
):
    """Record one event."""
    try:
        event = _store(ctx).emit(event_type, task_id=task_id, project=project, **_parse_fields(field))
    except CLI_ERRORS as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Recorded {event.type.value} {event.id}")


@app.command()
def events(
    ctx: typer.Context,
    event_type: List[str] = typer.Option([], "--type", help="Only these event types (repeatable)"),
    task_id: Optional[str] = typer.Option(None, "--task", "-t", help="Only events for this task"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Only events for this project"),
    since: Optional[str] = typer.Option(None, "--since", help="ISO timestamp lower bound"),
    until: Optional[str] = typer.Option(None, "--until", help="ISO timestamp upper bound"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum number of events"),
    as_json: bool = typer.Option(False, "--json", help="Print raw records as JSON")
):
    """List recorded events, newest first."""
    try:
        found = _store(ctx).get_events(
            type=event_type or None, task_id=task_id, project=project,
            since=since, until=until, limit=limit
        )
    except CLI_ERRORS as e:
        _fail(str(e))

    if as_json:
        _print_json([event.to_record() for event in found])
        return

    if not found:
        console.print("[dim]No events found.[/]")
        return

    table = Table(title="Events")
    table.add_column("Timestamp")
    table.add_column("Type")
    table.add_column("Task")
    table.add_column("Project")
    for event in found:
        table.add_row(event.timestamp, event.type.value, event.task_id or "-", event.project or "-")
    console.print(table)


@app.command()
def runs(
    ctx: typer.Context,
    period: str = typer.Option("7d", "--period", help=PERIOD_HELP),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Only this project"),
    start: Optional[str] = typer.Option(None, "--start", help="Start of a custom period"),
    end: Optional[str] = typer.Option(None, "--end", help="Upper bound of the window"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON")
):
    """Run counts and success/error rates."""
    try:
        result = compute_run_metrics(_settings(ctx).directory, period, project, start, end)
    except CLI_ERRORS as e:
        _fail(str(e))

    if as_json:
        _print_json(result.to_dict())
        return

    console.print(f"\n[bold]Runs ({result.period.value})[/bold]")
    console.print(f"Runs: {result.runs}")
    console.print(f"Success rate: {_percent(result.success_rate)}")
    console.print(f"Error rate: {_percent(result.error_rate)}")

    if result.by_agent:
        table = Table(title="By agent")
        table.add_column("Agent")
        table.add_column("Runs", justify="right")
        table.add_column("Success", justify="right")
        table.add_column("Avg duration", justify="right")
        for agent in result.by_agent:
            table.add_row(
                agent.agent, str(agent.runs), _percent(agent.success_rate),
                format_duration(agent.avg_duration_ms)
            )
        console.print(table)


@app.command()
def durations(
    ctx: typer.Context,
    period: str = typer.Option("7d", "--period", help=PERIOD_HELP),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Only this project"),
    start: Optional[str] = typer.Option(None, "--start", help="Start of a custom period"),
    end: Optional[str] = typer.Option(None, "--end", help="Upper bound of the window"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON")
):
    """Run duration average and percentiles."""
    try:
        result = compute_duration_metrics(_settings(ctx).directory, period, project, start, end)
    except CLI_ERRORS as e:
        _fail(str(e))

    if as_json:
        _print_json(result.to_dict())
        return

    console.print(f"\n[bold]Durations ({result.period.value})[/bold]")
    console.print(f"Runs: {result.runs}")
    console.print(f"Average: {format_duration(result.avg_ms)}")
    console.print(f"p50: {format_duration(result.p50_ms)}")
    console.print(f"p95: {format_duration(result.p95_ms)}")


@app.command()
def failures(
    ctx: typer.Context,
    period: str = typer.Option("7d", "--period", help=PERIOD_HELP),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Only this project"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum number of runs"),
    start: Optional[str] = typer.Option(None, "--start", help="Start of a custom period"),
    end: Optional[str] = typer.Option(None, "--end", help="Upper bound of the window"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON")
):
    """Most recent failed runs."""
    try:
        result = compute_failed_runs(_settings(ctx).directory, period, project, limit, start, end)
    except CLI_ERRORS as e:
        _fail(str(e))

    if as_json:
        _print_json([run.to_dict() for run in result])
        return

    if not result:
        console.print("[green]✓[/] No failed runs")
        return

    table = Table(title="Failed runs")
    table.add_column("Timestamp")
    table.add_column("Agent")
    table.add_column("Task")
    table.add_column("Error")
    for run in result:
        table.add_row(run.timestamp, run.agent, run.task_id or "-", run.error_message or "-")
    console.print(table)


@app.command()
def tokens(
    ctx: typer.Context,
    period: str = typer.Option("7d", "--period", help=PERIOD_HELP),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Only this project"),
    start: Optional[str] = typer.Option(None, "--start", help="Start of a custom period"),
    end: Optional[str] = typer.Option(None, "--end", help="Upper bound of the window"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON")
):
    """Token usage totals and per-run distribution."""
    try:
        result = compute_token_metrics(_settings(ctx).directory, period, project, start, end)
    except CLI_ERRORS as e:
        _fail(str(e))

    if as_json:
        _print_json(result.to_dict())
        return

    console.print(f"\n[bold]Tokens ({result.period.value})[/bold]")
    console.print(f"Total: {format_tokens(result.total_tokens)}")
    console.print(f"Input: {format_tokens(result.input_tokens)}")
    console.print(f"Output: {format_tokens(result.output_tokens)}")
    console.print(f"Per run: avg {result.per_run.avg}, p50 {result.per_run.p50}, p95 {result.per_run.p95}")


@app.command()
def costs(
    ctx: typer.Context,
    period: str = typer.Option("30d", "--period", help=PERIOD_HELP),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Only this project"),
    by_task: bool = typer.Option(False, "--by-task", help="Break costs down by task instead of model"),
    start: Optional[str] = typer.Option(None, "--start", help="Start of a custom period"),
    end: Optional[str] = typer.Option(None, "--end", help="Upper bound of the window"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON")
):
    """Token cost totals with a per-model (or per-task) breakdown."""
    settings = _settings(ctx)
    try:
        totals = compute_cost_metrics(settings.directory, period, project, settings.pricing, start, end)
        if by_task:
            breakdown = compute_task_cost_metrics(
                settings.directory, period, project, settings.pricing, start, end
            )
        else:
            breakdown = compute_model_cost_breakdown(
                settings.directory, period, project, settings.pricing, start, end
            )
    except CLI_ERRORS as e:
        _fail(str(e))

    if as_json:
        detail = breakdown.to_dict() if by_task else [item.to_dict() for item in breakdown]
        _print_json({"totals": totals.to_dict(), "breakdown": detail})
        return

    console.print(f"\n[bold]Costs ({totals.period.value})[/bold]")
    console.print(f"Total: ${totals.total_cost:,.4f} over {totals.runs} runs")
    console.print(f"Average per run: ${totals.average_cost_per_run:,.4f}")

    if by_task:
        table = Table(title="By task")
        table.add_column("Task")
        table.add_column("Runs", justify="right")
        table.add_column("Cost", justify="right")
        for entry in breakdown.tasks:
            table.add_row(entry.task_id, str(entry.runs), f"${entry.estimated_cost:,.4f}")
    else:
        table = Table(title="By model")
        table.add_column("Model")
        table.add_column("Runs", justify="right")
        table.add_column("Tokens", justify="right")
        table.add_column("Cost", justify="right")
        for entry in breakdown:
            table.add_row(
                entry.model, str(entry.runs), format_tokens(entry.total_tokens),
                f"${entry.total_cost:,.4f}"
            )
    console.print(table)


@app.command()
def budget(
    ctx: typer.Context,
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Only this project"),
    enforced: bool = typer.Option(
        False,
        "--enforced",
        "-e",
        help="Exit with error code when the budget is in danger"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON")
):
    """Month-to-date spend against the configured budget."""
    settings = _settings(ctx)
    try:
        result = compute_budget_metrics(settings.directory, settings.budget, project, settings.pricing)
    except CLI_ERRORS as e:
        _fail(str(e))

    if as_json:
        _print_json(result.to_dict())
    else:
        colour = {BudgetStatus.OK: "green", BudgetStatus.WARNING: "yellow", BudgetStatus.DANGER: "red"}
        console.print(f"\n[bold]Budget {result.period_start} to {result.period_end}[/bold]")
        console.print(f"Tokens: {format_tokens(result.total_tokens)} "
                      f"(projected {format_tokens(result.projected_monthly_tokens)})")
        console.print(f"Cost: ${result.estimated_cost:,.2f} (projected ${result.projected_monthly_cost:,.2f})")
        if result.token_budget:
            console.print(f"Token budget used: {result.token_budget_used}%")
        if result.cost_budget:
            console.print(f"Cost budget used: {result.cost_budget_used}%")
        console.print(f"Status: [{colour[result.status]}]{result.status.value}[/]")

    if enforced and result.status == BudgetStatus.DANGER:
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def agents(
    ctx: typer.Context,
    period: str = typer.Option("30d", "--period", help=PERIOD_HELP),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Only this project"),
    min_runs: int = typer.Option(3, "--min-runs", help="Ignore agents with fewer runs"),
    start: Optional[str] = typer.Option(None, "--start", help="Start of a custom period"),
    end: Optional[str] = typer.Option(None, "--end", help="Upper bound of the window"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON")
):
    """Compare agents and recommend the standouts."""
    settings = _settings(ctx)
    try:
        result = compute_agent_comparison(
            settings.directory, period, project, min_runs, settings.pricing, start, end
        )
    except CLI_ERRORS as e:
        _fail(str(e))

    if as_json:
        _print_json(result.to_dict())
        return

    if not result.agents:
        console.print(f"[dim]No agents with at least {min_runs} runs.[/]")
        return

    table = Table(title=f"Agents ({result.period.value})")
    table.add_column("Agent")
    table.add_column("Runs", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Avg duration", justify="right")
    table.add_column("Cost/run", justify="right")
    for agent in result.agents:
        table.add_row(
            agent.agent, str(agent.runs), f"{agent.success_rate}%",
            format_duration(agent.avg_duration_ms), f"${agent.avg_cost_per_run:,.4f}"
        )
    console.print(table)

    for recommendation in result.recommendations:
        console.print(f"[bold]{recommendation.category}:[/bold] {recommendation.agent} ({recommendation.value})")


@app.command()
def prune(ctx: typer.Context):
    """Delete partitions older than the retention window."""
    try:
        removed = _store(ctx).prune_expired()
    except CLI_ERRORS as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Removed {len(removed)} expired partition(s)")


@app.command()
def compress(ctx: typer.Context):
    """Gzip partitions from previous days."""
    try:
        written = _store(ctx).compress_partitions()
    except CLI_ERRORS as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Compressed {len(written)} partition(s)")


@app.command()
def clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Confirm deleting all telemetry")
):
    """Delete every recorded event."""
    if not yes:
        _fail("refusing to delete telemetry without --yes")
    try:
        _store(ctx).clear()
    except CLI_ERRORS as e:
        _fail(str(e))
    console.print("[green]✓[/] Telemetry cleared")


if __name__ == "__main__":
    app()
