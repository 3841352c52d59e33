"""
CLI interface for AI Usage Guard.

Renders usage summaries, project breakdowns and limit state in the terminal.
"""

import dataclasses
import json
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ai_usage_guard.config.loader import UsageGuardConfig, dump_default_config, load_config
from ai_usage_guard.config.plans import parse_plan_type
from ai_usage_guard.core.aggregator import UsageAggregator, UsageSummary
from ai_usage_guard.core.clock import SystemClock
from ai_usage_guard.core.limits import parse_usage_response, should_highlight_weekly
from ai_usage_guard.core.polling import FetchSuccess, PollingController
from ai_usage_guard.core.prediction import LimitForecast
from ai_usage_guard.storage.reader import UsageLogRepository

app = typer.Typer()
console = Console()

# Exit codes - WARN is non-failing (0)
EXIT_CODE_PASS = 0
EXIT_CODE_WARN = 0  # Weekly usage above the alert threshold
EXIT_CODE_FAIL = 1  # Errors, or a limit in force with --enforced

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "ai-usage-guard" / "config.yaml"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """AI Usage Guard CLI."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )
    if ctx.invoked_subcommand is None:
        console.print("AI Usage Guard - Use --help to see available commands")


def _load_settings(
    config_path: Optional[Path],
    plan: Optional[str],
    data_dir: Optional[Path],
) -> UsageGuardConfig:
    """Load configuration and apply command line overrides.

    An explicit --config must exist; the default location is optional.
    """
    if config_path is not None:
        config = load_config(str(config_path))
    elif DEFAULT_CONFIG_PATH.exists():
        config = load_config(str(DEFAULT_CONFIG_PATH))
    else:
        config = UsageGuardConfig()

    overrides = {}
    if plan is not None:
        overrides["plan"] = parse_plan_type(plan)
    if data_dir is not None:
        overrides["data_dir"] = data_dir.expanduser()
    return dataclasses.replace(config, **overrides) if overrides else config


def _summarize(config: UsageGuardConfig) -> UsageSummary:
    repository = UsageLogRepository(config.data_dir, staleness=config.staleness_window)
    events = repository.get_recent_events()
    aggregator = UsageAggregator(sample_window=config.sample_window)
    return aggregator.summarize(events, config.plan)


@app.command()
def init(
    config_path: Path = typer.Option(
        DEFAULT_CONFIG_PATH,
        "--config",
        "-c",
        help="Where to write the configuration file"
    ),
):
    """Write a default configuration file."""
    try:
        config = dump_default_config(str(config_path))
        console.print(f"[green]✓[/] Configuration written to {config_path}")
        console.print(f"Plan: {config.plan.value}, logs: {config.data_dir}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error writing configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def summary(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file"
    ),
    plan: Optional[str] = typer.Option(
        None, "--plan", "-p", help="Plan tier: pro, max5 or max20"
    ),
    data_dir: Optional[Path] = typer.Option(
        None, "--data-dir", "-d", help="Session log directory"
    ),
):
    """Show rolling window and weekly usage with limit predictions."""
    try:
        config = _load_settings(config_path, plan, data_dir)
        result = _summarize(config)
    except (ValueError, FileNotFoundError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if result.weekly_event_count == 0 and result.window_event_count == 0:
        console.print("\n[bold yellow]No recent usage found[/]")
        console.print(f"Looked for session logs in {config.data_dir}\n")
        sys.exit(EXIT_CODE_PASS)

    _display_summary(result, config)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def projects(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file"
    ),
    data_dir: Optional[Path] = typer.Option(
        None, "--data-dir", "-d", help="Session log directory"
    ),
):
    """Show the top projects by token volume this week."""
    try:
        config = _load_settings(config_path, None, data_dir)
        result = _summarize(config)
    except (ValueError, FileNotFoundError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    breakdown = result.project_breakdown
    if breakdown is None or not breakdown.projects:
        console.print("\n[dim]No project usage this week.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Projects this week")
    table.add_column("Project")
    table.add_column("Tokens", justify="right")
    table.add_column("Requests", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Share", justify="right")
    for project in breakdown.projects:
        table.add_row(
            project.project_name,
            format_tokens(project.total_tokens),
            str(project.requests),
            _format_currency(project.cost),
            f"{project.percentage:.1f}%",
        )
    console.print(table)
    console.print(
        f"Total: {format_tokens(breakdown.total_tokens)} tokens, "
        f"{_format_currency(breakdown.total_cost)}"
    )
    sys.exit(EXIT_CODE_PASS)


@app.command()
def limits(
    snapshot: Path = typer.Argument(..., help="Saved usage API response (JSON)"),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Configuration file"
    ),
    enforced: bool = typer.Option(
        False,
        "--enforced",
        "-e",
        help="Exit with error code while a limit is in force"
    ),
):
    """Report whether a usage snapshot puts polling on hold."""
    try:
        config = _load_settings(config_path, None, None)
        with open(snapshot, "r", encoding="utf-8") as f:
            payload = json.load(f)
        if not isinstance(payload, dict):
            raise ValueError("Snapshot must be a JSON object")
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    data = parse_usage_response(payload)
    controller = PollingController(
        lambda: FetchSuccess(data),
        clock=SystemClock(),
        interval=config.refresh_interval,
        resume_margin=config.resume_margin,
    )
    controller.run_pending()
    machine = controller.state_machine

    console.print("\n[bold]Limit Status[/bold]")
    console.print("-" * 40)
    console.print(f"Session: {data.session.utilization:.0f}%")
    console.print(f"Weekly (all models): {data.weekly_all.utilization:.0f}%")
    if data.weekly_sonnet is not None:
        console.print(f"Weekly (Sonnet): {data.weekly_sonnet.utilization:.0f}%")

    reset = machine.held_reset
    if reset is not None:
        delay = machine.resume_delay() or timedelta(0)
        console.print(
            f"\n[bold red]Limit reached[/] ({reset.kind.value}), "
            f"resets in {format_duration(delay)}"
        )
        console.print(f"Next check at {_format_time(controller.next_poll_at())}")
        sys.exit(EXIT_CODE_FAIL if enforced else EXIT_CODE_PASS)

    if should_highlight_weekly(data, config.weekly_alert_threshold):
        console.print(
            f"\n[bold yellow]Weekly usage above {config.weekly_alert_threshold:.0f}%[/]"
        )
        sys.exit(EXIT_CODE_WARN)

    console.print("\n[green]✓[/] No limit in force")
    sys.exit(EXIT_CODE_PASS)


def format_tokens(tokens: float) -> str:
    """Format a token count, e.g. 1.5M or 250K."""
    if tokens >= 1_000_000:
        return f"{tokens / 1_000_000:.1f}M"
    if tokens >= 1_000:
        return f"{round(tokens / 1_000)}K"
    return str(int(tokens))


def format_rate(tokens_per_hour: float) -> str:
    return f"{format_tokens(tokens_per_hour)} tokens/hr"


def format_duration(delta: timedelta, prefix: str = "") -> str:
    """Format a duration as ``2d 3h``, ``4h 5m`` or ``12m``; zero or less is ``now``."""
    total_seconds = int(delta.total_seconds())
    if total_seconds <= 0:
        return "now"

    hours, remainder = divmod(total_seconds, 3600)
    minutes = remainder // 60
    if hours > 24:
        return f"{prefix}{hours // 24}d {hours % 24}h"
    if hours > 0:
        return f"{prefix}{hours}h {minutes}m"
    return f"{prefix}{minutes}m"


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${abs(amount):,.2f}"


def _format_time(value: datetime) -> str:
    return value.astimezone().strftime("%a %d %H:%M")


def _display_summary(result: UsageSummary, config: UsageGuardConfig) -> None:
    """Display the usage summary."""
    console.print(f"\n[bold]AI Usage Summary[/bold] (plan: {config.plan.value})")
    console.print("-" * 40)

    table = Table()
    table.add_column("Window")
    table.add_column("Tokens", justify="right")
    table.add_column("Used", justify="right")
    table.add_column("Period")
    table.add_row(
        "Session (5h)",
        format_tokens(result.window_tokens),
        f"{result.window_percentage:.1f}%",
        f"{_format_time(result.window_start)} - {_format_time(result.window_end)}",
    )
    table.add_row(
        "Week",
        format_tokens(result.weekly_tokens),
        f"{result.weekly_percentage:.1f}%",
        f"{_format_time(result.week_start)} - {_format_time(result.week_end)}",
    )
    console.print(table)

    models = Table(title="Models this week")
    models.add_column("Family")
    models.add_column("Requests", justify="right")
    models.add_column("Input", justify="right")
    models.add_column("Output", justify="right")
    models.add_column("Cost", justify="right")
    for family, usage in result.model_breakdown.items():
        if usage.requests == 0:
            continue
        models.add_row(
            family.value.capitalize(),
            str(usage.requests),
            format_tokens(usage.input_tokens),
            format_tokens(usage.output_tokens),
            _format_currency(usage.cost),
        )
    console.print(models)
    console.print(f"Estimated cost this week: {_format_currency(result.total_cost)}")

    if result.usage_rate is not None:
        console.print(f"Burn rate: {format_rate(result.usage_rate.tokens_per_hour)}")

    prediction = result.prediction
    if isinstance(prediction, LimitForecast):
        console.print(
            f"Session limit in {format_duration(prediction.time_to_session_limit, '~')}, "
            f"weekly limit in {format_duration(prediction.time_to_weekly_limit, '~')}"
        )
    elif prediction is not None:
        console.print(f"[dim]No prediction: {prediction.reason.value}[/]")
