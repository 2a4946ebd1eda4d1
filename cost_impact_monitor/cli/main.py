"""
CLI interface for Cost Impact Monitor.

Provides command-line access to the monitor loop, one-off analysis and
the stored deployment history.
"""

import json
import signal
import sys
from typing import Any, Dict

import structlog
import typer
import yaml
from openai import OpenAIError
from rich.console import Console
from rich.table import Table

from cost_impact_monitor.clients.confighub import ConfigHubClient
from cost_impact_monitor.clients.narrator import NullNarrator, OpenAINarrator
from cost_impact_monitor.clients.runtime import RuntimeUsageClient
from cost_impact_monitor.config.loader import AppConfig, load_config
from cost_impact_monitor.core.monitor import CostImpactMonitor
from cost_impact_monitor.core.pricing import CostEstimator
from cost_impact_monitor.core.risk import RiskAssessor, RiskLevel
from cost_impact_monitor.core.snapshot import GlobalSnapshot
from cost_impact_monitor.core.trend import compute_cost_trend
from cost_impact_monitor.errors import BackendUnavailableError
from cost_impact_monitor.storage.db import DEFAULT_DB_PATH
from cost_impact_monitor.storage.repository import DeploymentHistoryRepository
from cost_impact_monitor.telemetry.logging import setup_logging

app = typer.Typer()
console = Console()
logger = structlog.get_logger()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

DEFAULT_CONFIG_PATH = "cost_impact_monitor.yaml"

_RISK_STYLES = {
    RiskLevel.LOW: "green",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.HIGH: "red",
    RiskLevel.CRITICAL: "bold red",
}


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Cost Impact Monitor CLI."""
    if ctx.invoked_subcommand is None:
        console.print("Cost Impact Monitor - Use --help to see available commands")


@app.command()
def init(
    config_path: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Read the database path from this configuration file"
    ),
    db_path: str = typer.Option(
        DEFAULT_DB_PATH,
        "--db-path",
        help="SQLite file for the deployment history"
    ),
):
    """Initialize the deployment history database."""
    try:
        if config_path:
            db_path = load_config(config_path).db_path
        DeploymentHistoryRepository(db_path).initialize()
        console.print(f"[green]✓[/] Database initialized at {db_path}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def run(
    config_path: str = typer.Option(
        DEFAULT_CONFIG_PATH,
        "--config",
        "-c",
        help="Path to the YAML configuration file"
    ),
):
    """
    Run the monitor until interrupted.

    Analyzes every space on the configured interval and runs cost hooks
    as units move towards and into the live runtime.
    """
    config = _load_or_exit(config_path)
    setup_logging(config.logging)

    try:
        monitor = build_monitor(config)
        count = monitor.start()
    except BackendUnavailableError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Monitoring {count} space(s) every {config.monitor.interval_seconds:g}s")
    signal.signal(signal.SIGTERM, lambda signum, frame: monitor.shutdown())
    try:
        monitor.run_forever()
    except KeyboardInterrupt:
        monitor.shutdown()
    console.print("[green]✓[/] Monitor stopped")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def snapshot(
    config_path: str = typer.Option(
        DEFAULT_CONFIG_PATH,
        "--config",
        "-c",
        help="Path to the YAML configuration file"
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the snapshot as JSON"
    ),
    enforced: bool = typer.Option(
        False,
        "--enforced",
        "-e",
        help="Exit with error code if any pending change is high or critical risk"
    ),
):
    """
    Run one analysis pass and print the cost snapshot.

    This is a read-only operation: no hooks run and nothing is recorded.
    """
    config = _load_or_exit(config_path)
    setup_logging(config.logging)

    try:
        monitor = build_monitor(config)
        monitor.start()
        result = monitor.monitor_all_spaces()
    except BackendUnavailableError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if as_json:
        console.print_json(json.dumps(_snapshot_to_dict(result)))
    else:
        _display_snapshot(result)

    if enforced and result.high_risk_count > 0:
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def history(
    space_id: str = typer.Argument(..., help="Space to show deployment history for"),
    config_path: str = typer.Option(
        DEFAULT_CONFIG_PATH,
        "--config",
        "-c",
        help="Path to the YAML configuration file"
    ),
):
    """Show a space's recorded deployments and prediction accuracy."""
    config = _load_or_exit(config_path)

    try:
        repository = DeploymentHistoryRepository(config.db_path)
        repository.initialize()
        records = repository.history(space_id)
    except Exception as e:
        console.print(f"[red]Error reading history:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not records:
        console.print(f"\n[bold yellow]No deployments recorded for space {space_id}[/]\n")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"Deployment history: {space_id}")
    table.add_column("Deployed")
    table.add_column("Unit", no_wrap=True)
    table.add_column("Predicted", justify="right")
    table.add_column("Actual", justify="right")
    table.add_column("Variance", justify="right")
    table.add_column("Accurate")
    for record in records:
        table.add_row(
            record.deploy_time.strftime("%Y-%m-%d %H:%M"),
            record.unit_name,
            _format_currency(record.predicted_cost),
            _format_currency(record.actual_cost),
            f"{record.variance_pct:+.1f}%",
            "[green]yes[/]" if record.accurate else "[red]no[/]",
        )
    console.print(table)

    trend = compute_cost_trend(records, records[-1].actual_cost)
    accurate = sum(1 for record in records if record.accurate)
    console.print(f"\n[bold]Trend:[/bold] {trend.direction.value} "
                  f"({trend.weekly_delta_pct:+.1f}% last change, "
                  f"{trend.monthly_delta_pct:+.1f}% over history)")
    console.print(f"[bold]Accuracy:[/bold] {accurate}/{len(records)} predictions within 10%\n")
    sys.exit(EXIT_CODE_PASS)


def build_monitor(config: AppConfig) -> CostImpactMonitor:
    """Wire a CostImpactMonitor from configuration."""
    backend = ConfigHubClient(
        config.confighub.url,
        token=config.confighub.token,
        timeout=config.confighub.timeout,
    )

    runtime = None
    if config.runtime is not None:
        runtime = RuntimeUsageClient(
            config.runtime.url,
            token=config.runtime.token,
            namespace=config.runtime.namespace,
            selector_label=config.runtime.selector_label,
            timeout=config.runtime.timeout,
            verify=config.runtime.verify_tls,
        )

    narrator = NullNarrator()
    if config.ai.enabled:
        try:
            narrator = OpenAINarrator(config.ai.model, timeout=config.ai.timeout)
        except OpenAIError as e:
            logger.warning("ai_narrator_disabled", error=str(e))

    repository = DeploymentHistoryRepository(config.db_path)
    repository.initialize()

    return CostImpactMonitor(
        backend,
        estimator=CostEstimator(config.pricing),
        assessor=RiskAssessor(config.production_labels, narrator),
        repository=repository,
        runtime=runtime,
        interval=config.monitor.interval_seconds,
        poll_interval=config.monitor.trigger_poll_seconds,
        max_workers=config.monitor.max_workers,
        prune_stale_spaces=config.monitor.prune_stale_spaces,
        warning_threshold=config.monitor.warning_threshold,
    )


def _load_or_exit(config_path: str) -> AppConfig:
    try:
        return load_config(config_path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def _format_delta(amount: float) -> str:
    sign = "+" if amount >= 0 else "-"
    return f"{sign}${abs(amount):,.2f}"


def _display_snapshot(result: GlobalSnapshot):
    """Display the snapshot as a summary, a per-space table and pending changes."""
    console.print("\n[bold]Cost Impact Snapshot[/bold]")
    console.print("-" * 40)
    console.print(f"Computed at: {result.computed_at.isoformat(timespec='seconds')}")
    console.print(f"Spaces: {result.total_spaces}")
    console.print(f"Current monthly cost: {_format_currency(result.total_cost)}")
    console.print(f"Projected monthly cost: {_format_currency(result.projected_cost)}")
    console.print(f"Pending changes: {result.pending_change_count} "
                  f"({result.high_risk_count} high risk)")

    if result.failed_spaces:
        console.print(f"\n[yellow]Analysis failed for:[/] {', '.join(result.failed_spaces)} "
                      "(showing last known values)")

    if not result.per_space:
        console.print("\n[dim]No spaces to show.[/]")
        return

    spaces = Table(title="Spaces")
    spaces.add_column("Space", no_wrap=True)
    spaces.add_column("Current", justify="right")
    spaces.add_column("Projected", justify="right")
    spaces.add_column("Delta", justify="right")
    spaces.add_column("Pending", justify="right")
    spaces.add_column("Trend")
    for space in result.per_space:
        spaces.add_row(
            space.space_name,
            _format_currency(space.current_cost),
            _format_currency(space.projected_cost),
            _format_delta(space.projected_cost - space.current_cost),
            str(len(space.pending_changes)),
            space.cost_trend.direction.value,
        )
    console.print(spaces)

    if not result.pending_change_count:
        return

    changes = Table(title="Pending changes")
    changes.add_column("Space", no_wrap=True)
    changes.add_column("Unit", no_wrap=True)
    changes.add_column("Kind")
    changes.add_column("Delta", justify="right")
    changes.add_column("Risk")
    changes.add_column("Auto")
    changes.add_column("Assessment")
    for space in result.per_space:
        for change in space.pending_changes:
            style = _RISK_STYLES[change.risk_level]
            changes.add_row(
                space.space_name,
                change.unit_name,
                change.change_kind.value,
                _format_delta(change.cost_delta),
                f"[{style}]{change.risk_level.value}[/]",
                "yes" if change.auto_approve else "no",
                change.note or change.assessment,
            )
    console.print(changes)


def _snapshot_to_dict(result: GlobalSnapshot) -> Dict[str, Any]:
    return {
        "computed_at": result.computed_at.isoformat(),
        "total_spaces": result.total_spaces,
        "total_cost": result.total_cost,
        "projected_cost": result.projected_cost,
        "pending_change_count": result.pending_change_count,
        "high_risk_count": result.high_risk_count,
        "failed_spaces": list(result.failed_spaces),
        "spaces": [
            {
                "space_id": space.space_id,
                "space_name": space.space_name,
                "last_analysis": space.last_analysis.isoformat() if space.last_analysis else None,
                "current_cost": space.current_cost,
                "projected_cost": space.projected_cost,
                "cost_trend": {
                    "direction": space.cost_trend.direction.value,
                    "weekly_delta_pct": space.cost_trend.weekly_delta_pct,
                    "monthly_delta_pct": space.cost_trend.monthly_delta_pct,
                    "projected_monthly_cost": space.cost_trend.projected_monthly_cost,
                },
                "pending_changes": [
                    {
                        "unit_id": change.unit_id,
                        "unit_name": change.unit_name,
                        "change_kind": change.change_kind.value,
                        "current_cost": change.current_cost,
                        "projected_cost": change.projected_cost,
                        "cost_delta": change.cost_delta,
                        "risk_level": change.risk_level.value,
                        "auto_approve": change.auto_approve,
                        "assessment": change.assessment,
                        "note": change.note,
                    }
                    for change in space.pending_changes
                ],
                "deployments_recorded": len(space.deployment_history),
            }
            for space in result.per_space
        ],
    }


if __name__ == "__main__":
    app()
