"""
Main entry point for the badge scheduler service.

    badge-engine run <project> [--once] [--dry-run] [--export-only] [--serve]
    badge-engine show-config <project>
"""

import asyncio
import signal
from typing import Optional

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

import structlog

from ..core.config import ProjectConfig, load_project_config, settings
from ..core.exceptions import ConfigurationError
from ..core.logging import setup_logging
from ..services.pipeline import RunOutcome, RunStatus, run_once
from ..services.result_sender import SendOptions
from .badge_scheduler import BadgeScheduler


console = Console()
logger = structlog.get_logger(__name__)
app = typer.Typer(help="Holder badge scheduler")


def print_outcome(outcome: RunOutcome) -> None:
    color = {
        RunStatus.SUCCESS: "green",
        RunStatus.RETRY_FAILURE: "yellow",
        RunStatus.ERROR: "red",
    }[outcome.status]
    console.print(f"[{color}]Run finished: {outcome.status.value}[/{color}]")
    if outcome.error:
        console.print(f"  {outcome.error}")

    result = outcome.result
    if result is None:
        return

    table = Table(title="Eligibility")
    table.add_column("Tier")
    table.add_column("Handles", justify="right")
    table.add_column("Addresses", justify="right")
    table.add_row("basic", str(len(result.basic_handles)), str(len(result.basic_addresses)))
    if result.has_upgraded_tier:
        table.add_row("upgraded", str(len(result.upgraded_handles)), str(len(result.upgraded_addresses)))
    console.print(table)


async def serve_forever(scheduler: BadgeScheduler, serve: bool) -> None:
    """Run the scheduler (and optionally the status API) until SIGINT/SIGTERM."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_event.set)
        except NotImplementedError:
            # Not available on Windows event loops
            pass

    if serve:
        from ..api.main import create_app

        server = uvicorn.Server(uvicorn.Config(
            create_app(scheduler),
            host=settings.host,
            port=settings.port,
            log_config=None,
        ))
        # uvicorn installs its own signal handlers; its exit ends the service
        await server.serve()
        return

    await scheduler.start()
    try:
        await stop_event.wait()
        logger.info("Shutdown signal received")
    finally:
        await scheduler.stop()


def _load(project: str) -> ProjectConfig:
    try:
        return load_project_config(project)
    except ConfigurationError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1)


@app.command()
def run(
    project: str = typer.Argument(..., help="Project name under config/badges, or a JSON file path"),
    once: bool = typer.Option(False, "--once", help="Run a single time and exit"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Compute results but do not send them"),
    export_only: bool = typer.Option(False, "--export-only", help="Write results to files instead of sending"),
    serve: bool = typer.Option(False, "--serve", help="Expose the status API while scheduling"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Also log to this file"),
):
    """Run the badge pipeline for a project."""
    setup_logging(log_file)
    config = _load(project)
    options = SendOptions(dry_run=dry_run, export_only=export_only)

    if once:
        outcome = asyncio.run(run_once(config, options=options))
        print_outcome(outcome)
        raise typer.Exit(code=0 if outcome.is_success else 1)

    async def _main():
        scheduler = BadgeScheduler(
            config,
            options=options,
            on_schedule=lambda next_run: console.print(f"Next run scheduled for {next_run.isoformat()}"),
        )
        await serve_forever(scheduler, serve)

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down")


@app.command("show-config")
def show_config(project: str = typer.Argument(..., help="Project name or JSON file path")):
    """Print a project's badge requirements."""
    config = _load(project)

    table = Table(title=f"{config.project_name} badges")
    table.add_column("Tier")
    table.add_column("Kind")
    table.add_column("Asset")
    table.add_column("Min balance", justify="right")

    tiers = [("basic", config.badges.basic)]
    if config.badges.upgraded is not None:
        tiers.append(("upgraded", config.badges.upgraded))
    for name, tier in tiers:
        for token in tier.tokens:
            table.add_row(name, "token", f"{token.symbol} ({token.address})", str(token.min_balance))
        for nft in tier.nfts:
            table.add_row(name, "nft", f"{nft.name} ({nft.address})", str(nft.min_balance))

    console.print(table)
    console.print(
        f"sum_of_balances={config.sum_of_balances} "
        f"exclude_basic_for_upgraded={config.exclude_basic_for_upgraded} "
        f"interval={config.scheduler.interval_hours}h retry={config.scheduler.retry_interval_hours}h"
    )


def main():
    app()


if __name__ == "__main__":
    main()
