"""Command-line interface for mailgate.

Provides commands for configuration validation, the API server, background
workers, and one-shot maintenance of the ledger and the list cache.

Usage:
    python -m mailgate validate-config
    python -m mailgate serve
    python -m mailgate workers
    python -m mailgate sweep-cache
    python -m mailgate expire-executions
    python -m mailgate inspect-executions --status confirmed
"""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.table import Table

from mailgate.config import validate_config_file
from mailgate.core.logging import configure_logging

if TYPE_CHECKING:
    from mailgate.web.app import Services

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "confirmed": "cyan",
    "canceled": "red",
    "executed": "green",
}


async def _init_cli_services() -> Services:
    """Load config and open the store.

    Prints actionable error messages and calls sys.exit(1) on failure.
    """
    from mailgate.config import get_config
    from mailgate.core.errors import DatabaseError
    from mailgate.web.app import build_services

    # 1. Load config
    try:
        config = get_config()
    except Exception as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Fix config/config.yaml (or MAILGATE_CONFIG_PATH) and run "
            "[cyan]validate-config[/cyan]."
        )
        sys.exit(1)

    # 2. Initialize database and services
    try:
        return await build_services(config)
    except DatabaseError as e:
        console.print(f"[red]Database error:[/red] {e}")
        sys.exit(1)


def _run(coro) -> None:
    """Run a command coroutine with the shared interrupt/error handling."""
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(1)


def _format_ms(value: int | None) -> str:
    if not value:
        return "-"
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M:%S")


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
def cli(debug: bool) -> None:
    """mailgate - confirmation gate and list cache for a chat mail assistant."""
    log_level = "DEBUG" if debug else "INFO"
    # Use human-readable output for CLI, JSON for server
    configure_logging(log_level=log_level, json_output=False)


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file.

    Checks the YAML and environment overrides against the Pydantic schema.
    Reports specific errors for invalid fields.
    """
    if config_path:
        console.print(f"Validating config: [cyan]{config_path}[/cyan]")
    else:
        console.print("Validating config: [cyan]config/config.yaml[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    else:
        console.print(f"\n[red]✗[/red] {message}")
        sys.exit(1)


@cli.command("serve")
@click.option(
    "--host",
    default="127.0.0.1",
    help="Host to bind to (default: localhost only for security)",
)
@click.option(
    "--port",
    default=8000,
    type=int,
    help="Port to bind to",
)
def serve(host: str, port: int) -> None:
    """Start the HTTP API with the expiry watcher and cache sweeper."""
    import uvicorn

    from mailgate.config import get_config
    from mailgate.web.app import create_app

    if host == "0.0.0.0":  # noqa: S104
        console.print(
            "[yellow]Warning:[/yellow] Binding to 0.0.0.0 exposes the server to the network.\n"
            "The API has no authentication. Use 127.0.0.1 for local-only access."
        )

    try:
        log_config = get_config().logging
        configure_logging(log_level=log_config.level, json_output=log_config.json_output)
    except Exception as e:
        console.print(f"[red]Config error:[/red] {e}")
        sys.exit(1)

    app = create_app()
    console.print(f"Starting server on [cyan]http://{host}:{port}[/cyan]")
    uvicorn.run(app, host=host, port=port, log_level="info")


@cli.command("workers")
def workers() -> None:
    """Run the expiry watcher and cache sweeper without the HTTP API."""
    _run(_run_workers())


async def _run_workers() -> None:
    """Run background jobs until SIGINT/SIGTERM."""
    import signal

    from mailgate.engine.scheduler import build_scheduler

    services = await _init_cli_services()
    config = services.config

    scheduler = build_scheduler(services.watcher, services.sweeper, config)
    scheduler.start()

    interval, jitter = services.sweeper.schedule()
    console.print(
        f"Expiry watcher every {config.safety.expiry_sweep_seconds}s, "
        f"cache sweeper every {interval}-{interval + jitter}s. Press Ctrl+C to stop."
    )

    # Wait until interrupted
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, stop_event.set)
    loop.add_signal_handler(signal.SIGTERM, stop_event.set)
    await stop_event.wait()

    scheduler.shutdown(wait=False)
    await services.store.checkpoint_wal()


@cli.command("sweep-cache")
def sweep_cache() -> None:
    """Delete expired list-cache rows once and print the counts."""
    _run(_run_sweep_cache())


async def _run_sweep_cache() -> None:
    services = await _init_cli_services()
    cache_config = services.config.cache
    result = await services.sweeper.sweep()
    console.print(
        f"[cache.sweep] table=email_list_cache expired={result.expired} "
        f"deleted={result.deleted} grace={cache_config.sweep_grace_seconds} "
        f"max={cache_config.max_delete_per_sweep}",
        markup=False,
    )


@cli.command("expire-executions")
def expire_executions() -> None:
    """Cancel confirmed actions past their deadline once."""
    _run(_run_expire_executions())


async def _run_expire_executions() -> None:
    services = await _init_cli_services()
    result = await services.watcher.run_once()
    console.print(
        f"[safety.expiry] found={result.found} canceled={result.canceled} "
        f"notified={result.notified} errors={result.errors}",
        markup=False,
    )
    if result.errors:
        sys.exit(1)


@cli.command("inspect-executions")
@click.option(
    "--status",
    type=click.Choice(["pending", "confirmed", "canceled", "executed"]),
    default=None,
    help="Only show executions in this status",
)
@click.option("--limit", default=50, type=int, help="Number of rows to show")
def inspect_executions(status: str | None, limit: int) -> None:
    """Show the most recent executions."""
    _run(_run_inspect_executions(status, limit))


async def _run_inspect_executions(status: str | None, limit: int) -> None:
    services = await _init_cli_services()
    records = await services.ledger.recent(limit=limit, status=status)

    if not records:
        console.print("[dim]No executions recorded.[/dim]")
        return

    table = Table(title=f"Recent executions ({len(records)})")
    table.add_column("Status")
    table.add_column("Action")
    table.add_column("Trace ID", style="cyan")
    table.add_column("Created")
    table.add_column("Updated")
    table.add_column("Reason")

    for record in records:
        style = STATUS_STYLES.get(record.status, "white")
        table.add_row(
            f"[{style}]{record.status.upper()}[/{style}]",
            record.action,
            record.trace_id,
            _format_ms(record.created_at),
            _format_ms(record.updated_at),
            record.reason or "",
        )

    console.print(table)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
