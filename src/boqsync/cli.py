"""Command-line interface for boqsync."""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import BoqSyncConfig, create_sample_config, load_config
from .core.synchronizer import Synchronizer
from .error_handling import BoqSyncError, ConfigurationError, graceful_exit, handle_error
from .models import EntityKind, SubmittableEntity

console = Console()

KIND_CHOICE = click.Choice([kind.value for kind in EntityKind], case_sensitive=False)


def setup_logging(
    *,
    verbose: bool = False,
    config: BoqSyncConfig | None = None,
) -> None:
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO

    # Clean up existing handlers first to prevent resource leaks
    cleanup_logging()

    show_path = level == logging.DEBUG
    handlers: list[logging.Handler] = [
        RichHandler(console=console, rich_tracebacks=True, show_path=show_path),
    ]

    if config and config.log_dir:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(config.log_dir / "boqsync.log")
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            ),
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )


def cleanup_logging() -> None:
    """Clean up logging handlers to prevent ResourceWarnings."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        if isinstance(handler, logging.FileHandler):
            handler.close()
            root_logger.removeHandler(handler)


def create_synchronizer(config: BoqSyncConfig) -> Synchronizer:
    """Build the synchronizer used by every command."""
    return Synchronizer(config)


def parse_fields(fields: tuple[str, ...]) -> dict[str, Any]:
    """Turn ``key=value`` pairs into a payload; JSON values are decoded."""
    payload: dict[str, Any] = {}
    for pair in fields:
        key, sep, raw = pair.partition("=")
        if not sep or not key.strip():
            msg = f"Expected key=value, got {pair!r}"
            raise click.BadParameter(msg, param_hint="--field")
        try:
            value = json.loads(raw)
        except ValueError:
            value = raw
        payload[key.strip()] = value
    return payload


def _run(coro: Any) -> Any:
    """Run a coroutine, reporting boqsync errors and exiting non-zero."""
    try:
        return asyncio.run(coro)
    except BoqSyncError as e:
        handle_error(e)
        graceful_exit(1)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Configuration file path",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, config: Path | None, verbose: bool) -> None:
    """boqsync - Offline-tolerant submission queue for shop and material approvals."""
    try:
        ctx.ensure_object(dict)
        loaded_config = load_config(config)
        ctx.obj["config"] = loaded_config
        ctx.obj["verbose"] = verbose

        loaded_config.ensure_directories()
        setup_logging(verbose=verbose, config=loaded_config)
    except (OSError, ValueError, RuntimeError) as e:
        config_error = ConfigurationError(
            f"Failed to load configuration: {e}",
            config_path=config,
            solution="Run 'boqsync config validate' to check your configuration file",
        )
        console.print(f"[red]Configuration Error:[/red] {config_error}")
        sys.exit(1)


@cli.group("config")
@click.pass_context
def config_cmd(ctx: click.Context) -> None:
    """Configuration management commands."""


@config_cmd.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration."""
    config: BoqSyncConfig = ctx.obj["config"]

    table = Table()
    table.add_column("Setting")
    table.add_column("Value")

    table.add_row("API URL", config.api_base_url)
    table.add_row("Request Timeout", f"{config.request_timeout:g}s")
    table.add_row("Data Directory", str(config.data_dir))
    table.add_row("Log Directory", str(config.log_dir))
    table.add_row("Credential File", str(config.credential_file))
    table.add_row("Flush Cooldown", f"{config.flush_min_interval:g}s")
    table.add_row("Flush Attempts", str(config.flush_max_attempts))
    table.add_row("Watch Interval", f"{config.flush_check_interval:g}s")

    console.print(table)


@config_cmd.command("validate")
@click.pass_context
def config_validate(ctx: click.Context) -> None:
    """Validate current configuration."""
    config: BoqSyncConfig = ctx.obj["config"]

    console.print("[bold]Configuration Validation[/bold]")

    errors = []

    for name, path in [
        ("Data", config.data_dir),
        ("Log", config.log_dir),
        ("Credential", config.credential_file.parent),
    ]:
        try:
            path.mkdir(parents=True, exist_ok=True)
            console.print(f"[green]✓[/green] {name} directory: {path}")
        except OSError as e:
            console.print(f"[red]✗[/red] {name} directory: {e}")
            errors.append(f"{name} directory: {e}")

    console.print(f"[green]✓[/green] API URL: {config.api_base_url}")

    if config.credential_file.exists():
        console.print(f"[green]✓[/green] Credential file: {config.credential_file}")
    else:
        console.print(
            f"[yellow]⚠[/yellow] No credential yet at {config.credential_file}; "
            "submissions will be queued until you log in",
        )

    if config.flush_max_attempts == 0:
        console.print("[yellow]⚠[/yellow] flush_max_attempts is 0; queued submissions will never be sent")

    if errors:
        console.print(f"\n[red]Found {len(errors)} configuration errors[/red]")
        sys.exit(1)
    else:
        console.print("\n[green]Configuration is valid[/green]")


@config_cmd.command("init")
@click.option(
    "--path",
    "-p",
    type=click.Path(path_type=Path),
    default=Path.home() / ".config" / "boqsync" / "config.toml",
    help="Path for the configuration file",
)
def config_init(path: Path) -> None:
    """Create a sample configuration file."""
    try:
        create_sample_config(path)
        console.print(f"[green]Created sample configuration at {path}[/green]")
        console.print("Please edit the configuration file with your settings.")
    except OSError as e:
        console.print(f"[red]Error creating configuration: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show credential, queue and server status."""
    config: BoqSyncConfig = ctx.obj["config"]
    synchronizer = create_synchronizer(config)

    console.print("[bold]System Status[/bold]")
    console.print(f"🌐 API: {config.api_base_url}")
    if synchronizer.credentials.has_credential():
        console.print("🔑 Credential: [green]Present[/green]")
    else:
        console.print("🔑 Credential: [yellow]Not logged in[/yellow]")

    reachable = _run(synchronizer.cache.refresh_all())
    if not reachable:
        console.print("[yellow]⚠ Could not reach the approval service; server counts may be stale[/yellow]")

    info = synchronizer.get_status()

    console.print("\n[bold]Queued Submissions[/bold]")
    if info["total_queued"]:
        table = Table()
        table.add_column("Kind")
        table.add_column("Queued", justify="right")
        for kind, count in info["queue_stats"].items():
            table.add_row(kind.title(), str(count))
        console.print(table)
    else:
        console.print("Queue is empty")

    console.print("\n[bold]Server State[/bold]")
    table = Table()
    table.add_column("List")
    table.add_column("Count", justify="right")
    for name, count in info["cache_stats"].items():
        table.add_row(name.replace("_", " ").title(), str(count))
    console.print(table)


@cli.command()
@click.argument("kind", type=KIND_CHOICE)
@click.option(
    "--field",
    "-f",
    "fields",
    multiple=True,
    required=True,
    help="Field as key=value (repeatable)",
)
@click.pass_context
def submit(ctx: click.Context, kind: str, fields: tuple[str, ...]) -> None:
    """Submit a new shop or material for approval."""
    config: BoqSyncConfig = ctx.obj["config"]
    entity_kind = EntityKind(kind.lower())
    payload = parse_fields(fields)

    synchronizer = create_synchronizer(config)
    entity = _run(synchronizer.facade.submit_for_approval(entity_kind, payload))

    if entity is None:
        console.print(
            f"[yellow]Could not reach the server; {entity_kind.value} queued for later delivery[/yellow]",
        )
    else:
        console.print(f"[green]Submitted {entity}[/green] (id {entity.entity_id})")


@cli.command("list")
@click.argument("kind", type=KIND_CHOICE)
@click.option("--pending", is_flag=True, help="Show records awaiting approval")
@click.pass_context
def list_entities(ctx: click.Context, kind: str, pending: bool) -> None:
    """List shops or materials known to the server."""
    config: BoqSyncConfig = ctx.obj["config"]
    entity_kind = EntityKind(kind.lower())
    synchronizer = create_synchronizer(config)
    cache = synchronizer.cache

    if pending:
        ok = _run(cache.refresh_pending(entity_kind))
        entities = cache.pending_approval(entity_kind)
    else:
        ok = _run(cache.refresh_confirmed(entity_kind))
        entities = cache.confirmed(entity_kind)

    if not ok:
        console.print(f"[red]Could not fetch {entity_kind.collection} from the server[/red]")
        sys.exit(1)

    if not entities:
        console.print(f"No {'pending ' if pending else ''}{entity_kind.collection}")
        return

    console.print(format_entity_table(entities))


@cli.command()
@click.argument("kind", type=KIND_CHOICE)
@click.argument("entity_id")
@click.pass_context
def approve(ctx: click.Context, kind: str, entity_id: str) -> None:
    """Approve a pending shop or material."""
    config: BoqSyncConfig = ctx.obj["config"]
    entity_kind = EntityKind(kind.lower())
    synchronizer = create_synchronizer(config)

    _run(synchronizer.facade.approve(entity_kind, entity_id))
    console.print(f"[green]Approved {entity_kind.value} {entity_id}[/green]")


@cli.command()
@click.argument("kind", type=KIND_CHOICE)
@click.argument("entity_id")
@click.option("--reason", "-r", help="Reason shown to the submitter")
@click.pass_context
def reject(ctx: click.Context, kind: str, entity_id: str, reason: str | None) -> None:
    """Reject a pending shop or material."""
    config: BoqSyncConfig = ctx.obj["config"]
    entity_kind = EntityKind(kind.lower())
    synchronizer = create_synchronizer(config)

    _run(synchronizer.facade.reject(entity_kind, entity_id, reason))
    console.print(f"[green]Rejected {entity_kind.value} {entity_id}[/green]")


@cli.command()
@click.argument("kind", type=KIND_CHOICE)
@click.argument("entity_id")
@click.pass_context
def delete(ctx: click.Context, kind: str, entity_id: str) -> None:
    """Delete a shop or material, or drop it from the queue if unsent."""
    config: BoqSyncConfig = ctx.obj["config"]
    entity_kind = EntityKind(kind.lower())
    synchronizer = create_synchronizer(config)

    _run(synchronizer.facade.delete_entity(entity_kind, entity_id))
    console.print(f"[green]Deleted {entity_kind.value} {entity_id}[/green]")


@cli.group()
@click.pass_context
def queue(ctx: click.Context) -> None:
    """Queued submission commands."""


@queue.command("list")
@click.pass_context
def queue_list(ctx: click.Context) -> None:
    """List submissions waiting to be delivered."""
    config: BoqSyncConfig = ctx.obj["config"]
    synchronizer = create_synchronizer(config)

    entries = synchronizer.store.all_pending()
    if not entries:
        console.print("Queue is empty")
        return

    table = Table()
    table.add_column("Local ID")
    table.add_column("Kind")
    table.add_column("Name")
    table.add_column("Queued")

    for entry in entries:
        table.add_row(
            entry.local_id,
            entry.kind.value.title(),
            str(entry.payload.get("name") or "-"),
            entry.queued_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@queue.command("discard")
@click.argument("local_id")
@click.pass_context
def queue_discard(ctx: click.Context, local_id: str) -> None:
    """Drop a queued submission without sending it."""
    config: BoqSyncConfig = ctx.obj["config"]
    synchronizer = create_synchronizer(config)

    if synchronizer.facade.discard_queued(local_id):
        console.print(f"[green]Discarded {local_id}[/green]")
    else:
        console.print(f"[red]No queued submission {local_id}[/red]")
        sys.exit(1)


@queue.command("clear")
@click.option(
    "--yes",
    "-y",
    is_flag=True,
    help="Skip confirmation prompt",
)
@click.pass_context
def queue_clear(ctx: click.Context, yes: bool) -> None:
    """Drop every queued submission."""
    config: BoqSyncConfig = ctx.obj["config"]
    synchronizer = create_synchronizer(config)

    if yes or click.confirm("Are you sure you want to discard every queued submission?"):
        count = synchronizer.store.clear()
        console.print(f"[green]Cleared {count} queued submissions[/green]")


@queue.command("health")
@click.pass_context
def queue_health(ctx: click.Context) -> None:
    """Check the queue database."""
    config: BoqSyncConfig = ctx.obj["config"]
    synchronizer = create_synchronizer(config)
    store = synchronizer.store

    health = store.check_database_health()

    if health["database_exists"]:
        console.print(f"[green]✓[/green] Database file exists: {store.db_path}")
    else:
        console.print(f"[red]✗[/red] Database file missing: {store.db_path}")
        return

    if health["table_exists"]:
        console.print("[green]✓[/green] queue_entries table exists")
    else:
        console.print("[red]✗[/red] queue_entries table missing")

    if health["integrity_check"]:
        console.print("[green]✓[/green] Database integrity check passed")
    else:
        console.print("[red]✗[/red] Database integrity check failed")

    if "error" in health:
        console.print(f"[red]Error during health check: {health['error']}[/red]")


@cli.command()
@click.pass_context
def flush(ctx: click.Context) -> None:
    """Try to deliver queued submissions now."""
    config: BoqSyncConfig = ctx.obj["config"]
    synchronizer = create_synchronizer(config)

    outcome = _run(synchronizer.flush())
    if not outcome.ran:
        console.print(f"[yellow]Nothing sent: {outcome.skipped_reason}[/yellow]")
        return

    console.print(
        f"[green]Delivered {outcome.delivered}[/green], {outcome.retained} still queued",
    )


@cli.command()
@click.option(
    "--interval",
    "-i",
    type=float,
    default=None,
    help="Seconds between queue checks (default from config)",
)
@click.pass_context
def watch(ctx: click.Context, interval: float | None) -> None:
    """Stay running and deliver queued submissions when possible."""
    config: BoqSyncConfig = ctx.obj["config"]
    synchronizer = create_synchronizer(config)

    console.print("[green]Watching for credentials and queued submissions[/green]")
    console.print("Press Ctrl+C to stop")

    try:
        _run(synchronizer.run(interval))
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping...[/yellow]")
        synchronizer.stop()


def get_status_color(status: object) -> str:
    """Get color code for status display."""
    status_colors = {
        "pending": "yellow",
        "approved": "green",
        "rejected": "red",
    }
    status_str = status.value if hasattr(status, "value") else str(status)
    return status_colors.get(status_str.lower(), "white")


def format_entity_table(entities: tuple[SubmittableEntity, ...]) -> Table:
    """Format server records as a rich table."""
    table = Table()
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Reason")

    for entity in entities:
        color = get_status_color(entity.status)
        table.add_row(
            entity.entity_id,
            entity.name or "-",
            f"[{color}]{entity.status.value.title()}[/{color}]",
            entity.rejection_reason or "",
        )

    return table


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
