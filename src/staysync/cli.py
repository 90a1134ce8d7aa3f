"""CLI for StaySync: sync feeds, export calendars, assign cleaning tasks."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import click

from staysync import __version__
from staysync.cleaning.models import AssignmentStrategy
from staysync.config import CONFIG_FILENAME, ConfigError, StaySyncConfig, load_config
from staysync.core.logging import configure_logging
from staysync.errors import PreconditionError, StaySyncError
from staysync.feeds.export import ExportVariant
from staysync.services import Services, open_services

logger = logging.getLogger(__name__)

_DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M", "%Y-%m-%dT%H:%M:%S"]

config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help=f"Path to {CONFIG_FILENAME} (or its directory). Defaults to ./{CONFIG_FILENAME}.",
)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """StaySync: OTA calendar sync, feed export and cleaning auto-assignment."""


def _load(config_path: Path | None) -> StaySyncConfig:
    """Load config, falling back to defaults when no file is present."""
    if config_path is None:
        default_path = Path.cwd() / CONFIG_FILENAME
        if not default_path.exists():
            config = StaySyncConfig()
            configure_logging(config.logging.level, config.logging.format)
            return config
        config_path = default_path
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    configure_logging(config.logging.level, config.logging.format, config.logging.log_root)
    return config


def _run(config: StaySyncConfig, action: Callable[[Services], Awaitable[Any]]) -> Any:
    """Open services, run *action*, close services; map failures to exit codes."""

    async def _main() -> Any:
        services = await open_services(config)
        try:
            return await action(services)
        finally:
            await services.close()

    try:
        return asyncio.run(_main())
    except PreconditionError as exc:
        raise click.ClickException(f"{exc.code}: {exc.message}") from exc
    except (StaySyncError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc
    except Exception as exc:
        logger.exception("Unexpected failure")
        raise click.ClickException(f"Unexpected error: {exc}") from exc


@cli.command()
@click.option("--property", "property_ids", multiple=True, help="Property id to sync (repeatable)")
@click.option("--all", "sync_all", is_flag=True, help="Sync every active calendar source")
@click.option("--debug", is_flag=True, help="Include parsed event samples in the output")
@config_option
def sync(
    property_ids: tuple[str, ...], sync_all: bool, debug: bool, config_path: Path | None
) -> None:
    """Pull OTA feeds and reconcile them into reservations."""
    if sync_all == bool(property_ids):
        raise click.UsageError("Pass either --property ID or --all")
    config = _load(config_path)
    selection = None if sync_all else list(property_ids)

    batch = _run(config, lambda services: services.engine.sync_all(selection, debug=debug))
    click.echo(batch.model_dump_json(indent=2))
    if batch.failed_sources:
        sys.exit(1)


@cli.command()
@click.argument("property_id")
@click.option(
    "--variant",
    type=click.Choice([v.value for v in ExportVariant]),
    default=ExportVariant.BLOCKS.value,
    show_default=True,
)
@click.option(
    "--output",
    "output_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the .ics here instead of stdout",
)
@config_option
def export(
    property_id: str, variant: str, output_path: Path | None, config_path: Path | None
) -> None:
    """Render a property's outbound iCalendar feed."""
    config = _load(config_path)
    exported = _run(
        config, lambda services: services.exporter.export_calendar(property_id, variant)
    )
    if output_path is None:
        click.echo(exported.content, nl=False)
        return
    output_path.write_bytes(exported.content.encode("utf-8"))
    click.echo(f"Wrote {exported.event_count} event(s) to {output_path} (etag {exported.etag})")


@cli.command()
@click.argument("property_id")
@click.option("--from", "from_date", type=click.DateTime(formats=_DATE_FORMATS), required=True)
@click.option("--to", "to_date", type=click.DateTime(formats=_DATE_FORMATS), required=True)
@click.option(
    "--strategy",
    type=click.Choice([s.value for s in AssignmentStrategy]),
    default=None,
    help="Override the configured assignment strategy",
)
@config_option
def assign(
    property_id: str,
    from_date: datetime,
    to_date: datetime,
    strategy: str | None,
    config_path: Path | None,
) -> None:
    """Auto-assign unassigned cleaning tasks in [FROM, TO)."""
    config = _load(config_path)
    result = _run(
        config,
        lambda services: services.scheduler.auto_assign(
            property_id, from_date, to_date, strategy=strategy
        ),
    )
    click.echo(result.message)
    for planned in result.assignments:
        click.echo(f"  {planned.task_id} -> {planned.cleaner_id}")


@cli.command()
@config_option
def migrate(config_path: Path | None) -> None:
    """Create the database if needed and apply schema migrations."""
    from staysync.db import Database
    from staysync.migrations import run_migrations

    config = _load(config_path)
    db = Database.from_env(config.db_name, schema=config.db_schema)
    asyncio.run(db.provision())
    run_migrations(db.dsn(), schema=config.db_schema)
    click.echo(f"Database {config.db_name} is up to date")


@cli.command()
@click.option("--host", default=None, help="Bind host (defaults to config)")
@click.option("--port", type=int, default=None, help="Bind port (defaults to config)")
@config_option
def serve(host: str | None, port: int | None, config_path: Path | None) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from staysync.api.app import create_app

    config = _load(config_path)
    uvicorn.run(
        create_app(config),
        host=host or config.api.host,
        port=port or config.api.port,
        log_config=None,
    )
