"""
Command-line interface for miser.

Provides commands to run the alert sync loop, run a single pass,
validate configuration, and check store connectivity.

Usage:
    miser run            # Run the sync loop with a metrics server
    miser run-once       # Run one pass and exit
    miser check-config   # Validate the config file and list channels
    miser health         # Check the alert store answers
"""

import asyncio
import signal
import sys

import click
from pydantic import ValidationError

from src.config.settings import ConfigError, Settings, get_settings
from src.observability.logging import setup_logging
from src.observability.metrics import get_metrics


def _load_settings(path: str | None) -> Settings:
    try:
        return get_settings(path)
    except FileNotFoundError as e:
        raise click.ClickException(f"Config file not found: {e.filename}") from e
    except (ConfigError, ValidationError) as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--config",
    "config_path",
    default=None,
    envvar="MISER_CONFIG",
    help="Path to configuration file (default: config.yaml)",
)
@click.pass_context
def main(ctx: click.Context, debug: bool, config_path: str | None) -> None:
    """Miser - reconcile stored alerts and deliver them to notifiers."""
    settings = _load_settings(config_path)
    if debug:
        settings = settings.model_copy(update={"log_level": "DEBUG"})

    setup_logging(settings)
    ctx.obj = {"settings": settings}


@main.command()
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
@click.pass_context
def run(ctx: click.Context, metrics: bool, metrics_port: int | None) -> None:
    """Run the sync loop until interrupted."""
    from src.alerts.errors import UnsupportedChannelError
    from src.services.sync_service import SyncService

    settings: Settings = ctx.obj["settings"]

    try:
        service = SyncService.from_settings(settings)
    except UnsupportedChannelError as e:
        raise click.ClickException(str(e)) from e

    async def run_service():
        if metrics:
            get_metrics().start_server(port=metrics_port, settings=settings)

        # Handle shutdown signals
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.create_task(service.stop()))

        await service.start()

    asyncio.run(run_service())


@main.command("run-once")
@click.option("--dry-run", is_flag=True, help="Fetch and reconcile only; notify and delete nothing")
@click.pass_context
def run_once(ctx: click.Context, dry_run: bool) -> None:
    """Run a single sync pass and exit."""
    from src.alerts.errors import MiserError
    from src.alerts.reconciler import reconcile
    from src.alerts.store import AlertStore
    from src.services.sync_service import SyncService

    settings: Settings = ctx.obj["settings"]

    async def run_dry() -> bool:
        async with AlertStore.from_settings(settings) as store:
            records = await asyncio.wait_for(
                store.fetch(), timeout=settings.fetch_timeout_seconds,
            )
        result = reconcile(records)

        click.echo(f"Fetched {len(records)} records from {settings.alerts_index}")
        click.echo(f"\nWould notify ({len(result.to_notify)}):")
        for alert in result.to_notify:
            click.echo(
                f"  {alert.record_id}  {alert.status:<8}  {alert.rule_id}  "
                f"{alert.triggered_at.isoformat()}"
            )
        click.echo(f"\nWould delete ({len(result.to_delete)}):")
        for record_id in result.to_delete:
            click.echo(f"  {record_id}")
        click.echo(f"\nPending active alerts: {len(result.pending)}")
        return True

    async def run_pass() -> bool:
        service = SyncService.from_settings(settings)
        async with service.store:
            report = await service.run_once()
            await service.dispatcher.drain()

        outcomes = service.dispatcher.outcomes()
        click.echo(
            f"Fetched {report.fetched}, notified {report.notified}, "
            f"deleted {report.deleted}, pending {report.pending}"
        )
        for (channel_type, name), ok in sorted(outcomes.items()):
            color = "green" if ok else "red"
            state = "delivered" if ok else "failed"
            click.echo(click.style(f"  {channel_type}/{name}: {state}", fg=color))

        return all(outcomes.values())

    try:
        ok = asyncio.run(run_dry() if dry_run else run_pass())
    except (MiserError, asyncio.TimeoutError) as e:
        raise click.ClickException(f"Sync pass failed: {str(e) or type(e).__name__}") from e

    if not ok:
        sys.exit(1)


@main.command("check-config")
@click.pass_context
def check_config(ctx: click.Context) -> None:
    """Validate configuration and list notification channels."""
    from src.alerts.channels import build_channels
    from src.alerts.errors import UnsupportedChannelError

    settings: Settings = ctx.obj["settings"]

    try:
        channels = build_channels(settings.notifiers)
    except UnsupportedChannelError as e:
        raise click.ClickException(str(e)) from e

    click.echo("\nConfiguration:")
    click.echo("-" * 40)
    click.echo(f"  Store:          {settings.es_host}")
    click.echo(f"  Index:          {settings.alerts_index}")
    click.echo(f"  Sync interval:  {settings.sync_interval_seconds:g}s")
    click.echo(f"  Fetch timeout:  {settings.fetch_timeout_seconds:g}s")
    click.echo(f"  Metrics:        {settings.metrics_host}:{settings.metrics_port}")
    click.echo(f"\nChannels ({len(channels)}):")
    for channel, config in zip(channels, settings.notifiers):
        click.echo(
            f"  {channel.channel_type}/{channel.name}  "
            f"endpoint={config.endpoint}  retries={config.retries}"
        )
    if not channels:
        click.echo(click.style("  No notifiers configured", fg="yellow"))
    click.echo("-" * 40)
    click.echo(click.style("Configuration OK", fg="green"))


@main.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Check that the alert store is reachable."""
    from src.alerts.store import AlertStore

    settings: Settings = ctx.obj["settings"]

    async def check() -> bool:
        async with AlertStore.from_settings(settings) as store:
            return await store.health_check()

    healthy = asyncio.run(check())

    click.echo("\nHealth Check Results:")
    click.echo("-" * 40)
    icon = "✓" if healthy else "✗"
    color = "green" if healthy else "red"
    click.echo(click.style(f"  {icon} alert store ({settings.es_host}): {healthy}", fg=color))
    click.echo("-" * 40)

    sys.exit(0 if healthy else 1)


if __name__ == "__main__":
    main()
