#!/usr/bin/env python3
"""
Schniffer - Campsite Availability Monitor - Main Entry Point

Usage:
    python main.py run --config config/config.yaml
    python main.py poll
    python main.py check recreation_gov 232447 2030-08-01 2030-08-05
"""
import asyncio
import logging
import sys
from datetime import date

import click
from dateutil import parser as date_parser
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from schniffer import __version__
from schniffer.app import AppContext
from schniffer.common.config import load_config, KNOWN_PROVIDERS
from schniffer.common.errors import SchnifferError
from schniffer.common.models import Subscription, normalize_day
from schniffer.providers import create_http_client, build_registry

console = Console()


def setup_logging(level: str = "INFO", log_file: str = None):
    """Configure logging"""
    handlers = [RichHandler(console=console, rich_tracebacks=True)]

    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(message)s",
        handlers=handlers
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def parse_day(ctx, param, value):
    """click callback: ISO dates or instants -> UTC days"""
    def convert(raw: str) -> date:
        try:
            return normalize_day(date_parser.isoparse(raw))
        except ValueError:
            raise click.BadParameter(f"not an ISO date: {raw}")

    if isinstance(value, tuple):
        return [convert(v) for v in value]
    return convert(value)


provider_choice = click.Choice(KNOWN_PROVIDERS)


@click.group()
@click.option("--config", "-c", default=None, help="Path to config file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(__version__)
@click.pass_context
def cli(ctx, config, verbose):
    """
    Schniffer

    Watch campsite reservation sites and get notified when sites open up.
    """
    ctx.ensure_object(dict)

    try:
        cfg = load_config(config)
        ctx.obj["config"] = cfg
        setup_logging(
            level="DEBUG" if verbose else cfg.logging.level,
            log_file=cfg.logging.file
        )
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {config}[/red]")
        console.print("Create a config file from config/config.example.yaml")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.pass_context
def run(ctx):
    """Run polling, catalog sync and the daily digest until interrupted"""
    cfg = ctx.obj["config"]

    async def main():
        async with AppContext(cfg) as app:
            app.install_signal_handlers()
            console.print(Panel(
                f"🏕️ Schniffer {__version__}\n\n"
                f"Providers: {', '.join(app.registry.names())}\n"
                f"Poll interval: {cfg.polling.interval_seconds:.0f}s\n\n"
                f"Press Ctrl+C to stop",
                style="green"
            ))
            await app.run()

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")


@cli.command()
@click.pass_context
def poll(ctx):
    """Run a single polling cycle"""
    cfg = ctx.obj["config"]

    async def main():
        async with AppContext(cfg) as app:
            result = await app.manager.poll_once()

        table = Table(title=f"Poll cycle ({result.duration:.2f}s)")
        table.add_column("Campground")
        table.add_column("Calls", justify="right")
        table.add_column("Cells", justify="right")
        table.add_column("Events", justify="right")
        table.add_column("Status")

        for pair in result.pairs:
            status = "[green]ok[/green]" if pair.success else f"[red]{pair.error}[/red]"
            table.add_row(str(pair.pair), str(pair.calls), str(pair.cells), str(pair.events), status)

        if result.pairs:
            console.print(table)
        else:
            console.print("[yellow]No active subscriptions[/yellow]")

    asyncio.run(main())


@cli.command()
@click.argument("provider", type=provider_choice)
@click.argument("days", nargs=-1, required=True, callback=parse_day)
@click.pass_context
def plan(ctx, provider, days):
    """Show how a provider buckets the given days"""
    cfg = ctx.obj["config"]

    async def main():
        async with create_http_client(cfg.http) as client:
            registry = build_registry(cfg, client)
            ranges = registry.get(provider).plan_buckets(days)

        table = Table(title=f"{provider} fetch windows")
        table.add_column("Start")
        table.add_column("End")
        table.add_column("Days", justify="right")
        for r in ranges:
            table.add_row(r.start.isoformat(), r.end.isoformat(), str(r.num_days))
        console.print(table)

    try:
        asyncio.run(main())
    except SchnifferError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)


@cli.command("sync-campgrounds")
@click.argument("provider", type=provider_choice)
@click.option("--force", is_flag=True, help="Ignore the minimum resync interval")
@click.pass_context
def sync_campgrounds(ctx, provider, force):
    """Refresh the campground catalog for a provider"""
    cfg = ctx.obj["config"]

    async def main():
        async with AppContext(cfg) as app:
            return await app.catalog.sync_campgrounds(provider, force=force)

    try:
        result = asyncio.run(main())
    except SchnifferError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    if result.skipped:
        console.print("[yellow]Skipped: synced recently (use --force)[/yellow]")
    elif result.ok:
        console.print(f"[green]✓ {result.count} campgrounds synced[/green]")
    else:
        console.print(f"[red]Failed: {result.error_message}[/red]")
        sys.exit(1)


@cli.command("sync-campsites")
@click.argument("provider", type=provider_choice)
@click.option("--force", is_flag=True, help="Resync campgrounds synced recently")
@click.pass_context
def sync_campsites(ctx, provider, force):
    """Refresh campsite metadata for every stored campground of a provider"""
    cfg = ctx.obj["config"]

    async def main():
        async with AppContext(cfg) as app:
            return await app.catalog.sync_campsites(provider, force=force)

    try:
        result = asyncio.run(main())
    except SchnifferError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    if result.ok:
        console.print(f"[green]✓ {result.count} campgrounds synced, {result.failed} failed[/green]")
    else:
        console.print(f"[red]Failed: {result.error_message}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("provider", type=provider_choice)
@click.argument("campground_id")
@click.argument("start", callback=parse_day)
@click.argument("end", callback=parse_day)
@click.pass_context
def check(ctx, provider, campground_id, start, end):
    """Fetch availability directly, without touching stored state"""
    cfg = ctx.obj["config"]

    async def main():
        async with create_http_client(cfg.http) as client:
            adapter = build_registry(cfg, client).get(provider)
            cells = []
            for r in adapter.plan_buckets([start, end]):
                cells.extend(await adapter.fetch_availability(
                    campground_id, max(r.start, start), min(r.end, end)
                ))
            return adapter.campground_url(campground_id), cells

    console.print(Panel(f"🔍 Checking {provider} campground {campground_id}", style="blue"))
    try:
        url, cells = asyncio.run(main())
    except SchnifferError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    available = sorted((c for c in cells if c.available), key=lambda c: (c.day, c.campsite_id))
    if not available:
        console.print(f"[yellow]No available sites ({len(cells)} cells checked)[/yellow]")
        return

    table = Table(title=f"Available Sites ({len(available)} of {len(cells)} cells)")
    table.add_column("Date")
    table.add_column("Site ID")
    table.add_column("Type")
    for cell in available[:50]:
        table.add_row(cell.day.isoformat(), cell.campsite_id, cell.campsite_type or "-")
    if len(available) > 50:
        table.add_row("...", f"{len(available) - 50} more", "")
    console.print(table)
    console.print(f"🔗 {url}")


@cli.command()
@click.argument("user_id")
@click.argument("provider", type=provider_choice)
@click.argument("campground_id")
@click.argument("start", callback=parse_day)
@click.argument("end", callback=parse_day)
@click.option("--site", "sites", multiple=True, help="Campsite id to watch (repeatable, default any)")
@click.pass_context
def subscribe(ctx, user_id, provider, campground_id, start, end, sites):
    """Add a subscription"""
    cfg = ctx.obj["config"]
    if end < start:
        raise click.BadParameter("END must not be before START")

    async def main():
        async with AppContext(cfg) as app:
            return await app.store.add_subscription(Subscription(
                user_id=user_id,
                provider=provider,
                campground_id=campground_id,
                site_filter=list(sites),
                start_date=start,
                end_date=end
            ))

    try:
        sub = asyncio.run(main())
    except SchnifferError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"[green]✓ Subscription {sub.id} added[/green]")


@cli.command()
@click.argument("subscription_id", type=int)
@click.pass_context
def unsubscribe(ctx, subscription_id):
    """Deactivate a subscription"""
    cfg = ctx.obj["config"]

    async def main():
        async with AppContext(cfg) as app:
            return await app.store.deactivate_subscription(subscription_id)

    try:
        deactivated = asyncio.run(main())
    except SchnifferError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    if deactivated:
        console.print(f"[green]✓ Subscription {subscription_id} deactivated[/green]")
    else:
        console.print(f"[yellow]No active subscription {subscription_id}[/yellow]")


@cli.command()
@click.argument("provider", type=provider_choice)
@click.argument("campground_id")
@click.option("--user", "user_id", default="cli", help="Requesting user id")
@click.pass_context
def adhoc(ctx, provider, campground_id, user_id):
    """Request an immediate, debounced scrape of one campground"""
    cfg = ctx.obj["config"]

    async def main():
        async with AppContext(cfg) as app:
            return await app.adhoc.request_and_process(provider, campground_id, user_id)

    try:
        request = asyncio.run(main())
    except SchnifferError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    if request is None:
        console.print("[yellow]Debounced: this campground was checked moments ago[/yellow]")
    elif request.error_message:
        console.print(f"[red]Failed: {request.error_message}[/red]")
    else:
        console.print(f"[green]✓ Adhoc scrape #{request.id} {request.status.value}[/green]")


@cli.command()
@click.pass_context
def info(ctx):
    """Show current configuration"""
    cfg = ctx.obj["config"]

    console.print(Panel("📋 Current Configuration", style="blue"))

    table = Table(show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    for name, provider in cfg.providers.items():
        table.add_row(
            f"Provider {name}",
            f"{'enabled' if provider.enabled else 'disabled'}, "
            f"concurrency {provider.max_concurrency}, {provider.requests_per_second} req/s"
        )
    table.add_row("Poll Interval", f"{cfg.polling.interval_seconds:.0f}s")
    table.add_row("Catalog Sync", f"every {cfg.catalog_sync.interval_hours:.0f}h" if cfg.catalog_sync.enabled else "disabled")
    table.add_row("Daily Digest", f"{cfg.digest.hour:02d}:00 {cfg.digest.timezone}" if cfg.digest.enabled else "disabled")
    table.add_row("Summary Channel", cfg.digest.channel_id or "-")
    table.add_row("Adhoc Cooldown", f"{cfg.adhoc.cooldown_seconds:.0f}s")
    table.add_row("Webhook", "enabled" if cfg.notifications.webhook.enabled else "disabled")
    table.add_row("State File", cfg.storage.state_file or "(memory only)")
    table.add_row("Log Level", cfg.logging.level)

    console.print(table)


if __name__ == "__main__":
    cli()
