"""Main CLI entry point for scoutcache.

Provides command-line inspection and maintenance of the local cache.
"""

import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable

import click
from rich.console import Console
from rich.table import Table

from scoutcache.cache import CacheConfig, ScoutCache
from scoutcache.cache.validation import get_ttl_remaining
from scoutcache.utils import format_age, now_ms

# Global console for Rich output
console = Console()


def build_config(cache_dir, db_name) -> CacheConfig:
    """Build cache configuration from CLI options.

    Priority:
    1. Explicit --cache-dir/-C and --db-name flags
    2. SCOUTCACHE_* environment variables
    3. Defaults

    Args:
        cache_dir: Cache directory from CLI context
        db_name: Database name from CLI context

    Returns:
        CacheConfig instance
    """
    config = CacheConfig.from_env()
    if cache_dir:
        config.cache_dir = Path(cache_dir).expanduser()
    if db_name:
        config.db_name = db_name
    return config


def run_with_cache(ctx, action: Callable[[ScoutCache], Awaitable[Any]]) -> Any:
    """Run an async action against a cache built from the CLI context."""

    async def runner():
        cache = ScoutCache(ctx.obj["config"])
        try:
            return await action(cache)
        finally:
            await cache.aclose()

    return asyncio.run(runner())


def format_timestamp(timestamp_ms: int) -> str:
    if not timestamp_ms:
        return "-"
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M:%S UTC")


@click.group()
@click.option(
    "--cache-dir",
    "-C",
    type=click.Path(),
    help="Cache directory (default: SCOUTCACHE_DIR env var or ~/.scoutcache)",
)
@click.option("--db-name", help="Database name (default: ScoutCache)")
@click.pass_context
def cli(ctx, cache_dir, db_name):
    """scoutcache CLI - Inspect and maintain the local Scout cache."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = build_config(cache_dir, db_name)


@cli.command("stats")
@click.argument("collection", required=False)
@click.pass_context
def stats(ctx, collection):
    """Show size, freshness and hit rate for a collection.

    Example:
        scoutcache stats herd_modules
    """
    try:
        result = run_with_cache(ctx, lambda cache: cache.get_stats(collection))

        table = Table(title=f"Cache stats ({collection or ctx.obj['config'].default_collection})")
        table.add_column("Field", style="cyan", no_wrap=True)
        table.add_column("Value", style="white")
        table.add_row("Items", str(result.size))
        table.add_row("Last updated", format_timestamp(result.last_updated))
        table.add_row(
            "Stale", "[red]yes[/red]" if result.is_stale else "[green]no[/green]"
        )
        table.add_row("Hit rate", f"{result.hit_rate:.2f}")
        table.add_row("Hits / misses", f"{result.total_hits} / {result.total_misses}")
        console.print(table)

    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("health")
@click.argument("collection", required=False)
@click.pass_context
def health(ctx, collection):
    """Probe the local store and report any issues.

    Exits with status 1 when the cache is unhealthy.
    """
    report = run_with_cache(ctx, lambda cache: cache.check_health(collection))

    if report.healthy:
        console.print("[green]✓[/green] Cache is healthy")
        return

    console.print("[red]✗[/red] Cache is unhealthy")
    for issue in report.issues:
        console.print(f"  - {issue}")
    sys.exit(1)


@cli.command("show")
@click.argument("collection")
@click.option("--json", "as_json", is_flag=True, help="Print the cached items as JSON")
@click.pass_context
def show(ctx, collection, as_json):
    """Show the cached items of a collection.

    Example:
        scoutcache show herd_modules
        scoutcache show herd_modules --json
    """
    async def load(cache):
        return await cache.get(collection), cache.schema_for(collection)

    try:
        result, schema = run_with_cache(ctx, load)

        if result.data is None:
            console.print(f"[yellow]No cached data for {collection}[/yellow]")
            return

        if as_json:
            click.echo(json.dumps(result.data, indent=2))
            return

        state = "[red]stale[/red]" if result.is_stale else "[green]fresh[/green]"
        console.print(
            f"{collection}: {len(result.data)} items, age {format_age(result.age)}, {state}"
        )
        if result.metadata:
            remaining = get_ttl_remaining(
                result.metadata.written_at, result.metadata.ttl_ms, now_ms()
            )
            console.print(f"  Expires in: {format_age(remaining)}")
            if result.metadata.etag:
                console.print(f"  ETag: {result.metadata.etag}")

        table = Table(title=f"{collection} ({len(result.data)})")
        table.add_column("Key", style="cyan", no_wrap=True)
        table.add_column("Label", style="white")
        for item in result.data:
            table.add_row(schema.key_of(item), schema.label_of(item))
        console.print(table)

    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("invalidate")
@click.argument("collection")
@click.pass_context
def invalidate(ctx, collection):
    """Mark a collection as needing refresh (keeps its records)."""
    try:
        run_with_cache(ctx, lambda cache: cache.invalidate(collection))
        console.print(f"[green]✓[/green] Invalidated '{collection}'")
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("clear")
@click.argument("collection")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def clear(ctx, collection, yes):
    """Delete all records and metadata of a collection."""
    if not yes and not click.confirm(f"Clear cached collection '{collection}'?"):
        console.print("[yellow]Cancelled[/yellow]")
        return

    try:
        run_with_cache(ctx, lambda cache: cache.clear(collection))
        console.print(f"[green]✓[/green] Cleared '{collection}'")
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("reset")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def reset(ctx, yes):
    """Delete the entire local store."""
    config = ctx.obj["config"]
    if not yes and not click.confirm(f"Delete local store at {config.db_path}?"):
        console.print("[yellow]Cancelled[/yellow]")
        return

    try:
        run_with_cache(ctx, lambda cache: cache.reset_database())
        console.print(f"[green]✓[/green] Reset local store {config.db_name}")
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


if __name__ == "__main__":
    cli()
