"""
Command line administration for the grouped cache.

Performs single-entry operations and raises flush events against the
topology described by ``GROUPCACHE_*`` settings (environment or a dotenv
file).

Usage:
    groupcache --env-file cache.env topology
    groupcache put users 42 '{"name": "Ada"}' --json
    groupcache flush --group users
"""

import json
import logging
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
from rich import box

from .exceptions import CacheError
from .manager import FlushEvent
from .serializer import JsonSerializer, PickleSerializer
from .topology import Topology, load_topology

app = typer.Typer(help="Grouped cache administration")
console = Console()

SERIALIZERS = {
    "pickle": PickleSerializer,
    "json": JsonSerializer,
}


class _State:
    env_file: Optional[str] = None
    serializer: str = "pickle"


state = _State()


@app.callback()
def main(
    env_file: Optional[str] = typer.Option(None, "--env-file", "-e", help="dotenv file with GROUPCACHE_* settings"),
    serializer: str = typer.Option("pickle", "--serializer", "-s", help="Value format: pickle or json"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Grouped cache administration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if serializer not in SERIALIZERS:
        raise typer.BadParameter(f"unknown serializer {serializer!r}", param_hint="--serializer")
    state.env_file = env_file
    state.serializer = serializer


def _run(action):
    topology = load_topology(state.env_file)
    try:
        with topology.cache_manager(SERIALIZERS[state.serializer]()) as cache:
            return action(cache)
    except CacheError as e:
        console.print(f"[red]✗ {type(e).__name__}: {e}[/red]")
        raise typer.Exit(code=1)
    finally:
        topology.close()


@app.command()
def ping():
    """Check that every node answers."""
    topology = load_topology(state.env_file)
    try:
        handle = topology.acquire()
    except CacheError as e:
        console.print(f"[red]✗ {type(e).__name__}: {e}[/red]")
        topology.close()
        raise typer.Exit(code=1)

    healthy = True
    for shard in handle.shards():
        if shard.ping():
            console.print(f"[green]✓[/green] {shard.name}")
        else:
            console.print(f"[red]✗[/red] {shard.name}")
            healthy = False
    topology.release(handle, broken=not healthy)
    topology.close()
    if not healthy:
        raise typer.Exit(code=1)


@app.command()
def get(group: str, key: str):
    """Print a cached value."""
    missing = object()
    value = _run(lambda cache: cache.get(group, key, default=missing))
    if value is missing:
        console.print(f"[yellow]{group}:{key} not found[/yellow]")
        raise typer.Exit(code=1)
    console.print(value)


@app.command()
def put(
    group: str,
    key: str,
    value: str,
    as_json: bool = typer.Option(False, "--json", help="Parse VALUE as JSON"),
):
    """Store a value."""
    if as_json:
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as e:
            raise typer.BadParameter(f"invalid JSON: {e}", param_hint="VALUE")
    else:
        parsed = value
    _run(lambda cache: cache.put(group, key, parsed))
    console.print(f"[green]✓[/green] Stored {group}:{key}")


@app.command()
def delete(group: str, key: str):
    """Remove a cached value."""
    removed = _run(lambda cache: cache.delete(group, key))
    if removed:
        console.print(f"[green]✓[/green] Deleted {group}:{key}")
    else:
        console.print(f"[dim]{group}:{key} was not cached[/dim]")


@app.command()
def keys(group: str):
    """List the keys of a group."""
    found = _run(lambda cache: cache.group_keys(group))
    for key in found:
        console.print(key)
    console.print(f"[dim]{len(found)} key(s) in {group}[/dim]")


@app.command()
def flush(
    group: Optional[str] = typer.Option(None, "--group", "-g", help="Flush only this group"),
    all_entries: bool = typer.Option(False, "--all", help="Flush every entry on every shard"),
):
    """Invalidate one group or the whole cache."""
    if bool(group) == all_entries:
        raise typer.BadParameter("pass exactly one of --group or --all")

    if all_entries:
        _run(lambda cache: cache.flush(FlushEvent.all()))
        console.print("[green]✓[/green] Flushed all entries")
    else:
        deleted = _run(lambda cache: cache.flush(FlushEvent.for_group(group)))
        console.print(f"[green]✓[/green] Flushed group {group}: {deleted} key(s) deleted")


@app.command()
def topology():
    """Show the resolved topology."""
    resolved: Topology = load_topology(state.env_file)
    info = resolved.describe()
    resolved.close()

    table = Table(title="Cache Topology", box=box.ROUNDED)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="yellow")
    for name, value in info.items():
        if isinstance(value, list):
            value = ", ".join(value)
        table.add_row(name, str(value))
    console.print(table)


if __name__ == "__main__":
    app()
