"""Sync commands for the recordsync CLI.

Commands:
- sync: Push queued operations to the server
- clear: Drop all offline data
"""

from __future__ import annotations

import sys

import click

from recordsync.cli.config import open_engine


@click.command()
def sync() -> None:
    """Push pending operations to the server.

    Exits with status 1 if the sync could not run or an operation failed.
    """
    with open_engine() as engine:
        if not engine.network.check_connection():
            click.echo("Server unreachable, nothing synced.", err=True)
            sys.exit(1)

        result = engine.sync.drain()
        remaining = engine.sync.pending_count()

    click.echo(f"Synced:    {result.synced_count}")
    click.echo(f"Failed:    {result.failed_count}")
    click.echo(f"Remaining: {remaining}")
    for error in result.errors:
        click.echo(f"  {error}", err=True)

    if not result.success:
        sys.exit(1)


@click.command()
@click.confirmation_option(prompt="Drop all offline data, including unsynced changes?")
def clear() -> None:
    """Delete all offline data, including changes not yet synced."""
    with open_engine() as engine:
        lost = engine.sync.pending_count()
        engine.sync.clear_offline_data()

    click.echo("Offline data cleared.")
    if lost:
        click.echo(f"Discarded {lost} unsynced operation(s).")
