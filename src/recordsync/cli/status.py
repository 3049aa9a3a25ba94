"""Inspection commands for the recordsync CLI.

Commands:
- status: Connectivity, pending operations and storage usage
- pending: List queued operations
"""

from __future__ import annotations

from datetime import datetime

import click

from recordsync.cli.config import open_engine
from recordsync.core.models import MAX_OPERATION_RETRIES


def _format_time(timestamp: float | None) -> str:
    if timestamp is None:
        return "never"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB"):
        if value < 1024:
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


@click.command()
def status() -> None:
    """Show connectivity, unsynced changes and storage usage."""
    with open_engine() as engine:
        engine.network.check_connection()
        sync_status = engine.status()
        info = engine.storage_info()

    click.echo(f"Network:      {'online' if sync_status.is_online else 'offline'}")
    click.echo(f"Pending:      {sync_status.pending_operations_count} operation(s)")
    click.echo(f"Last sync:    {_format_time(sync_status.last_sync_time)}")
    click.echo(f"Storage:      {_format_size(info.size_bytes)}")
    if info.namespaces:
        click.echo(f"Collections:  {', '.join(info.namespaces)}")
    if sync_status.has_unsynced_changes:
        click.echo("Run 'recordsync sync' to push unsynced changes.")


@click.command()
def pending() -> None:
    """List operations waiting to be synced, oldest first."""
    with open_engine() as engine:
        operations = engine.sync.pending_operations()

    if not operations:
        click.echo("No pending operations.")
        return

    for operation in operations:
        click.echo(
            f"{_format_time(operation.enqueued_at)}  "
            f"{operation.type.value:<6}  "
            f"{operation.collection}/{operation.document_id}  "
            f"(attempts: {operation.retry_count}/{MAX_OPERATION_RETRIES})"
        )
    click.echo(f"\n{len(operations)} pending operation(s)")
