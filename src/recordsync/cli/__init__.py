"""Command-line interface for recordsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Set server URL, token and data directory
- status: Show connectivity, pending operations and storage usage
- pending: List queued operations
- sync: Push queued operations to the server
- clear: Drop all offline data
"""

from __future__ import annotations

import logging

import click

from recordsync.cli.config import (
    get_config_dir,
    get_config_file,
    load_config,
    save_config,
)
from recordsync.cli.configure import configure
from recordsync.cli.status import pending, status
from recordsync.cli.sync import clear, sync


def setup_logging(verbose: bool) -> None:
    """Send recordsync logs to stderr (DEBUG with --verbose, else WARNING)."""
    package_logger = logging.getLogger("recordsync")
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    package_logger.propagate = False


@click.group()
@click.version_option(package_name="recordsync")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logs.")
def cli(verbose: bool) -> None:
    """recordsync - offline-first record storage and sync."""
    setup_logging(verbose)


# Setup
cli.add_command(configure)

# Inspection
cli.add_command(status)
cli.add_command(pending)

# Sync
cli.add_command(sync)
cli.add_command(clear)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "get_config_dir",
    "get_config_file",
    "load_config",
    "main",
    "save_config",
]
