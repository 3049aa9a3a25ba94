"""Configuration utilities for the recordsync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click

from recordsync.core.config import EngineConfig
from recordsync.engine import OfflineEngine


def get_config_dir() -> Path:
    """Get the configuration directory for recordsync.

    Returns:
        Path to ~/.recordsync or equivalent.
    """
    return Path.home() / ".recordsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def load_engine_config() -> EngineConfig:
    """Build the engine configuration, exiting if no server is configured."""
    config = load_config()
    if not config.get("server_url"):
        click.echo("Error: No server configured. Run 'recordsync configure' first.", err=True)
        sys.exit(1)

    config.setdefault("data_dir", str(get_config_dir()))
    return EngineConfig.from_dict(config)


def open_engine() -> OfflineEngine:
    """Create an engine for a one-shot command (background work not started)."""
    return OfflineEngine(load_engine_config())
