"""Configure command for the recordsync CLI.

Commands:
- configure: Set the server, token and data directory
"""

from __future__ import annotations

import click

from recordsync.cli.config import get_config_file, load_config, save_config


@click.command()
@click.option("--server", default=None, help="Server URL (e.g., https://records.example.com).")
@click.option("--token", default=None, help="Bearer token for the server.")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory for the offline database (default: ~/.recordsync).",
)
@click.option("--no-verify-ssl", is_flag=True, help="Skip SSL certificate verification.")
def configure(
    server: str | None,
    token: str | None,
    data_dir: str | None,
    no_verify_ssl: bool,
) -> None:
    """Set connection settings.

    Options not given keep their current value. The server URL is prompted
    for when none is configured yet.
    """
    config = load_config()

    if server is None and not config.get("server_url"):
        server = click.prompt("Server URL")

    if server is not None:
        config["server_url"] = server.rstrip("/")
    if token is not None:
        config["token"] = token
    if data_dir is not None:
        config["data_dir"] = data_dir
    if no_verify_ssl:
        config["verify_ssl"] = False

    save_config(config)
    click.echo(f"Configuration saved to {get_config_file()}")
    click.echo(f"  Server: {config['server_url']}")
    click.echo(f"  Token:  {'set' if config.get('token') else 'not set'}")
