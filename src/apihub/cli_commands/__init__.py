"""CLI subcommand registration."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register all subcommands on the CLI group."""
    from apihub.cli_commands.instances import create, delete, get, list_cmd, logs, probe
    from apihub.cli_commands.reap import ping, reap

    cli.add_command(create)
    cli.add_command(list_cmd)
    cli.add_command(get)
    cli.add_command(delete)
    cli.add_command(logs)
    cli.add_command(probe)
    cli.add_command(reap)
    cli.add_command(ping)
