"""API Hub CLI entrypoint."""

from __future__ import annotations

import logging

import click

from apihub import __version__
from apihub.cli_commands._context import HubContext


@click.group()
@click.version_option(version=__version__, prog_name="apihub")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    envvar="APIHUB_CONFIG",
    default=None,
    help="Hub config YAML file.",
)
@click.option(
    "--store",
    "store_path",
    type=click.Path(dir_okay=False),
    envvar="APIHUB_STORE",
    default=None,
    help="Instance record file (overrides the config's store_path).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, store_path: str | None, verbose: bool) -> None:
    """API Hub — disposable REST API sandboxes."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = HubContext(config_path=config_path, store_path=store_path)


# Register subcommands
from apihub.cli_commands import register_commands  # noqa: E402

register_commands(main)

if __name__ == "__main__":
    main()
