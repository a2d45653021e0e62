"""Maintenance commands — ``reap`` and ``ping``."""

from __future__ import annotations

import asyncio

import click

from apihub.cli_commands._context import HubContext
from apihub.cli_commands._output import console, fail, print_reap_report
from apihub.errors import HubError

pass_hub = click.make_pass_decorator(HubContext)


@click.command()
@click.option("--watch", is_flag=True, help="Keep reaping every reaper.interval seconds.")
@click.option("--interval", type=float, default=None, help="Override the reap interval (seconds).")
@pass_hub
def reap(hub: HubContext, watch: bool, interval: float | None) -> None:
    """Remove sandbox containers that no active instance accounts for."""
    try:
        reaper = hub.reaper()
        if not watch:
            report = asyncio.run(reaper.reap_once())
            print_reap_report(report)
            return
    except HubError as exc:
        fail("Reap failed", exc)

    every = interval or hub.config.reaper.interval
    console.print(f"Reaping every {every:g}s (Ctrl+C to stop)")
    try:
        asyncio.run(reaper.run(every, asyncio.Event()))
    except KeyboardInterrupt:
        console.print("Stopped.")


@click.command()
@pass_hub
def ping(hub: HubContext) -> None:
    """Check that the container runtime is reachable."""
    try:
        asyncio.run(hub.orchestrator.ping())
    except HubError as exc:
        fail("Container runtime unavailable", exc)
    console.print("[green]Container runtime is reachable.[/green]")
