"""Instance commands — ``create``, ``list``, ``get``, ``delete``, ``logs``, ``probe``."""

from __future__ import annotations

import asyncio

import click

from apihub.cli_commands._context import HubContext
from apihub.cli_commands._output import console, fail, print_instance, print_instances_table
from apihub.errors import HubError
from apihub.models import SandboxOptions

pass_hub = click.make_pass_decorator(HubContext)

_owner_option = click.option(
    "--owner",
    "-o",
    required=True,
    envvar="APIHUB_OWNER",
    help="Owner (user) identifier.",
)


@click.command()
@_owner_option
@click.option("--theme", default="electronics", show_default=True, help="Product catalogue theme.")
@click.option("--products", type=click.IntRange(min=1), default=50, show_default=True, help="Products to generate.")
@click.option("--cors/--no-cors", default=True, show_default=True, help="Allow any origin.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@pass_hub
def create(hub: HubContext, owner: str, theme: str, products: int, cors: bool, as_json: bool) -> None:
    """Provision a new sandbox API for OWNER."""
    options = SandboxOptions(data_theme=theme, product_count=products, enable_cors=cors)
    try:
        view = asyncio.run(hub.orchestrator.create_instance(owner, options))
    except HubError as exc:
        fail("Failed to create instance", exc)
    if not as_json:
        console.print(f"[green]Instance ready at {view.url}[/green]")
    print_instance(view, as_json=as_json)


@click.command("list")
@_owner_option
@click.option("--all", "show_all", is_flag=True, help="Include stopped instances.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@pass_hub
def list_cmd(hub: HubContext, owner: str, show_all: bool, as_json: bool) -> None:
    """List OWNER's instances with their live status."""
    try:
        views = asyncio.run(hub.orchestrator.list_instances(owner, active_only=not show_all))
    except HubError as exc:
        fail("Failed to fetch instances", exc)
    if not views and not as_json:
        console.print("No instances.")
        return
    print_instances_table(views, as_json=as_json)


@click.command()
@click.argument("instance_id")
@_owner_option
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@pass_hub
def get(hub: HubContext, instance_id: str, owner: str, as_json: bool) -> None:
    """Show one instance."""
    try:
        view = asyncio.run(hub.orchestrator.get_instance(instance_id, owner))
    except HubError as exc:
        fail("Failed to fetch instance", exc)
    print_instance(view, as_json=as_json)


@click.command()
@click.argument("instance_id")
@_owner_option
@pass_hub
def delete(hub: HubContext, instance_id: str, owner: str) -> None:
    """Stop and remove an instance."""
    try:
        asyncio.run(hub.orchestrator.delete_instance(instance_id, owner))
    except HubError as exc:
        fail("Failed to delete instance", exc)
    console.print(f"[green]Instance {instance_id} deleted.[/green]")


@click.command()
@click.argument("instance_id")
@_owner_option
@click.option("--tail", "-n", type=click.IntRange(min=0), default=100, show_default=True, help="Lines to show.")
@pass_hub
def logs(hub: HubContext, instance_id: str, owner: str, tail: int) -> None:
    """Print the container log tail of an instance."""
    try:
        text = asyncio.run(hub.orchestrator.instance_logs(instance_id, owner, tail))
    except HubError as exc:
        fail("Failed to fetch logs", exc)
    click.echo(text)


@click.command()
@click.argument("instance_id")
@_owner_option
@pass_hub
def probe(hub: HubContext, instance_id: str, owner: str) -> None:
    """Check that an instance answers on its health endpoint."""
    try:
        healthy = asyncio.run(hub.orchestrator.probe_instance(instance_id, owner))
    except HubError as exc:
        fail("Failed to probe instance", exc)
    if not healthy:
        console.print(f"[red]Instance {instance_id} is not healthy.[/red]")
        raise SystemExit(1)
    console.print(f"[green]Instance {instance_id} is healthy.[/green]")
