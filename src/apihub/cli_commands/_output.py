"""Shared CLI output formatters."""

from __future__ import annotations

import json
import sys
from typing import NoReturn

from rich.console import Console
from rich.table import Table

from apihub.models import InstanceStatus, InstanceView  # noqa: TC001
from apihub.provisioning.reaper import ReapReport  # noqa: TC001

console = Console()

_STATUS_STYLE = {
    InstanceStatus.RUNNING: "green",
    InstanceStatus.CREATING: "yellow",
    InstanceStatus.STOPPING: "yellow",
    InstanceStatus.STOPPED: "dim",
    InstanceStatus.ERROR: "red",
}


def fail(prefix: str, exc: Exception) -> NoReturn:
    """Print an error line and exit with status 1."""
    console.print(f"[red]{prefix}:[/red] {exc}")
    sys.exit(1)


def print_instance(view: InstanceView, *, as_json: bool = False) -> None:
    """Pretty-print a single instance descriptor."""
    if as_json:
        console.print_json(view.model_dump_json())
        return

    console.print(f"\n[bold]Instance {view.id}[/bold]")
    console.print(f"  URL: {view.url}")
    console.print(f"  Status: {_status(view.status)}")
    console.print(f"  Port: {view.port}")
    console.print(f"  Container: {view.container_name} ({_short(view.container_ref)})")
    console.print(f"  Created: {view.created_at.isoformat()}")
    if view.stopped_at:
        console.print(f"  Stopped: {view.stopped_at.isoformat()}")
    if view.error:
        console.print(f"  [red]Error:[/red] {view.error}")


def print_instances_table(views: list[InstanceView], *, as_json: bool = False) -> None:
    """Pretty-print instances as a table."""
    if as_json:
        console.print_json(json.dumps([v.model_dump(mode="json") for v in views]))
        return

    table = Table(title="API Instances")
    table.add_column("ID", style="cyan")
    table.add_column("URL")
    table.add_column("Status")
    table.add_column("Container")
    table.add_column("Created")

    for view in views:
        table.add_row(
            view.id,
            view.url,
            _status(view.status),
            _short(view.container_ref),
            view.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        )

    console.print(table)


def print_reap_report(report: ReapReport) -> None:
    console.print("\n[bold]Reap Summary[/bold]")
    console.print(f"  Scanned: {len(report.scanned)}")
    console.print(f"  Removed: {report.removed_count}")
    console.print(f"  Skipped (grace period): {len(report.skipped_young)}")
    console.print(f"  Stuck records failed: {len(report.failed_records)}")
    for ref, err in report.failed.items():
        console.print(f"  [red]Failed[/red] {_short(ref)}: {err}")


def _status(status: InstanceStatus) -> str:
    style = _STATUS_STYLE.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def _short(ref: str) -> str:
    return ref[:12] if ref else "-"
