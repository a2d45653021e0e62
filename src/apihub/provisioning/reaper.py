"""Orphan reaper — removes sandbox containers no active record accounts for.

A container is an orphan when it carries the sandbox service label but its
id is not the ``container_ref`` of any ``creating``/``running`` record.
Orphans appear when a process dies between "container created" and "record
persisted", when a best-effort cleanup failed, or when someone starts a
sandbox container by hand.

Containers younger than ``grace_seconds`` are left alone so an in-flight
create is never mistaken for an orphan.

Usage::

    reaper = OrphanReaper(lifecycle, store, orchestrator=orchestrator)
    report = await reaper.reap_once()

    stop = asyncio.Event()
    await reaper.run(interval=300, stop_event=stop)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from apihub.errors import HubError
from apihub.models import ACTIVE_STATUSES, utcnow
from apihub.utils.telemetry import (
    ATTR_REAP_FAILED,
    ATTR_REAP_REMOVED,
    ATTR_REAP_SCANNED,
    get_tracer,
)

if TYPE_CHECKING:
    from apihub.models import Instance
    from apihub.provisioning.lifecycle import ContainerLifecycleManager
    from apihub.provisioning.orchestrator import ProvisioningOrchestrator
    from apihub.store import RecordStore

logger = logging.getLogger(__name__)
_tracer = get_tracer(__name__)


@dataclass
class ReapReport:
    """Outcome of one reap cycle.

    Attributes:
        scanned: Refs of every sandbox-labelled container seen.
        removed: Orphans that were removed.
        skipped_young: Orphans inside the grace period.
        failed: Orphans whose removal failed, with the error message.
        failed_records: Records moved from ``creating`` to ``error``.
    """

    scanned: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    skipped_young: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    failed_records: list[Instance] = field(default_factory=list)
    swept_at: datetime = field(default_factory=utcnow)

    @property
    def removed_count(self) -> int:
        return len(self.removed)


class OrphanReaper:
    """Periodic reconciliation of labelled containers against instance records."""

    def __init__(
        self,
        lifecycle: ContainerLifecycleManager,
        store: RecordStore,
        *,
        orchestrator: ProvisioningOrchestrator | None = None,
        grace_seconds: float = 60.0,
        stuck_creating_seconds: float | None = None,
    ) -> None:
        self._lifecycle = lifecycle
        self._store = store
        self._orchestrator = orchestrator
        self._grace = timedelta(seconds=grace_seconds)
        self._stuck_after = (
            timedelta(seconds=stuck_creating_seconds) if stuck_creating_seconds is not None else None
        )

    async def reap_once(self, now: datetime | None = None) -> ReapReport:
        """Run one sweep. Individual removal failures never abort it.

        Raises:
            InspectionError: The runtime could not list containers at all.
        """
        now = now or utcnow()
        report = ReapReport(swept_at=now)

        with _tracer.start_as_current_span("apihub.reap") as span:
            if self._orchestrator is not None and self._stuck_after is not None:
                report.failed_records = await self._orchestrator.fail_stuck_creating(
                    self._stuck_after, now=now
                )

            containers = await self._lifecycle.list_sandboxes()
            tracked = await self._store.list_all_container_refs(ACTIVE_STATUSES)

            for summary in containers:
                ref = summary.container_ref
                report.scanned.append(ref)
                if ref in tracked:
                    continue

                created_at = self._lifecycle.created_at_of(summary)
                if created_at is not None and now - created_at < self._grace:
                    logger.debug("Skipping young untracked container %s", ref)
                    report.skipped_young.append(ref)
                    continue

                logger.info("Removing orphaned container: %s (%s)", ref, summary.name)
                try:
                    await self._lifecycle.remove(ref)
                except HubError as exc:
                    logger.error("Failed to remove orphaned container %s: %s", ref, exc)
                    report.failed[ref] = str(exc)
                    continue
                report.removed.append(ref)

            span.set_attribute(ATTR_REAP_SCANNED, len(report.scanned))
            span.set_attribute(ATTR_REAP_REMOVED, len(report.removed))
            span.set_attribute(ATTR_REAP_FAILED, len(report.failed))

        logger.info(
            "Orphaned container cleanup completed: %d scanned, %d removed, %d failed",
            len(report.scanned), len(report.removed), len(report.failed),
        )
        return report

    async def run(
        self,
        interval: float,
        stop_event: asyncio.Event,
        *,
        max_cycles: int | None = None,
    ) -> int:
        """Reap every *interval* seconds until *stop_event* is set.

        A cycle that fails as a whole is logged and the loop carries on.
        Returns the number of cycles run.
        """
        cycles = 0
        while not stop_event.is_set():
            try:
                await self.reap_once()
            except HubError:
                logger.exception("Reap cycle failed")
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except TimeoutError:
                pass
        return cycles
