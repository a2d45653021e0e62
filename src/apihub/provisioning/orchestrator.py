"""ProvisioningOrchestrator — request-level create/delete/list of sandboxes.

Ties the :class:`PortAllocator`, :class:`ContainerLifecycleManager` and a
:class:`~apihub.store.RecordStore` together.  It is the only component that
writes instance status transitions.

Create::

    allocate port -> create container -> persist record (creating)
    -> start container -> update record (running)

Delete::

    lookup (id, owner) -> record (stopping) -> remove container (idempotent)
    -> record (stopped, stopped_at)
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from apihub.errors import (
    ConflictError,
    HubError,
    InspectionError,
    InvalidStatusTransition,
    NotFoundError,
    RemovalError,
)
from apihub.models import Instance, InstanceStatus, InstanceView, SandboxOptions, build_url, utcnow
from apihub.provisioning.allocator import PortAllocator, PortReservations
from apihub.provisioning.health import HealthProbe
from apihub.provisioning.lifecycle import ContainerLifecycleManager
from apihub.utils.telemetry import (
    ATTR_ATTEMPT,
    ATTR_CONTAINER_REF,
    ATTR_INSTANCE_ID,
    ATTR_OWNER_ID,
    ATTR_PORT,
    get_tracer,
)

if TYPE_CHECKING:
    from apihub.config import HubConfig
    from apihub.runtime.base import ContainerRuntime
    from apihub.store import RecordStore

logger = logging.getLogger(__name__)
_tracer = get_tracer(__name__)

# Statuses reported as stored, whatever the container is doing.
_SETTLED_STATUSES = frozenset({InstanceStatus.STOPPED, InstanceStatus.ERROR})


class ProvisioningOrchestrator:
    """Satisfies create/delete/list/get requests for sandbox instances.

    Holds no instance state of its own; everything lives in the record
    store and the container runtime.
    """

    def __init__(
        self,
        store: RecordStore,
        lifecycle: ContainerLifecycleManager,
        allocator: PortAllocator,
        *,
        create_attempts: int = 3,
        probe: HealthProbe | None = None,
    ) -> None:
        self._store = store
        self._lifecycle = lifecycle
        self._allocator = allocator
        self._create_attempts = max(1, create_attempts)
        self._probe = probe or HealthProbe()

    @classmethod
    def from_config(
        cls,
        config: HubConfig,
        store: RecordStore,
        runtime: ContainerRuntime,
    ) -> ProvisioningOrchestrator:
        """Wire lifecycle manager, allocator and probe from a :class:`HubConfig`."""
        lifecycle = ContainerLifecycleManager(runtime, config)
        alloc = config.allocator
        reservations = PortReservations(ttl=alloc.reservation_ttl) if alloc.reserve_ports else None
        allocator = PortAllocator(
            store,
            lifecycle,
            min_port=alloc.min_port,
            max_port=alloc.max_port,
            reservations=reservations,
        )
        probe = HealthProbe(path=config.health.path, timeout=config.health.timeout)
        return cls(
            store,
            lifecycle,
            allocator,
            create_attempts=config.create_attempts,
            probe=probe,
        )

    @property
    def lifecycle(self) -> ContainerLifecycleManager:
        return self._lifecycle

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def base_url(self) -> str:
        return self._lifecycle.config.base_url

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_instance(
        self,
        owner_id: str,
        options: SandboxOptions | None = None,
    ) -> InstanceView:
        """Provision and start a new sandbox for *owner_id*.

        A runtime conflict (host port or container name already taken) is
        retried with a fresh allocation up to ``create_attempts`` times.

        Raises:
            NoCapacityError: The port range is exhausted.
            ConflictError: Every attempt hit a conflict.
            CreationError: The container could not be created.
            StartError: The container could not be started; the record is
                left in ``error``.
        """
        env = self._lifecycle.build_env(options)
        rejected_ports: set[int] = set()
        rejected_names: set[str] = set()

        with _tracer.start_as_current_span("apihub.instance.create") as span:
            span.set_attribute(ATTR_OWNER_ID, owner_id)
            attempt = 0
            while True:
                attempt += 1
                span.set_attribute(ATTR_ATTEMPT, attempt)
                port = await self._allocator.allocate(exclude=rejected_ports)
                try:
                    instance = await self._provision(owner_id, port, env, rejected_names)
                except ConflictError as exc:
                    logger.warning(
                        "Create attempt %d/%d for owner %s hit conflict: %s",
                        attempt, self._create_attempts, owner_id, exc,
                    )
                    if attempt >= self._create_attempts:
                        raise
                    if exc.kind == "name":
                        rejected_names.add(str(exc.value))
                    else:
                        rejected_ports.add(port)
                    continue
                finally:
                    self._allocator.release(port)
                break

            span.set_attribute(ATTR_INSTANCE_ID, instance.id)
            span.set_attribute(ATTR_PORT, instance.port)
            span.set_attribute(ATTR_CONTAINER_REF, instance.container_ref)
        logger.info("Instance created successfully: %s", instance.id)
        return self._view(instance)

    async def _provision(
        self,
        owner_id: str,
        port: int,
        env: dict[str, str],
        rejected_names: set[str],
    ) -> Instance:
        created_at = utcnow()
        taken = await self._store.list_container_names() | rejected_names
        name = self._lifecycle.derive_name(owner_id, created_at, taken)

        descriptor = await self._lifecycle.create(
            owner_id, port, env, name=name, created_at=created_at
        )
        ref = descriptor.container_ref

        instance = Instance(
            owner_id=owner_id,
            container_ref=ref,
            container_name=descriptor.container_name,
            port=port,
            status=InstanceStatus.CREATING,
            created_at=created_at,
            updated_at=created_at,
        )
        persisted = False
        try:
            await self._store.create_record(instance)
            persisted = True
            await self._lifecycle.start(ref)
            return await self._store.update_status(instance.id, InstanceStatus.RUNNING)
        except BaseException as exc:
            # Includes cancellation: the container must not outlive a failed create.
            if persisted:
                logger.error(
                    "Failed to start container %s for instance %s: %r", ref, instance.id, exc
                )
                await self._mark_error(instance.id)
            await self._discard_container(ref)
            raise

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_instance(self, instance_id: str, owner_id: str) -> InstanceView:
        """Tear down an instance and mark its record ``stopped``.

        Succeeds even when the container was already removed out-of-band.

        Raises:
            NotFoundError: No non-stopped instance with this id for this owner.
            RemovalError: The runtime failed to remove the container; the
                record is left in ``error``.
        """
        with _tracer.start_as_current_span("apihub.instance.delete") as span:
            span.set_attribute(ATTR_OWNER_ID, owner_id)
            span.set_attribute(ATTR_INSTANCE_ID, instance_id)

            instance = await self._store.get_record(instance_id, owner_id)
            if instance is None or instance.status == InstanceStatus.STOPPED:
                raise NotFoundError(instance_id)

            logger.info("Deleting instance %s for owner %s", instance_id, owner_id)
            if instance.status != InstanceStatus.STOPPING:
                instance = await self._store.update_status(instance_id, InstanceStatus.STOPPING)

            if instance.container_ref:
                span.set_attribute(ATTR_CONTAINER_REF, instance.container_ref)
                try:
                    await self._lifecycle.remove(instance.container_ref)
                except RemovalError:
                    await self._mark_error(instance_id)
                    raise

            stopped = await self._store.update_status(
                instance_id, InstanceStatus.STOPPED, stopped_at=utcnow()
            )
            logger.info("Instance deleted successfully: %s", instance_id)
            return self._view(stopped)

    # ------------------------------------------------------------------
    # Read paths
    # ------------------------------------------------------------------

    async def list_instances(self, owner_id: str, active_only: bool = True) -> list[InstanceView]:
        """Owner's instances with live status; one failed inspection never fails the list."""
        records = await self._store.list_records(owner_id, active_only)
        return list(await asyncio.gather(*(self._live_view(r) for r in records)))

    async def get_instance(self, instance_id: str, owner_id: str) -> InstanceView:
        instance = await self._require(instance_id, owner_id)
        return await self._live_view(instance)

    async def instance_logs(self, instance_id: str, owner_id: str, tail: int = 100) -> str:
        """Container log tail; stopped instances stay readable while their container exists."""
        instance = await self._store.get_record(instance_id, owner_id)
        if instance is None:
            raise NotFoundError(instance_id)
        if not instance.container_ref:
            return ""
        return await self._lifecycle.logs(instance.container_ref, tail)

    async def probe_instance(self, instance_id: str, owner_id: str) -> bool:
        """Whether the sandbox API answers on its health endpoint."""
        instance = await self._require(instance_id, owner_id)
        return await self._probe.check(build_url(self.base_url, instance.port))

    async def ping(self) -> None:
        await self._lifecycle.ping()

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def fail_stuck_creating(
        self, older_than: timedelta, *, now: datetime | None = None
    ) -> list[Instance]:
        """Move records stuck in ``creating`` for longer than *older_than* to ``error``."""
        cutoff = (now or utcnow()) - older_than
        failed: list[Instance] = []
        for instance in await self._store.list_stuck(InstanceStatus.CREATING, cutoff):
            try:
                updated = await self._store.update_status(instance.id, InstanceStatus.ERROR)
            except (InvalidStatusTransition, NotFoundError):
                # Finished or vanished since the listing.
                continue
            logger.warning(
                "Instance %s stuck in creating since %s; marked error",
                instance.id, instance.updated_at.isoformat(),
            )
            failed.append(updated)
        return failed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require(self, instance_id: str, owner_id: str) -> Instance:
        instance = await self._store.get_record(instance_id, owner_id)
        if instance is None or instance.status == InstanceStatus.STOPPED:
            raise NotFoundError(instance_id)
        return instance

    async def _live_view(self, instance: Instance) -> InstanceView:
        if instance.status in _SETTLED_STATUSES or not instance.container_ref:
            return self._view(instance)
        try:
            state = await self._lifecycle.status(instance.container_ref)
        except InspectionError as exc:
            logger.warning("Could not get status for container %s: %s", instance.container_ref, exc)
            return self._view(instance, status=InstanceStatus.ERROR, error=str(exc))
        return self._view(instance, status=state.instance_status)

    def _view(
        self,
        instance: Instance,
        *,
        status: InstanceStatus | None = None,
        error: str | None = None,
    ) -> InstanceView:
        return InstanceView.from_instance(instance, base_url=self.base_url, status=status, error=error)

    async def _mark_error(self, instance_id: str) -> None:
        try:
            await self._store.update_status(instance_id, InstanceStatus.ERROR)
        except HubError:
            logger.exception("Failed to mark instance %s as error", instance_id)

    async def _discard_container(self, ref: str) -> None:
        """Best-effort removal; failures are logged so they never mask the original error."""
        try:
            await self._lifecycle.remove(ref)
        except HubError:
            logger.exception("Best-effort removal of container %s failed", ref)
