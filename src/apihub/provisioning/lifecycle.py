"""ContainerLifecycleManager — sandbox-specific wrapper over a container runtime.

Turns a provisioning request into a concrete :class:`ContainerSpec` (image,
port mapping, limits, health probe, ownership labels) and wraps every
runtime failure in the typed error of the operation that failed.  It never
touches instance records and never retries; retry policy belongs to the
orchestrator.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from apihub.errors import (
    ConflictError,
    ContainerMissingError,
    ContainerRuntimeError,
    CreationError,
    InspectionError,
    RemovalError,
    StartError,
    StopError,
)
from apihub.models import (
    ContainerDescriptor,
    ContainerSpec,
    ContainerState,
    ContainerSummary,
    HealthCheck,
    SandboxOptions,
    build_url,
    utcnow,
)

if TYPE_CHECKING:
    from apihub.config import HubConfig
    from apihub.runtime.base import ContainerRuntime

logger = logging.getLogger(__name__)

_NAME_UNSAFE = re.compile(r"[^a-zA-Z0-9_.-]")


class ContainerLifecycleManager:
    """Create, start, stop, remove and inspect sandbox containers."""

    def __init__(self, runtime: ContainerRuntime, config: HubConfig) -> None:
        self._runtime = runtime
        self._config = config

    @property
    def config(self) -> HubConfig:
        return self._config

    # ------------------------------------------------------------------
    # Naming and spec building
    # ------------------------------------------------------------------

    def derive_name(self, owner_id: str, created_at: datetime, taken: set[str] | None = None) -> str:
        """Deterministic container name for *owner_id* at *created_at*.

        Characters Docker rejects in container names become ``-``; the raw
        owner id is kept in the ``user-id`` label.  Collisions with names in
        *taken* get the smallest free ``-N`` suffix.
        """
        owner = _NAME_UNSAFE.sub("-", owner_id)
        base = f"{self._config.name_prefix}-{owner}-{int(created_at.timestamp() * 1000)}"
        taken = taken or set()
        if base not in taken:
            return base
        counter = 1
        while f"{base}-{counter}" in taken:
            counter += 1
        return f"{base}-{counter}"

    def build_env(self, options: SandboxOptions | None = None) -> dict[str, str]:
        """Env vars for the sandbox API process."""
        opts = options or SandboxOptions()
        cfg = self._config
        return {
            "NODE_ENV": "production",
            "PORT": str(cfg.container_port),
            "DATA_THEME": opts.data_theme,
            "PRODUCT_COUNT": str(opts.product_count),
            "CORS_ORIGIN": "*" if opts.enable_cors else cfg.cors_fallback_origin,
            **cfg.env,
        }

    def build_spec(
        self,
        owner_id: str,
        host_port: int,
        env: dict[str, str],
        *,
        name: str,
        created_at: datetime,
    ) -> ContainerSpec:
        cfg = self._config
        probe = cfg.health
        return ContainerSpec(
            name=name,
            image=cfg.image,
            container_port=cfg.container_port,
            host_port=host_port,
            env=env,
            labels={
                cfg.label_key("user-id"): owner_id,
                cfg.label_key("service"): cfg.service_marker,
                cfg.label_key("created"): created_at.isoformat(),
            },
            memory_limit=cfg.memory_limit,
            cpu_shares=cfg.cpu_shares,
            restart_policy=cfg.restart_policy,
            healthcheck=HealthCheck(
                test=["CMD", "curl", "-f", f"http://localhost:{cfg.container_port}{probe.path}"],
                interval=probe.interval,
                timeout=probe.timeout,
                retries=probe.retries,
                start_period=probe.start_period,
            ),
        )

    # ------------------------------------------------------------------
    # Runtime operations
    # ------------------------------------------------------------------

    async def create(
        self,
        owner_id: str,
        host_port: int,
        env: dict[str, str],
        *,
        name: str | None = None,
        created_at: datetime | None = None,
    ) -> ContainerDescriptor:
        """Create (not start) a sandbox container bound to *host_port*.

        Raises:
            ConflictError: The runtime rejected the name or host port.
            CreationError: Any other runtime failure.
        """
        created_at = created_at or utcnow()
        name = name or self.derive_name(owner_id, created_at)
        spec = self.build_spec(owner_id, host_port, env, name=name, created_at=created_at)

        logger.info("Creating container %s for owner %s on port %d", name, owner_id, host_port)
        try:
            ref = await self._runtime.create(spec)
        except ConflictError:
            raise
        except ContainerRuntimeError as exc:
            raise CreationError(name, exc.detail) from exc

        logger.info("Container created: %s (%s) on port %d", ref, name, host_port)
        return ContainerDescriptor(
            container_ref=ref,
            container_name=name,
            port=host_port,
            url=build_url(self._config.base_url, host_port),
        )

    async def start(self, ref: str) -> None:
        """Start a created container.

        Raises:
            ConflictError: The host port turned out to be bound already.
            StartError: Any other runtime failure.
        """
        logger.info("Starting container: %s", ref)
        try:
            await self._runtime.start(ref)
        except ConflictError:
            raise
        except ContainerRuntimeError as exc:
            raise StartError(ref, exc.detail) from exc
        logger.info("Container started: %s", ref)

    async def stop(self, ref: str, grace_seconds: int | None = None) -> None:
        grace = self._config.stop_grace_seconds if grace_seconds is None else grace_seconds
        logger.info("Stopping container %s (grace %ds)", ref, grace)
        try:
            await self._runtime.stop(ref, grace)
        except ContainerRuntimeError as exc:
            raise StopError(ref, exc.detail) from exc

    async def remove(self, ref: str) -> None:
        """Stop if running, then force-remove.

        Idempotent: a container that no longer exists counts as removed, so
        a partially failed delete can simply be retried.

        Raises:
            RemovalError: The runtime failed for any other reason.
        """
        logger.info("Removing container: %s", ref)
        try:
            state = await self._runtime.inspect(ref)
        except ContainerMissingError:
            logger.info("Container %s already gone", ref)
            return
        except ContainerRuntimeError as exc:
            # Force-removal below works regardless of state.
            logger.warning("Could not inspect container %s before removal: %s", ref, exc.detail)
            state = None

        if state is not None and state.running:
            try:
                await self._runtime.stop(ref, self._config.stop_grace_seconds)
            except ContainerMissingError:
                logger.info("Container %s vanished during stop", ref)
                return
            except ContainerRuntimeError as exc:
                logger.warning("Graceful stop of %s failed, forcing removal: %s", ref, exc.detail)

        try:
            await self._runtime.remove(ref)
        except ContainerMissingError:
            logger.info("Container %s vanished during removal", ref)
            return
        except ContainerRuntimeError as exc:
            raise RemovalError(ref, exc.detail) from exc
        logger.info("Container removed: %s", ref)

    async def status(self, ref: str) -> ContainerState:
        """Live state of a container; ``.instance_status`` maps it to a record status.

        Raises:
            InspectionError: The container is missing or the runtime failed.
        """
        try:
            return await self._runtime.inspect(ref)
        except ContainerRuntimeError as exc:
            raise InspectionError(ref, exc.detail) from exc

    async def logs(self, ref: str, tail: int = 100) -> str:
        try:
            return await self._runtime.logs(ref, tail)
        except ContainerRuntimeError as exc:
            raise InspectionError(ref, exc.detail) from exc

    async def ping(self) -> None:
        await self._runtime.ping()

    async def list_sandboxes(self) -> list[ContainerSummary]:
        """All containers carrying the sandbox service label."""
        try:
            return await self._runtime.list_by_label(self._config.service_label)
        except ContainerRuntimeError as exc:
            raise InspectionError("", exc.detail) from exc

    async def bound_host_ports(self) -> set[int]:
        try:
            return await self._runtime.list_host_ports()
        except ContainerRuntimeError as exc:
            raise InspectionError("", exc.detail) from exc

    def created_at_of(self, summary: ContainerSummary) -> datetime | None:
        """Creation time from the ``created`` label, else the runtime's own."""
        raw = summary.labels.get(self._config.label_key("created"))
        if raw:
            try:
                parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
                return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
            except ValueError:
                logger.debug("Unparseable created label on %s: %s", summary.container_ref, raw)
        return summary.created_at
