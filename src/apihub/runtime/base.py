"""ContainerRuntime protocol — the common interface for container backends."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from apihub.models import ContainerSpec, ContainerState, ContainerSummary


@runtime_checkable
class ContainerRuntime(Protocol):
    """Creates, drives and inspects containers on a single host.

    Implementations raise :class:`~apihub.errors.ContainerRuntimeError` for
    failed calls, :class:`~apihub.errors.ContainerMissingError` when the
    referenced container does not exist, and
    :class:`~apihub.errors.ConflictError` when a container name or host
    port is already taken.
    """

    async def create(self, spec: ContainerSpec) -> str:
        """Create (but do not start) a container and return its id."""
        ...

    async def start(self, ref: str) -> None: ...

    async def stop(self, ref: str, grace_seconds: int) -> None:
        """Stop gracefully, killing after ``grace_seconds``."""
        ...

    async def remove(self, ref: str) -> None:
        """Force-remove a container in any state."""
        ...

    async def inspect(self, ref: str) -> ContainerState: ...

    async def list_by_label(self, label: str) -> list[ContainerSummary]:
        """All containers (any state) carrying ``label`` (``key=value``)."""
        ...

    async def list_host_ports(self) -> set[int]:
        """Host ports published by any container on the host."""
        ...

    async def logs(self, ref: str, tail: int) -> str:
        """Last ``tail`` lines of combined stdout/stderr, timestamped."""
        ...

    async def ping(self) -> None:
        """Raise :class:`~apihub.errors.RuntimeUnavailableError` if unreachable."""
        ...
