"""InMemoryRuntime — a process-local stand-in for a container host.

Holds containers in a dict and enforces the same uniqueness rules a real
daemon does (container names, published host ports).  Useful for tests
and for dry runs of the provisioning flow without Docker.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime

from apihub.errors import ConflictError, ContainerMissingError, RuntimeUnavailableError
from apihub.models import ContainerSpec, ContainerState, ContainerSummary, utcnow


@dataclass
class _Container:
    ref: str
    spec: ContainerSpec
    state: str = "created"
    created_at: datetime = field(default_factory=utcnow)
    log_lines: list[str] = field(default_factory=list)


class InMemoryRuntime:
    """Dict-backed container runtime.

    Satisfies the :class:`~apihub.runtime.base.ContainerRuntime` protocol.

    ``failures`` maps an operation name (``"create"``, ``"start"``,
    ``"remove"``...) to an exception raised on every call of that
    operation until the entry is removed.
    """

    def __init__(self) -> None:
        self.containers: dict[str, _Container] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, str]] = []
        self._ids = itertools.count(1)
        self.available = True

    async def create(self, spec: ContainerSpec) -> str:
        self._record("create", spec.name)
        for existing in self.containers.values():
            if existing.spec.name == spec.name:
                raise ConflictError("name", spec.name)
            if existing.spec.host_port == spec.host_port:
                raise ConflictError("port", spec.host_port)
        ref = f"{next(self._ids):012x}"
        self.containers[ref] = _Container(ref=ref, spec=spec)
        return ref

    async def start(self, ref: str) -> None:
        self._record("start", ref)
        container = self._get(ref)
        container.state = "running"
        container.log_lines.append(f"{utcnow().isoformat()} listening on {container.spec.container_port}")

    async def stop(self, ref: str, grace_seconds: int) -> None:
        self._record("stop", ref)
        self._get(ref).state = "exited"

    async def remove(self, ref: str) -> None:
        self._record("remove", ref)
        self._get(ref)
        del self.containers[ref]

    async def inspect(self, ref: str) -> ContainerState:
        self._record("inspect", ref)
        container = self._get(ref)
        return ContainerState(
            running=container.state == "running",
            raw_state=container.state,
            host_port=container.spec.host_port,
        )

    async def list_by_label(self, label: str) -> list[ContainerSummary]:
        self._record("list_by_label", label)
        key, _, value = label.partition("=")
        return [
            ContainerSummary(
                container_ref=c.ref,
                name=c.spec.name,
                labels=dict(c.spec.labels),
                created_at=c.created_at,
            )
            for c in self.containers.values()
            if key in c.spec.labels and (not value or c.spec.labels[key] == value)
        ]

    async def list_host_ports(self) -> set[int]:
        self._record("list_host_ports", "")
        return {c.spec.host_port for c in self.containers.values()}

    async def logs(self, ref: str, tail: int) -> str:
        self._record("logs", ref)
        lines = self._get(ref).log_lines
        return "\n".join(lines[-tail:] if tail > 0 else [])

    async def ping(self) -> None:
        self._record("ping", "")
        if not self.available:
            raise RuntimeUnavailableError("in-memory runtime marked unavailable")

    def _record(self, operation: str, target: str) -> None:
        self.calls.append((operation, target))
        failure = self.failures.get(operation)
        if failure is not None:
            raise failure

    def _get(self, ref: str) -> _Container:
        container = self.containers.get(ref)
        if container is None:
            raise ContainerMissingError(ref)
        return container

