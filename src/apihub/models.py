"""Data models for sandbox instances and the containers behind them."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(UTC)


class InstanceStatus(str, Enum):
    """Lifecycle status of a sandbox instance record."""

    CREATING = "creating"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


ACTIVE_STATUSES = frozenset({InstanceStatus.CREATING, InstanceStatus.RUNNING})

ALLOWED_TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    InstanceStatus.CREATING: frozenset(
        {InstanceStatus.RUNNING, InstanceStatus.STOPPING, InstanceStatus.ERROR}
    ),
    InstanceStatus.RUNNING: frozenset({InstanceStatus.STOPPING, InstanceStatus.ERROR}),
    InstanceStatus.STOPPING: frozenset({InstanceStatus.STOPPED, InstanceStatus.ERROR}),
    InstanceStatus.ERROR: frozenset({InstanceStatus.STOPPING, InstanceStatus.STOPPED}),
    InstanceStatus.STOPPED: frozenset(),
}


def can_transition(current: InstanceStatus, target: InstanceStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class Instance(BaseModel):
    """Persisted metadata for one sandbox container."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    owner_id: str
    container_ref: str = ""
    container_name: str
    port: int
    status: InstanceStatus = InstanceStatus.CREATING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    stopped_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class InstanceView(BaseModel):
    """Instance descriptor handed back to callers, with live status and URL."""

    id: str
    owner_id: str
    container_ref: str
    container_name: str
    port: int
    url: str
    status: InstanceStatus
    created_at: datetime
    updated_at: datetime
    stopped_at: datetime | None = None
    error: str | None = Field(default=None, description="Why the live status could not be read.")

    @classmethod
    def from_instance(
        cls,
        instance: Instance,
        *,
        base_url: str,
        status: InstanceStatus | None = None,
        error: str | None = None,
    ) -> InstanceView:
        return cls(
            id=instance.id,
            owner_id=instance.owner_id,
            container_ref=instance.container_ref,
            container_name=instance.container_name,
            port=instance.port,
            url=build_url(base_url, instance.port),
            status=status or instance.status,
            created_at=instance.created_at,
            updated_at=instance.updated_at,
            stopped_at=instance.stopped_at,
            error=error,
        )


def build_url(base_url: str, port: int) -> str:
    """Externally visible URL of a sandbox bound to *port*."""
    return f"{base_url.rstrip('/')}:{port}"


class SandboxOptions(BaseModel):
    """Per-request knobs forwarded to the sandbox API as env vars."""

    data_theme: str = Field(default="electronics", description="Product catalogue theme.")
    product_count: int = Field(default=50, ge=1, description="Number of generated products.")
    enable_cors: bool = Field(default=True, description="Allow any origin to call the sandbox.")


class HealthCheck(BaseModel):
    """Container health probe, durations in seconds."""

    test: list[str]
    interval: float
    timeout: float
    retries: int
    start_period: float


class ContainerSpec(BaseModel):
    """Everything the runtime needs to create one sandbox container."""

    name: str
    image: str
    container_port: int
    host_port: int
    env: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    memory_limit: str = "256m"
    cpu_shares: int = 512
    restart_policy: str = "unless-stopped"
    healthcheck: HealthCheck | None = None


class ContainerDescriptor(BaseModel):
    """Result of a successful container create."""

    container_ref: str
    container_name: str
    port: int
    url: str


class ContainerState(BaseModel):
    """Live container state as reported by the runtime."""

    running: bool
    raw_state: str
    host_port: int | None = None

    @property
    def instance_status(self) -> InstanceStatus:
        """Map the runtime state string onto the record status vocabulary."""
        if self.running:
            return InstanceStatus.RUNNING
        return _RAW_STATE_MAP.get(self.raw_state.lower(), InstanceStatus.ERROR)


_RAW_STATE_MAP = {
    "created": InstanceStatus.CREATING,
    "running": InstanceStatus.RUNNING,
    "restarting": InstanceStatus.RUNNING,
    "paused": InstanceStatus.RUNNING,
    "removing": InstanceStatus.STOPPING,
    "exited": InstanceStatus.STOPPED,
    "dead": InstanceStatus.ERROR,
}


class ContainerSummary(BaseModel):
    """One row of a label-filtered container listing."""

    container_ref: str
    name: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    created_at: datetime | None = None
