"""Hub configuration — sandbox image, port range, limits, reaper cadence."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from apihub.errors import ConfigError


class HealthProbeSettings(BaseModel):
    """Container health probe run by the runtime against the sandbox API."""

    path: str = "/health"
    interval: float = Field(default=30.0, description="Seconds between probes.")
    timeout: float = Field(default=10.0, description="Seconds before a probe counts as failed.")
    retries: int = Field(default=3, description="Consecutive failures before 'unhealthy'.")
    start_period: float = Field(default=30.0, description="Grace period after start.")


class AllocatorSettings(BaseModel):
    """Host port range and in-process reservation behaviour."""

    min_port: int = Field(default=3001, ge=1, le=65535)
    max_port: int = Field(default=4000, ge=1, le=65535)
    reserve_ports: bool = Field(
        default=True,
        description="Hold allocated ports in memory until the record is persisted.",
    )
    reservation_ttl: float = Field(default=120.0, description="Seconds before a reservation lapses.")


class ReaperSettings(BaseModel):
    """Orphan reaper cadence and safety margins."""

    interval: float = Field(default=300.0, description="Seconds between reap cycles.")
    grace_seconds: float = Field(
        default=60.0,
        description="Containers younger than this are never reaped.",
    )
    stuck_creating_seconds: float = Field(
        default=600.0,
        description="Records left in 'creating' longer than this are failed.",
    )


class TelemetrySettings(BaseModel):
    """Optional telemetry configuration."""

    enabled: bool = False
    otlp_endpoint: str | None = None


class HubConfig(BaseModel):
    """Top-level configuration for provisioning sandboxes."""

    image: str = "timfewi/dummy-api:latest"
    container_port: int = Field(default=3000, ge=1, le=65535)
    base_url: str = "http://localhost"
    memory_limit: str = "256m"
    cpu_shares: int = 512
    restart_policy: str = "unless-stopped"
    cors_fallback_origin: str = "http://localhost:4200"
    env: dict[str, str] = Field(default_factory=dict, description="Extra env vars for every sandbox.")
    label_prefix: str = "api-hub"
    service_marker: str = "dummy-api"
    name_prefix: str = "api-instance"
    stop_grace_seconds: int = 10
    call_timeout: float = Field(default=30.0, description="Upper bound for one runtime call.")
    create_attempts: int = Field(default=3, ge=1)
    docker_binary: str = "docker"
    store_path: str | None = None
    health: HealthProbeSettings = Field(default_factory=HealthProbeSettings)
    allocator: AllocatorSettings = Field(default_factory=AllocatorSettings)
    reaper: ReaperSettings = Field(default_factory=ReaperSettings)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)

    @model_validator(mode="after")
    def _validate_port_range(self) -> HubConfig:
        if self.allocator.min_port > self.allocator.max_port:
            msg = (
                f"allocator.min_port ({self.allocator.min_port}) must not exceed "
                f"allocator.max_port ({self.allocator.max_port})"
            )
            raise ValueError(msg)
        return self

    @property
    def service_label(self) -> str:
        """``key=value`` label selecting every sandbox container."""
        return f"{self.label_key('service')}={self.service_marker}"

    def label_key(self, name: str) -> str:
        return f"{self.label_prefix}.{name}"


class ConfigLoader:
    """Load and validate a hub config YAML file into a :class:`HubConfig`."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def load(self) -> HubConfig:
        """Read YAML, interpolate env vars, and validate.

        Environment variables in the form ``${VAR}`` or ``$VAR`` are expanded
        using :func:`os.path.expandvars` before YAML parsing.

        Raises:
            ConfigError: On read errors, YAML parse errors or schema validation failures.
        """
        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Cannot read {self._path}: {exc}") from exc

        expanded = os.path.expandvars(raw)

        try:
            data: Any = yaml.safe_load(expanded)
        except yaml.YAMLError as exc:
            raise ConfigError(f"YAML parse error: {exc}") from exc

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError("Hub config YAML must be a mapping")

        try:
            return HubConfig.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(str(exc)) from exc
