"""Per-invocation wiring shared by CLI commands."""

from __future__ import annotations

from pathlib import Path

from apihub.config import ConfigLoader, HubConfig
from apihub.provisioning.orchestrator import ProvisioningOrchestrator
from apihub.provisioning.reaper import OrphanReaper
from apihub.runtime.base import ContainerRuntime
from apihub.runtime.docker_runtime import DockerCliRuntime
from apihub.store import JsonFileRecordStore
from apihub.utils.telemetry import configure_telemetry

DEFAULT_STORE_PATH = Path("~/.apihub/instances.json")


class HubContext:
    """Lazily builds config, store, runtime and orchestrator for one CLI run."""

    def __init__(self, *, config_path: str | None = None, store_path: str | None = None) -> None:
        self._config_path = config_path
        self._store_path = store_path
        self._config: HubConfig | None = None
        self._orchestrator: ProvisioningOrchestrator | None = None

    @property
    def config(self) -> HubConfig:
        """Load the config on first use.

        Raises:
            ConfigError: The config file is unreadable or invalid.
        """
        if self._config is None:
            if self._config_path:
                self._config = ConfigLoader(Path(self._config_path)).load()
            else:
                self._config = HubConfig()
            if self._config.telemetry.enabled:
                configure_telemetry(otlp_endpoint=self._config.telemetry.otlp_endpoint)
        return self._config

    def store_path(self) -> Path:
        raw = self._store_path or self.config.store_path
        return Path(raw).expanduser() if raw else DEFAULT_STORE_PATH.expanduser()

    def build_runtime(self) -> ContainerRuntime:
        cfg = self.config
        return DockerCliRuntime(
            container_port=cfg.container_port,
            call_timeout=cfg.call_timeout,
            docker_binary=cfg.docker_binary,
        )

    @property
    def orchestrator(self) -> ProvisioningOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = ProvisioningOrchestrator.from_config(
                self.config,
                JsonFileRecordStore(self.store_path()),
                self.build_runtime(),
            )
        return self._orchestrator

    def reaper(self) -> OrphanReaper:
        orchestrator = self.orchestrator
        settings = self.config.reaper
        return OrphanReaper(
            orchestrator.lifecycle,
            orchestrator.store,
            orchestrator=orchestrator,
            grace_seconds=settings.grace_seconds,
            stuck_creating_seconds=settings.stuck_creating_seconds,
        )
