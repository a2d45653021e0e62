"""Shared fixtures: an in-memory runtime and store wired to a small port range."""

from __future__ import annotations

import pytest

from apihub.config import AllocatorSettings, HubConfig
from apihub.provisioning.lifecycle import ContainerLifecycleManager
from apihub.provisioning.orchestrator import ProvisioningOrchestrator
from apihub.runtime.memory_runtime import InMemoryRuntime
from apihub.store import InMemoryRecordStore


@pytest.fixture
def config() -> HubConfig:
    return HubConfig(allocator=AllocatorSettings(min_port=3001, max_port=3002))


@pytest.fixture
def runtime() -> InMemoryRuntime:
    return InMemoryRuntime()


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def lifecycle(runtime: InMemoryRuntime, config: HubConfig) -> ContainerLifecycleManager:
    return ContainerLifecycleManager(runtime, config)


@pytest.fixture
def orchestrator(
    config: HubConfig,
    store: InMemoryRecordStore,
    runtime: InMemoryRuntime,
) -> ProvisioningOrchestrator:
    return ProvisioningOrchestrator.from_config(config, store, runtime)
