"""Provisioning core — port allocation, container lifecycle, orchestration, reaping."""

from apihub.provisioning.allocator import PortAllocator, PortReservations
from apihub.provisioning.health import HealthProbe
from apihub.provisioning.lifecycle import ContainerLifecycleManager
from apihub.provisioning.orchestrator import ProvisioningOrchestrator
from apihub.provisioning.reaper import OrphanReaper, ReapReport

__all__ = [
    "ContainerLifecycleManager",
    "HealthProbe",
    "OrphanReaper",
    "PortAllocator",
    "PortReservations",
    "ProvisioningOrchestrator",
    "ReapReport",
]
