"""API Hub — disposable per-user REST API sandboxes on Docker."""

from __future__ import annotations

from typing import TYPE_CHECKING

__version__ = "0.1.0"

if TYPE_CHECKING:
    from apihub.provisioning.orchestrator import ProvisioningOrchestrator as ProvisioningOrchestrator
    from apihub.provisioning.reaper import OrphanReaper as OrphanReaper

_EXPORTS = {
    "ProvisioningOrchestrator": "apihub.provisioning.orchestrator",
    "OrphanReaper": "apihub.provisioning.reaper",
}


def __getattr__(name: str) -> object:
    module_path = _EXPORTS.get(name)
    if module_path is not None:
        import importlib

        mod = importlib.import_module(module_path)
        return getattr(mod, name)
    raise AttributeError(f"module 'apihub' has no attribute {name!r}")
