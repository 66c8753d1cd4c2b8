"""
Discovery Services Package.

Machine registry and software inventory discovery with reconciliation.
"""

from patchops.services.discovery.backends import (
    DiscoveryBackendError,
    LogAnalyticsBackend,
    ResourceGraphBackend,
)
from patchops.services.discovery.inventory_store import InventoryStore
from patchops.services.discovery.query_retrier import DiscoveryBackend, QueryPage, QueryRetrier
from patchops.services.discovery.reconciler import DiscoveryReconciler, ReconcileResult
from patchops.services.discovery.registry import MachineRegistry

__all__ = [
    "DiscoveryBackend",
    "DiscoveryBackendError",
    "DiscoveryReconciler",
    "InventoryStore",
    "LogAnalyticsBackend",
    "MachineRegistry",
    "QueryPage",
    "QueryRetrier",
    "ReconcileResult",
    "ResourceGraphBackend",
]
