"""
Inventory API Endpoints.

REST API for discovery cycles:
- Reconcile the software inventory against the machine registry
- Persist the matched inventory snapshot
- Prune old inventory snapshots
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query
import structlog

from patchops.core.dependencies import get_inventory_store, get_reconciler
from patchops.schemas.inventory import (
    DiscoveryResponse,
    InventoryCleanupResponse,
    UnmatchedEntryResponse,
)
from patchops.services.discovery.inventory_store import InventoryStore
from patchops.services.discovery.reconciler import DiscoveryReconciler

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/inventory", tags=["Inventory"])


@router.post("/discover", response_model=DiscoveryResponse)
async def run_discovery(
    persist: bool = Query(True, description="Store matched entries in the inventory table"),
    reconciler: DiscoveryReconciler = Depends(get_reconciler),
    inventory_store: InventoryStore = Depends(get_inventory_store),
):
    """
    Run one discovery cycle.

    Registry or inventory query failures after all retries return 503.
    """
    result = await reconciler.reconcile()

    persisted = 0
    if persist and result.matched:
        persisted = await inventory_store.save_matched(result.matched)

    return DiscoveryResponse(
        machines_found=result.machines_found,
        entries_found=result.entries_found,
        matched_entries=len(result.matched),
        unmatched_entries=len(result.unmatched),
        persisted_entries=persisted,
        unmatched=[
            UnmatchedEntryResponse(
                computer=entry.computer,
                software_name=entry.software_name,
                software_version=entry.software_version,
            )
            for entry in result.unmatched
        ],
        timestamp=datetime.now(timezone.utc),
    )


@router.post("/cleanup", response_model=InventoryCleanupResponse)
async def cleanup_inventory(
    days_to_keep: int = Query(30, ge=1, alias="daysToKeep"),
    inventory_store: InventoryStore = Depends(get_inventory_store),
):
    """Delete inventory snapshots older than ``daysToKeep`` days."""
    deleted = await inventory_store.cleanup(days_to_keep)
    return InventoryCleanupResponse(deleted_rows=deleted, days_to_keep=days_to_keep)
