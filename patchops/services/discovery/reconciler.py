"""
Discovery Reconciler.

Correlates the software inventory against the machine registry:
- Both sets fetched through the Query Retrier, independently
- Inventory rows matched to machines by case-insensitive name
- Unmatched rows reported, never fatal to the cycle
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import structlog

from patchops.schemas.inventory import InventoryEntry, MachineRecord
from patchops.services.discovery.query_retrier import QueryRetrier

logger = structlog.get_logger(__name__)


@dataclass
class ReconcileResult:
    """Matched/unmatched partition of one discovery cycle."""

    matched: List[Tuple[MachineRecord, InventoryEntry]] = field(default_factory=list)
    unmatched: List[InventoryEntry] = field(default_factory=list)
    machines_found: int = 0
    entries_found: int = 0


def index_machines(machines: List[MachineRecord]) -> Dict[str, MachineRecord]:
    """Index machines by case-folded name; the first record for a name wins."""
    index: Dict[str, MachineRecord] = {}
    for machine in machines:
        key = machine.machine_name.casefold()
        if key in index:
            logger.warning(
                "Duplicate machine name in registry, keeping first",
                machine=machine.machine_name,
                kept_resource_group=index[key].context.resource_group,
                skipped_resource_group=machine.context.resource_group,
            )
            continue
        index[key] = machine
    return index


class DiscoveryReconciler:
    """Runs one discovery cycle and reconciles inventory to machines."""

    def __init__(
        self,
        registry_retrier: QueryRetrier,
        inventory_retrier: QueryRetrier,
        machine_query: str,
        inventory_query: str,
        default_subscription: str = "",
    ):
        self.registry_retrier = registry_retrier
        self.inventory_retrier = inventory_retrier
        self.machine_query = machine_query
        self.inventory_query = inventory_query
        self.default_subscription = default_subscription

    async def fetch_machines(self) -> List[MachineRecord]:
        rows = await self.registry_retrier.query(self.machine_query)
        machines = []
        for row in rows:
            if not row.get("name"):
                logger.warning("Skipping registry row without a name", row=row)
                continue
            machines.append(MachineRecord.from_row(row, self.default_subscription))
        return machines

    async def fetch_inventory(self) -> List[InventoryEntry]:
        rows = await self.inventory_retrier.query(self.inventory_query)
        return [InventoryEntry.from_row(row) for row in rows]

    async def reconcile(self) -> ReconcileResult:
        """
        Fetch the registry and the inventory, then pair them up.

        Raises:
            DiscoveryUnavailable: Either query exhausted its retries
        """
        machines, entries = await asyncio.gather(
            self.fetch_machines(),
            self.fetch_inventory(),
        )

        index = index_machines(machines)
        result = ReconcileResult(machines_found=len(machines), entries_found=len(entries))

        for entry in entries:
            machine = index.get(entry.computer.casefold())
            if machine is None:
                logger.info(
                    "Inventory entry has no matching machine",
                    computer=entry.computer,
                    software=entry.software_name,
                )
                result.unmatched.append(entry)
                continue
            result.matched.append((machine, entry))

        logger.info(
            "Discovery cycle reconciled",
            machines_found=result.machines_found,
            entries_found=result.entries_found,
            matched=len(result.matched),
            unmatched=len(result.unmatched),
        )
        return result
