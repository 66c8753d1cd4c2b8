"""
Inventory Store.

Persists reconciled inventory into ``vm_inventory`` and prunes old rows.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Tuple

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from patchops.core.database import session_scope
from patchops.models.patching import VmInventory
from patchops.schemas.inventory import InventoryEntry, MachineRecord

logger = structlog.get_logger(__name__)


class InventoryStore:
    """Writes inventory snapshots keyed by (vm, software, date)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def save_matched(
        self,
        matched: Iterable[Tuple[MachineRecord, InventoryEntry]],
        collected_at: Optional[datetime] = None,
    ) -> int:
        """
        Upsert matched entries for one collection date.

        Returns:
            Number of rows written
        """
        date = collected_at or datetime.now(timezone.utc)
        written = 0

        async with session_scope(self.session_factory) as session:
            for machine, entry in matched:
                existing = await session.scalar(
                    select(VmInventory).where(
                        VmInventory.vm_name == machine.machine_name,
                        VmInventory.software_name == entry.software_name,
                        VmInventory.date == date,
                    )
                )
                row = existing or VmInventory(
                    vm_name=machine.machine_name,
                    software_name=entry.software_name,
                    date=date,
                )
                row.software_version = entry.software_version
                row.publisher = entry.publisher
                row.number_of_known_vulnerabilities = entry.vulnerability_count
                row.os_type = machine.os_type
                row.resource_group = machine.context.resource_group
                row.subscription_id = machine.context.subscription_id
                row.location = machine.context.location
                row.status = machine.status
                if existing is None:
                    session.add(row)
                written += 1

        logger.info("Inventory snapshot saved", rows=written, date=date.isoformat())
        return written

    async def cleanup(self, days_to_keep: int = 30) -> int:
        """Delete inventory rows older than ``days_to_keep`` days."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days_to_keep)
        async with session_scope(self.session_factory) as session:
            result = await session.execute(delete(VmInventory).where(VmInventory.date < cutoff))
            deleted = result.rowcount or 0

        logger.info("Old inventory entries removed", deleted=deleted, days_to_keep=days_to_keep)
        return deleted
