"""
Discovery Schemas.

Machine registry and software inventory records produced per discovery
cycle, plus the discovery API responses.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from patchops.schemas.common import PascalModel


class ExecutionContext(BaseModel):
    """Addressing needed to open a remote command channel to one machine."""

    model_config = ConfigDict(frozen=True)

    subscription_id: str
    resource_group: str
    location: str


class MachineRecord(BaseModel):
    """A registered machine. Immutable for the duration of one discovery cycle."""

    model_config = ConfigDict(frozen=True)

    machine_name: str
    context: ExecutionContext
    os_type: Optional[str] = None
    status: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any], default_subscription: str = "") -> "MachineRecord":
        """Build a record from a Resource Graph row."""
        return cls(
            machine_name=row["name"],
            context=ExecutionContext(
                subscription_id=row.get("subscriptionId") or default_subscription,
                resource_group=row.get("resourceGroup") or "",
                location=row.get("location") or "",
            ),
            os_type=row.get("osType") or None,
            status=row.get("status") or None,
        )


def coerce_vulnerability_count(value: Any) -> int:
    """Normalize a reported vulnerability count; missing or unusable values become 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0
    try:
        count = int(float(value))
    except (TypeError, ValueError):
        return 0
    return max(count, 0)


class InventoryEntry(BaseModel):
    """One installed software item as reported by the inventory source."""

    model_config = ConfigDict(frozen=True)

    computer: str
    software_name: str
    software_version: str = ""
    publisher: Optional[str] = None
    vulnerability_count: int = Field(0, ge=0)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "InventoryEntry":
        """Build an entry from a Log Analytics ConfigurationData row."""
        return cls(
            computer=row.get("Computer") or "",
            software_name=row.get("SoftwareName") or "",
            software_version=row.get("CurrentVersion") or row.get("SoftwareVersion") or "",
            publisher=row.get("Publisher") or None,
            vulnerability_count=coerce_vulnerability_count(
                row.get("numberOfKnownVulnerabilities")
            ),
        )


# =============================================================================
# API Schemas
# =============================================================================

class UnmatchedEntryResponse(PascalModel):
    computer: str
    software_name: str
    software_version: str


class DiscoveryResponse(PascalModel):
    """Summary of one discovery cycle."""

    machines_found: int
    entries_found: int
    matched_entries: int
    unmatched_entries: int
    persisted_entries: int = 0
    unmatched: List[UnmatchedEntryResponse] = Field(default_factory=list)
    timestamp: datetime


class InventoryCleanupResponse(PascalModel):
    deleted_rows: int
    days_to_keep: int
