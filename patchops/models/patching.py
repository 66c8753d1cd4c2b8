"""
Patch Management Database Models.

This module contains the database models for patch orchestration:
- Patch Jobs (one record per (machine, software, version) attempt)
- Application Repository (install entries per software and OS platform)
- VM Inventory (software inventory snapshots per discovery cycle)
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from patchops.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PatchJobStatus(str, enum.Enum):
    """Patch job lifecycle. Transitions only move forward."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PatchJobStatus.SUCCEEDED, PatchJobStatus.FAILED)

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    PatchJobStatus.PENDING: 0,
    PatchJobStatus.RUNNING: 1,
    PatchJobStatus.SUCCEEDED: 2,
    PatchJobStatus.FAILED: 2,
}


class PatchJob(Base):
    """
    Patch job record.

    Owned by the scheduler while the job runs; queried later by operators.
    ``completed_at`` is set if and only if the status is terminal.
    """

    __tablename__ = "patch_jobs"
    __table_args__ = (
        Index("ix_patch_jobs_vm_name_status", "vm_name", "status"),
        Index("ix_patch_jobs_started_at", "started_at"),
    )

    job_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    vm_name = Column(String(255), nullable=False)
    software_name = Column(String(255), nullable=False)
    target_version = Column(String(100), nullable=False)
    previous_version = Column(String(100))

    status = Column(
        Enum(PatchJobStatus, name="patch_job_status", native_enum=False, length=20),
        default=PatchJobStatus.PENDING,
        nullable=False,
    )

    started_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    completed_at = Column(DateTime(timezone=True))

    command_id = Column(String(255))
    resource_group = Column(String(255))
    error_message = Column(Text)
    execution_log = Column(Text)

    def __repr__(self) -> str:
        return f"<PatchJob {self.job_id} {self.vm_name}/{self.software_name} {self.status}>"


class ApplicationRepo(Base):
    """
    Application repository entry.

    Maps a software name (and OS platform) to the install command that the
    packaged install script runs on the target machine.
    """

    __tablename__ = "application_repo"
    __table_args__ = (
        UniqueConstraint(
            "software_name", "version", "os_platform", "architecture",
            name="uq_application_repo_software_version_platform",
        ),
        Index("ix_application_repo_software_platform", "software_name", "os_platform"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    software_name = Column(String(255), nullable=False)
    version = Column(String(100), nullable=False)
    install_cmd = Column(String(2000), nullable=False)
    vendor = Column(String(255), nullable=False)
    os_platform = Column(String(50), nullable=False, default="Windows")
    architecture = Column(String(50), default="x64")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class VmInventory(Base):
    """Software inventory row, unique per (vm, software, collection date)."""

    __tablename__ = "vm_inventory"
    __table_args__ = (
        UniqueConstraint("vm_name", "software_name", "date", name="uq_vm_inventory_vm_software_date"),
        Index("ix_vm_inventory_vm_name_date", "vm_name", "date"),
        Index("ix_vm_inventory_software_name", "software_name"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    vm_name = Column(String(255), nullable=False)
    software_name = Column(String(255), nullable=False)
    software_version = Column(String(100), nullable=False)
    publisher = Column(String(255))
    number_of_known_vulnerabilities = Column(Integer, nullable=False, default=0)

    os_type = Column(String(50))
    resource_group = Column(String(255))
    subscription_id = Column(String(64))
    location = Column(String(64))
    status = Column(String(50))

    date = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
