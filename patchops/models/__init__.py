"""
Database models.
"""

from patchops.models.patching import (
    ApplicationRepo,
    PatchJob,
    PatchJobStatus,
    VmInventory,
)

__all__ = [
    "ApplicationRepo",
    "PatchJob",
    "PatchJobStatus",
    "VmInventory",
]
