"""
Patching API Schemas.

Requests use camelCase keys, responses use PascalCase keys.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_pascal

from patchops.core.errors import ErrorKind
from patchops.models.patching import PatchJobStatus
from patchops.schemas.common import CamelModel, PascalModel


# =============================================================================
# Requests
# =============================================================================

class PatchRequest(CamelModel):
    """One (machine, software, version) patch request."""

    machine_name: str = Field(..., min_length=1, max_length=255)
    software_name: str = Field(..., min_length=1, max_length=255)
    version: str = Field(..., min_length=1, max_length=100)
    resource_group_name: Optional[str] = Field(None, max_length=255)
    previous_version: Optional[str] = Field(None, max_length=100)


class BatchPatchRequest(CamelModel):
    """Batch of patch requests processed with bounded concurrency."""

    max_concurrency: Optional[int] = Field(None, ge=1, le=50)
    patch_jobs: List[PatchRequest] = Field(..., min_length=1, max_length=500)


# =============================================================================
# Results
# =============================================================================

class JobResult(PascalModel):
    """Outcome of one patch job inside a batch."""

    job_id: Optional[str] = None
    machine_name: str
    software_name: str
    version: str
    status: PatchJobStatus
    command_id: Optional[str] = None
    resource_group: Optional[str] = None
    output: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    timestamp: datetime

    @property
    def succeeded(self) -> bool:
        return self.status == PatchJobStatus.SUCCEEDED


class BatchSummary(PascalModel):
    """Aggregated outcome of a scheduling call. Results follow submission order."""

    total_jobs: int
    successful_jobs: int
    failed_jobs: int
    processing_mode: str = "Batch"
    timestamp: datetime
    results: List[JobResult] = Field(default_factory=list)

    @classmethod
    def from_results(cls, results: List[JobResult], timestamp: datetime) -> "BatchSummary":
        successful = sum(1 for result in results if result.succeeded)
        return cls(
            total_jobs=len(results),
            successful_jobs=successful,
            failed_jobs=len(results) - successful,
            timestamp=timestamp,
            results=results,
        )


# =============================================================================
# Responses
# =============================================================================

class PatchResponse(PascalModel):
    """Single-mode response."""

    job_id: Optional[str] = None
    machine_name: str
    software_name: str
    version: str
    status: str = Field(..., description="Success or Failed")
    command_id: Optional[str] = None
    timestamp: datetime
    output: Optional[str] = None
    resource_group: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def from_result(cls, result: JobResult) -> "PatchResponse":
        return cls(
            job_id=result.job_id,
            machine_name=result.machine_name,
            software_name=result.software_name,
            version=result.version,
            status="Success" if result.succeeded else "Failed",
            command_id=result.command_id,
            timestamp=result.timestamp,
            output=result.output,
            resource_group=result.resource_group,
            error=result.error,
            error_kind=result.error_kind,
        )


class BatchResultItem(PascalModel):
    job_id: Optional[str] = None
    machine_name: str
    software_name: str
    status: str
    timestamp: datetime
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class BatchPatchResponse(PascalModel):
    """Batch-mode response."""

    total_jobs: int
    successful_jobs: int
    failed_jobs: int
    processing_mode: str
    timestamp: datetime
    results: List[BatchResultItem]

    @classmethod
    def from_summary(cls, summary: BatchSummary) -> "BatchPatchResponse":
        return cls(
            total_jobs=summary.total_jobs,
            successful_jobs=summary.successful_jobs,
            failed_jobs=summary.failed_jobs,
            processing_mode=summary.processing_mode,
            timestamp=summary.timestamp,
            results=[
                BatchResultItem(
                    job_id=result.job_id,
                    machine_name=result.machine_name,
                    software_name=result.software_name,
                    status="Success" if result.succeeded else "Failed",
                    timestamp=result.timestamp,
                    error=result.error,
                    error_kind=result.error_kind,
                )
                for result in summary.results
            ],
        )


class PatchJobResponse(PascalModel):
    """Stored patch job record."""

    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True, from_attributes=True)

    job_id: str
    vm_name: str
    software_name: str
    target_version: str
    previous_version: Optional[str] = None
    status: PatchJobStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    command_id: Optional[str] = None
    resource_group: Optional[str] = None
    error_message: Optional[str] = None
    execution_log: Optional[str] = None
