"""
Patching API Endpoints.

REST API for patch deployment:
- Single patch request
- Batch patch requests with bounded concurrency
- Patch job history lookup

Job failures are reported in the response body with a 200 status.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
import structlog

from patchops.core.dependencies import get_job_store, get_scheduler
from patchops.models.patching import PatchJobStatus
from patchops.schemas.patching import (
    BatchPatchRequest,
    BatchPatchResponse,
    PatchJobResponse,
    PatchRequest,
    PatchResponse,
)
from patchops.services.patching.job_store import JobNotFoundError, SqlJobStore
from patchops.services.patching.scheduler import JobScheduler

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/patching", tags=["Patching"])


@router.post("/apply", response_model=PatchResponse, response_model_exclude_none=True)
async def apply_patch(
    data: PatchRequest,
    scheduler: JobScheduler = Depends(get_scheduler),
):
    """
    Patch one piece of software on one machine.

    Returns ``Status="Success"`` or ``Status="Failed"`` with an ``Error``.
    """
    result = await scheduler.run_single(data)
    return PatchResponse.from_result(result)


@router.post("/batch", response_model=BatchPatchResponse, response_model_exclude_none=True)
async def apply_patch_batch(
    data: BatchPatchRequest,
    scheduler: JobScheduler = Depends(get_scheduler),
):
    """
    Patch many (machine, software, version) combinations.

    At most ``maxConcurrency`` jobs run at once. Check ``FailedJobs`` and
    the per-job ``Status`` for partial failures.
    """
    summary = await scheduler.schedule(data.patch_jobs, max_concurrency=data.max_concurrency)
    return BatchPatchResponse.from_summary(summary)


@router.get("/jobs", response_model=List[PatchJobResponse])
async def list_patch_jobs(
    vm_name: Optional[str] = Query(None, alias="vmName"),
    job_status: Optional[PatchJobStatus] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=1000),
    job_store: SqlJobStore = Depends(get_job_store),
):
    """List recent patch jobs, newest first."""
    jobs = await job_store.list_jobs(vm_name=vm_name, status=job_status, limit=limit)
    return [PatchJobResponse.model_validate(job) for job in jobs]


@router.get("/jobs/{job_id}", response_model=PatchJobResponse)
async def get_patch_job(
    job_id: str,
    job_store: SqlJobStore = Depends(get_job_store),
):
    """Get one patch job record."""
    try:
        job = await job_store.get_job(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return PatchJobResponse.model_validate(job)
