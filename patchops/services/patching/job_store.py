"""
Patch Job Store.

Persists patch job records and enforces their lifecycle:
Pending -> Running -> {Succeeded, Failed}; ``completed_at`` is set
if and only if the job is in a terminal state.
"""

from typing import List, Optional, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from patchops.core.database import session_scope
from patchops.models.patching import PatchJob, PatchJobStatus, utcnow

logger = structlog.get_logger(__name__)


class JobNotFoundError(Exception):
    """Patch job not found."""
    pass


class InvalidTransition(Exception):
    """A status update would move a job backwards or out of a terminal state."""
    pass


class JobStore(Protocol):
    """Persistence contract used by the scheduler."""

    async def create_job(
        self,
        vm_name: str,
        software_name: str,
        target_version: str,
        previous_version: Optional[str] = None,
    ) -> str:
        ...

    async def update_job(
        self,
        job_id: str,
        status: PatchJobStatus,
        error_message: Optional[str] = None,
        execution_log: Optional[str] = None,
        command_id: Optional[str] = None,
        resource_group: Optional[str] = None,
    ) -> None:
        ...


def check_transition(job_id: str, current: PatchJobStatus, new: PatchJobStatus) -> None:
    """Raise ``InvalidTransition`` unless ``current -> new`` moves forward."""
    if current.is_terminal:
        raise InvalidTransition(f"Job {job_id} is already {current.value}")
    if new.rank < current.rank:
        raise InvalidTransition(f"Job {job_id} cannot move from {current.value} to {new.value}")


class SqlJobStore:
    """SQLAlchemy-backed job store."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create_job(
        self,
        vm_name: str,
        software_name: str,
        target_version: str,
        previous_version: Optional[str] = None,
    ) -> str:
        job = PatchJob(
            vm_name=vm_name,
            software_name=software_name,
            target_version=target_version,
            previous_version=previous_version,
            status=PatchJobStatus.PENDING,
            started_at=utcnow(),
        )
        async with session_scope(self.session_factory) as session:
            session.add(job)
            await session.flush()
            job_id = job.job_id

        logger.debug("Patch job created", job_id=job_id, machine=vm_name, software=software_name)
        return job_id

    async def update_job(
        self,
        job_id: str,
        status: PatchJobStatus,
        error_message: Optional[str] = None,
        execution_log: Optional[str] = None,
        command_id: Optional[str] = None,
        resource_group: Optional[str] = None,
    ) -> None:
        async with session_scope(self.session_factory) as session:
            job = await session.get(PatchJob, job_id)
            if job is None:
                raise JobNotFoundError(f"Patch job {job_id} not found")

            check_transition(job_id, job.status, status)

            job.status = status
            if error_message is not None:
                job.error_message = error_message
            if execution_log is not None:
                job.execution_log = execution_log
            if command_id is not None:
                job.command_id = command_id
            if resource_group is not None:
                job.resource_group = resource_group
            job.completed_at = utcnow() if status.is_terminal else None

        logger.debug("Patch job updated", job_id=job_id, status=status.value)

    async def get_job(self, job_id: str) -> PatchJob:
        async with self.session_factory() as session:
            job = await session.get(PatchJob, job_id)
        if job is None:
            raise JobNotFoundError(f"Patch job {job_id} not found")
        return job

    async def list_jobs(
        self,
        vm_name: Optional[str] = None,
        status: Optional[PatchJobStatus] = None,
        limit: int = 100,
    ) -> List[PatchJob]:
        query = select(PatchJob).order_by(PatchJob.started_at.desc()).limit(limit)
        if vm_name:
            query = query.where(PatchJob.vm_name == vm_name)
        if status:
            query = query.where(PatchJob.status == status)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())
