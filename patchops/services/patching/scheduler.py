"""
Patch Job Scheduler.

Turns patch requests into bounded-concurrency units of work:
- At most ``max_concurrency`` jobs in flight; the rest wait for a slot
- Requests admitted slice by slice with a short pacing delay
- Each job recorded Pending -> Running -> Succeeded/Failed in the job store
- A failing job never affects its siblings
"""

import asyncio
import re
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

import structlog
from pydantic import ValidationError

from patchops.core.errors import ErrorKind, PatchOpsError, ResolutionError
from patchops.models.patching import PatchJobStatus
from patchops.schemas.inventory import ExecutionContext
from patchops.schemas.patching import BatchSummary, JobResult, PatchRequest
from patchops.services.discovery.registry import MachineRegistry
from patchops.services.execution.run_command import RemoteCommandExecutor
from patchops.services.execution.templating import ScriptParameters
from patchops.services.patching.install_scripts import InstallScriptProvider
from patchops.services.patching.job_store import JobStore

logger = structlog.get_logger(__name__)


def make_command_id(software_name: str, job_id: str) -> str:
    """Run command resource name for one job, e.g. ``patch-google-chrome-1a2b3c4d``."""
    slug = re.sub(r"[^a-z0-9]+", "-", software_name.lower()).strip("-") or "software"
    return f"patch-{slug[:40]}-{job_id.replace('-', '')[:8]}"


class JobScheduler:
    """
    Schedules patch requests onto the remote command executor.

    The machine registry is built fresh for every ``schedule`` call so
    discovery data is never shared between scheduling cycles.
    """

    def __init__(
        self,
        job_store: JobStore,
        script_provider: InstallScriptProvider,
        executor: RemoteCommandExecutor,
        registry_factory: Callable[[], MachineRegistry],
        max_concurrency: int = 5,
        slice_delay: float = 1.5,
        default_subscription: str = "",
        default_location: str = "",
    ):
        self.job_store = job_store
        self.script_provider = script_provider
        self.executor = executor
        self.registry_factory = registry_factory
        self.max_concurrency = max_concurrency
        self.slice_delay = slice_delay
        self.default_subscription = default_subscription
        self.default_location = default_location

    async def schedule(
        self,
        requests: Sequence[PatchRequest],
        max_concurrency: Optional[int] = None,
    ) -> BatchSummary:
        """
        Run every request and aggregate the outcomes.

        Args:
            requests: Patch requests, in submission order
            max_concurrency: Upper bound on jobs in flight (defaults to the scheduler's)

        Returns:
            BatchSummary with one result per request, in submission order
        """
        limit = self.max_concurrency if max_concurrency is None else max_concurrency
        if limit < 1:
            raise ValueError("max_concurrency must be a positive integer")

        registry = self.registry_factory()
        slots = asyncio.Semaphore(limit)
        tasks: List[asyncio.Task] = []

        logger.info("Batch scheduling started", total_jobs=len(requests), max_concurrency=limit)

        try:
            for slice_number, start in enumerate(range(0, len(requests), limit)):
                if slice_number and self.slice_delay > 0:
                    await asyncio.sleep(self.slice_delay)
                for request in requests[start:start + limit]:
                    tasks.append(asyncio.create_task(self._run_bounded(slots, request, registry)))

            results = list(await asyncio.gather(*tasks))
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        summary = BatchSummary.from_results(results, timestamp=datetime.now(timezone.utc))
        logger.info(
            "Batch scheduling complete",
            total_jobs=summary.total_jobs,
            successful_jobs=summary.successful_jobs,
            failed_jobs=summary.failed_jobs,
        )
        return summary

    async def run_single(self, request: PatchRequest) -> JobResult:
        """Single-request mode: a batch of one."""
        summary = await self.schedule([request], max_concurrency=1)
        return summary.results[0]

    async def _run_bounded(
        self,
        slots: asyncio.Semaphore,
        request: PatchRequest,
        registry: MachineRegistry,
    ) -> JobResult:
        async with slots:
            try:
                return await self._run_job(request, registry)
            except Exception as e:
                logger.error(
                    "Patch job could not be recorded",
                    machine=request.machine_name,
                    software=request.software_name,
                    error=str(e),
                    exc_info=e,
                )
                return self._result(
                    request,
                    None,
                    PatchJobStatus.FAILED,
                    error=f"Unexpected error: {e}",
                    error_kind=ErrorKind.INTERNAL,
                )

    async def _run_job(self, request: PatchRequest, registry: MachineRegistry) -> JobResult:
        log = logger.bind(machine=request.machine_name, software=request.software_name)

        context, resolution_error = await self._resolve_context(request, registry)

        job_id = await self.job_store.create_job(
            vm_name=request.machine_name,
            software_name=request.software_name,
            target_version=request.version,
            previous_version=request.previous_version,
        )
        log = log.bind(job_id=job_id)

        try:
            return await self._execute_job(request, job_id, context, resolution_error, log)
        except Exception as e:
            log.error("Patch job aborted by unexpected error", error=str(e), exc_info=e)
            return await self._abort(request, job_id, f"Unexpected error: {e}")

    async def _execute_job(
        self,
        request: PatchRequest,
        job_id: str,
        context: Optional[ExecutionContext],
        resolution_error: Optional[PatchOpsError],
        log,
    ) -> JobResult:
        if resolution_error is not None:
            log.warning("Machine could not be resolved", error=resolution_error.message)
            return await self._fail(request, job_id, resolution_error.message, resolution_error.kind)

        resource_group = context.resource_group

        try:
            script = await self.script_provider.resolve(request.software_name)
            parameters = ScriptParameters(
                software_name=request.software_name,
                version=request.version,
                install_command=script.install_command,
                vendor=script.vendor,
            )
        except ResolutionError as e:
            log.warning("Install entry could not be resolved", error=e.message)
            return await self._fail(request, job_id, e.message, e.kind, resource_group=resource_group)
        except ValidationError as e:
            message = f"Invalid install parameters for '{request.software_name}': {e.errors()[0]['msg']}"
            log.warning("Install parameters rejected", error=message)
            return await self._fail(
                request, job_id, message, ErrorKind.RESOLUTION, resource_group=resource_group
            )

        command_id = make_command_id(request.software_name, job_id)
        await self.job_store.update_job(
            job_id,
            PatchJobStatus.RUNNING,
            command_id=command_id,
            resource_group=resource_group,
        )
        log.info("Patch job running", command_id=command_id, resource_group=resource_group)

        outcome = await self.executor.run(
            request.machine_name,
            context,
            command_id,
            script.script_content,
            parameters,
        )

        if outcome.succeeded:
            await self.job_store.update_job(
                job_id,
                PatchJobStatus.SUCCEEDED,
                execution_log=outcome.output,
            )
            log.info("Patch job succeeded", command_id=command_id, polls=outcome.polls)
            return self._result(
                request,
                job_id,
                PatchJobStatus.SUCCEEDED,
                command_id=command_id,
                resource_group=resource_group,
                output=outcome.output,
            )

        error = outcome.error or "Remote execution failed"
        await self.job_store.update_job(
            job_id,
            PatchJobStatus.FAILED,
            error_message=error,
            execution_log=outcome.output or None,
        )
        if outcome.error_kind == ErrorKind.TIMEOUT:
            log.warning("Patch job timed out; remote outcome unknown", command_id=command_id, error=error)
        else:
            log.error("Patch job failed", command_id=command_id, error=error, error_kind=outcome.error_kind)

        return self._result(
            request,
            job_id,
            PatchJobStatus.FAILED,
            command_id=command_id,
            resource_group=resource_group,
            output=outcome.output or None,
            error=error,
            error_kind=outcome.error_kind or ErrorKind.EXECUTION,
        )

    async def _resolve_context(
        self, request: PatchRequest, registry: MachineRegistry
    ) -> Tuple[Optional[ExecutionContext], Optional[PatchOpsError]]:
        if request.resource_group_name:
            return (
                ExecutionContext(
                    subscription_id=self.default_subscription,
                    resource_group=request.resource_group_name,
                    location=self.default_location,
                ),
                None,
            )

        try:
            return await registry.resolve(request.machine_name), None
        except ResolutionError as e:
            return None, e

    async def _fail(
        self,
        request: PatchRequest,
        job_id: str,
        error: str,
        error_kind: ErrorKind,
        resource_group: Optional[str] = None,
    ) -> JobResult:
        await self.job_store.update_job(
            job_id,
            PatchJobStatus.FAILED,
            error_message=error,
            resource_group=resource_group,
        )
        return self._result(
            request,
            job_id,
            PatchJobStatus.FAILED,
            resource_group=resource_group,
            error=error,
            error_kind=error_kind,
        )

    async def _abort(self, request: PatchRequest, job_id: str, error: str) -> JobResult:
        try:
            await self.job_store.update_job(job_id, PatchJobStatus.FAILED, error_message=error)
        except Exception as e:
            logger.error("Could not mark patch job failed", job_id=job_id, error=str(e), exc_info=e)
        return self._result(
            request,
            job_id,
            PatchJobStatus.FAILED,
            error=error,
            error_kind=ErrorKind.INTERNAL,
        )

    @staticmethod
    def _result(
        request: PatchRequest,
        job_id: Optional[str],
        status: PatchJobStatus,
        command_id: Optional[str] = None,
        resource_group: Optional[str] = None,
        output: Optional[str] = None,
        error: Optional[str] = None,
        error_kind: Optional[ErrorKind] = None,
    ) -> JobResult:
        return JobResult(
            job_id=job_id,
            machine_name=request.machine_name,
            software_name=request.software_name,
            version=request.version,
            status=status,
            command_id=command_id,
            resource_group=resource_group,
            output=output,
            error=error,
            error_kind=error_kind,
            timestamp=datetime.now(timezone.utc),
        )
