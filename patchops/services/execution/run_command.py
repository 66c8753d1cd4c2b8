"""
Remote Command Executor.

Runs scripts on Azure Arc machines through the run command API:
- Submit a rendered script for asynchronous execution
- Poll the operation until a terminal state or the poll window elapses
- Report every job-scoped failure as an ``ExecutionOutcome``

Timed-out operations are not cancelled; the remote side may keep running.
"""

import asyncio
import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
import structlog

from patchops.core.errors import (
    ErrorKind,
    ExecutionFailure,
    PatchOpsError,
    PatchTimeoutError,
    SubmissionError,
)
from patchops.schemas.inventory import ExecutionContext
from patchops.services.azure.client import AzureRestClient
from patchops.services.execution.templating import ScriptParameters, render_script

logger = structlog.get_logger(__name__)


class ExecutionState(str, enum.Enum):
    """Per-execution state machine."""

    SUBMITTED = "Submitted"
    POLLING = "Polling"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


# Remote executionState values that end an operation
REMOTE_SUCCEEDED = {"succeeded"}
REMOTE_FAILED = {"failed", "timedout", "canceled", "cancelled"}


@dataclass
class OperationHandle:
    """Reference to a submitted run command."""

    machine_name: str
    command_id: str
    context: ExecutionContext
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def resource_path(self) -> str:
        return (
            f"/subscriptions/{self.context.subscription_id}"
            f"/resourceGroups/{self.context.resource_group}"
            f"/providers/Microsoft.HybridCompute/machines/{self.machine_name}"
            f"/runCommands/{self.command_id}"
        )


@dataclass
class ExecutionOutcome:
    """Terminal result of one remote execution."""

    state: ExecutionState
    output: str = ""
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    exit_code: Optional[int] = None
    polls: int = 0

    @property
    def succeeded(self) -> bool:
        return self.state == ExecutionState.SUCCEEDED

    @classmethod
    def from_error(
        cls, error: PatchOpsError, state: ExecutionState = ExecutionState.FAILED, **fields: Any
    ) -> "ExecutionOutcome":
        """Failed outcome carrying the message and kind of ``error``."""
        return cls(state=state, error=error.message, error_kind=error.kind, **fields)


class RemoteCommandExecutor:
    """
    Submits scripts to Arc machines and waits for their completion.

    Polling sleeps cooperatively between attempts, so many executions can
    wait concurrently on one event loop.
    """

    def __init__(
        self,
        client: AzureRestClient,
        api_version: str = "2024-07-10",
        submit_timeout: float = 600,
        poll_interval: float = 10,
        poll_timeout: float = 900,
    ):
        self.client = client
        self.api_version = api_version
        self.submit_timeout = submit_timeout
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout

    async def submit(
        self,
        machine_name: str,
        context: ExecutionContext,
        command_id: str,
        script_template: str,
        parameters: ScriptParameters,
        submit_timeout: Optional[float] = None,
    ) -> OperationHandle:
        """
        Render the script and hand it to the remote machine.

        Raises:
            TemplateError: Parameters could not be rendered safely
            SubmissionError: The target is unreachable or the API rejected the command
        """
        timeout = self.submit_timeout if submit_timeout is None else submit_timeout
        script = render_script(script_template, parameters.as_mapping())
        handle = OperationHandle(machine_name=machine_name, command_id=command_id, context=context)

        body = {
            "location": context.location,
            "properties": {
                "source": {"script": script},
                "asyncExecution": True,
                "timeoutInSeconds": int(self.poll_timeout),
            },
        }

        try:
            await asyncio.wait_for(
                self.client.request(
                    "PUT",
                    handle.resource_path,
                    params={"api-version": self.api_version},
                    json=body,
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise SubmissionError(
                f"Submitting command '{command_id}' to '{machine_name}' timed out after {timeout}s"
            ) from e
        except httpx.HTTPStatusError as e:
            raise SubmissionError(
                f"Remote API rejected command '{command_id}' for '{machine_name}': "
                f"{e.response.status_code} {_error_message(e.response)}"
            ) from e
        except httpx.HTTPError as e:
            raise SubmissionError(f"Machine '{machine_name}' unreachable: {e}") from e

        logger.info(
            "Run command submitted",
            machine=machine_name,
            command_id=command_id,
            resource_group=context.resource_group,
        )
        return handle

    async def poll(
        self,
        handle: OperationHandle,
        poll_interval: Optional[float] = None,
        poll_timeout: Optional[float] = None,
    ) -> ExecutionOutcome:
        """
        Poll ``handle`` until it reaches a terminal state or the window elapses.

        No more than ``ceil(poll_timeout / poll_interval)`` status calls are made.
        """
        interval = self.poll_interval if poll_interval is None else poll_interval
        window = self.poll_timeout if poll_timeout is None else poll_timeout

        loop = asyncio.get_running_loop()
        deadline = loop.time() + window
        polls = 0
        last_state = ExecutionState.SUBMITTED.value

        while True:
            polls += 1
            try:
                view = await self._get_instance_view(handle)
            # Unparseable or oddly shaped bodies count as a failed check too
            except (httpx.HTTPError, ValueError, AttributeError, TypeError) as e:
                logger.warning(
                    "Run command status check failed",
                    machine=handle.machine_name,
                    command_id=handle.command_id,
                    attempt=polls,
                    error=str(e),
                )
            else:
                outcome = self._interpret(view, polls)
                if outcome is not None:
                    return outcome
                last_state = view.get("executionState") or ExecutionState.POLLING.value

            await asyncio.sleep(interval)
            if loop.time() >= deadline:
                break

        logger.warning(
            "Run command poll window elapsed; remote operation left running",
            machine=handle.machine_name,
            command_id=handle.command_id,
            poll_timeout=window,
            last_state=last_state,
            polls=polls,
        )
        timeout = PatchTimeoutError(
            f"Timed out after {window}s waiting for command '{handle.command_id}' "
            f"on '{handle.machine_name}' (last state: {last_state})"
        )
        return ExecutionOutcome.from_error(timeout, state=ExecutionState.TIMED_OUT, polls=polls)

    async def run(
        self,
        machine_name: str,
        context: ExecutionContext,
        command_id: str,
        script_template: str,
        parameters: ScriptParameters,
        submit_timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        poll_timeout: Optional[float] = None,
    ) -> ExecutionOutcome:
        """Submit then poll. Job-scoped failures come back as outcomes, not exceptions."""
        try:
            handle = await self.submit(
                machine_name,
                context,
                command_id,
                script_template,
                parameters,
                submit_timeout=submit_timeout,
            )
        except PatchOpsError as e:
            logger.error(
                "Run command submission failed",
                machine=machine_name,
                command_id=command_id,
                error=e.message,
            )
            return ExecutionOutcome.from_error(e)
        except Exception as e:
            # Token acquisition and other client-side failures before the PUT lands
            logger.error(
                "Run command submission failed",
                machine=machine_name,
                command_id=command_id,
                error=str(e),
                exc_info=e,
            )
            return ExecutionOutcome.from_error(
                SubmissionError(f"Could not submit command '{command_id}' to '{machine_name}': {e}")
            )

        return await self.poll(handle, poll_interval=poll_interval, poll_timeout=poll_timeout)

    async def _get_instance_view(self, handle: OperationHandle) -> Dict[str, Any]:
        response = await self.client.request(
            "GET",
            handle.resource_path,
            params={"api-version": self.api_version, "$expand": "instanceView"},
        )
        properties = response.json().get("properties") or {}
        view = dict(properties.get("instanceView") or {})
        view.setdefault("provisioningState", properties.get("provisioningState"))
        return view

    def _interpret(self, view: Dict[str, Any], polls: int) -> Optional[ExecutionOutcome]:
        state = (view.get("executionState") or "").lower()
        output = view.get("output") or ""
        exit_code = view.get("exitCode")

        if state in REMOTE_SUCCEEDED:
            return ExecutionOutcome(
                state=ExecutionState.SUCCEEDED,
                output=output,
                exit_code=exit_code,
                polls=polls,
            )

        provisioning_failed = (view.get("provisioningState") or "").lower() == "failed"
        if state in REMOTE_FAILED or provisioning_failed:
            message = view.get("error") or view.get("executionMessage") or ""
            if not message:
                message = f"Remote execution ended in state '{view.get('executionState') or 'Failed'}'"
                if exit_code is not None:
                    message += f" with exit code {exit_code}"
            return ExecutionOutcome.from_error(
                ExecutionFailure(message),
                output=output,
                exit_code=exit_code,
                polls=polls,
            )

        return None


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return error.get("message") or error.get("code") or response.text
    return response.text
