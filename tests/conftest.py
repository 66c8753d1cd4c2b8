"""Shared fixtures for patchops tests."""

from __future__ import annotations

import asyncio
import os
from typing import Dict, List, Optional

# Settings are read at import time; point the module-level engine at SQLite
os.environ.setdefault("DB_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_FORMAT", "text")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from patchops.core.database import Base
from patchops.core.errors import ErrorKind, InstallScriptNotFound
from patchops.models import patching as patching_models  # noqa: F401
from patchops.models.patching import PatchJobStatus
from patchops.schemas.inventory import ExecutionContext, MachineRecord
from patchops.services.discovery.registry import MachineRegistry
from patchops.services.execution.run_command import ExecutionOutcome, ExecutionState
from patchops.services.execution.templating import ScriptParameters
from patchops.services.patching.install_scripts import InstallScript
from patchops.services.patching.job_store import check_transition

SCRIPT_TEMPLATE = "Write-Output {{SoftwareName}} {{Version}}\n& {{InstallCommand}}\n"


def make_machine(name: str, resource_group: str = "rg-servers") -> MachineRecord:
    return MachineRecord(
        machine_name=name,
        context=ExecutionContext(
            subscription_id="00000000-0000-0000-0000-000000000001",
            resource_group=resource_group,
            location="eastus",
        ),
        os_type="windows",
        status="Connected",
    )


class InMemoryJobStore:
    """Job store that keeps every transition for assertions."""

    def __init__(self) -> None:
        self.jobs: Dict[str, dict] = {}
        self.transitions: Dict[str, List[PatchJobStatus]] = {}
        self._counter = 0

    async def create_job(self, vm_name, software_name, target_version, previous_version=None):
        self._counter += 1
        job_id = f"job-{self._counter:04d}-0000"
        self.jobs[job_id] = {
            "vm_name": vm_name,
            "software_name": software_name,
            "target_version": target_version,
            "previous_version": previous_version,
            "status": PatchJobStatus.PENDING,
            "completed": False,
            "error_message": None,
            "execution_log": None,
        }
        self.transitions[job_id] = [PatchJobStatus.PENDING]
        return job_id

    async def update_job(
        self,
        job_id,
        status,
        error_message=None,
        execution_log=None,
        command_id=None,
        resource_group=None,
    ):
        job = self.jobs[job_id]
        check_transition(job_id, job["status"], status)
        job["status"] = status
        job["completed"] = status.is_terminal
        if error_message is not None:
            job["error_message"] = error_message
        if execution_log is not None:
            job["execution_log"] = execution_log
        self.transitions[job_id].append(status)


class StaticScriptProvider:
    """Install-script provider backed by a dict of software name -> install command."""

    def __init__(self, entries: Optional[Dict[str, str]] = None) -> None:
        self.entries = entries if entries is not None else {
            "Google Chrome": "https://dl.google.com/chrome/install/ChromeStandaloneSetup64.exe /silent /install",
            "Mozilla Firefox": "https://download.mozilla.org/?product=firefox-latest /S",
        }

    async def resolve(self, software_name: str) -> InstallScript:
        if software_name not in self.entries:
            raise InstallScriptNotFound(software_name)
        return InstallScript(
            script_content=SCRIPT_TEMPLATE,
            install_command=self.entries[software_name],
            vendor="Vendor",
        )


class InstrumentedExecutor:
    """Executor double that tracks how many runs are in flight."""

    def __init__(
        self,
        delay: float = 0.0,
        outcomes: Optional[Dict[str, ExecutionOutcome]] = None,
    ) -> None:
        self.delay = delay
        self.outcomes = outcomes or {}
        self.calls: List[dict] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def run(self, machine_name, context, command_id, script_template, parameters, **kwargs):
        assert isinstance(parameters, ScriptParameters)
        self.calls.append({
            "machine_name": machine_name,
            "context": context,
            "command_id": command_id,
            "parameters": parameters,
        })
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        return self.outcomes.get(
            machine_name,
            ExecutionOutcome(state=ExecutionState.SUCCEEDED, output=f"installed on {machine_name}", polls=1),
        )


@pytest.fixture
def timed_out_outcome() -> ExecutionOutcome:
    return ExecutionOutcome(
        state=ExecutionState.TIMED_OUT,
        error="Timed out after 900s waiting for command",
        error_kind=ErrorKind.TIMEOUT,
        polls=90,
    )


@pytest.fixture
def machines() -> List[MachineRecord]:
    return [make_machine("vm-01"), make_machine("vm-02"), make_machine("web-01", "rg-web")]


@pytest.fixture
def registry_loads() -> List[int]:
    """Counts registry snapshot loads."""
    return []


@pytest.fixture
def registry_factory(machines, registry_loads):
    async def load():
        registry_loads.append(1)
        return list(machines)

    return lambda: MachineRegistry(load)


@pytest.fixture
def job_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def script_provider() -> StaticScriptProvider:
    return StaticScriptProvider()


@pytest.fixture
def executor() -> InstrumentedExecutor:
    return InstrumentedExecutor()


@pytest.fixture
def executor_factory():
    """Build executors with a custom delay or per-machine outcomes."""
    return InstrumentedExecutor


@pytest_asyncio.fixture
async def session_factory():
    """In-memory SQLite database with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()
