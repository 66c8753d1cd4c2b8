"""
Tests for the SQL-backed stores.

Runs against an in-memory SQLite database through aiosqlite.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from patchops.core.errors import ConfigurationError, InstallScriptNotFound
from patchops.models.patching import ApplicationRepo, PatchJobStatus, VmInventory
from patchops.schemas.inventory import ExecutionContext, InventoryEntry, MachineRecord
from patchops.services.discovery.inventory_store import InventoryStore
from patchops.services.patching.install_scripts import (
    SqlInstallScriptProvider,
    load_script_template,
)
from patchops.services.patching.job_store import (
    InvalidTransition,
    JobNotFoundError,
    SqlJobStore,
)

P = PatchJobStatus


class TestSqlJobStore:
    """Tests for SqlJobStore."""

    @pytest.mark.asyncio
    async def test_create_job_starts_pending(self, session_factory):
        store = SqlJobStore(session_factory)

        job_id = await store.create_job("vm-01", "Google Chrome", "120.0.6099.109", "119.0")
        job = await store.get_job(job_id)

        assert len(job_id) == 36
        assert job.status == P.PENDING
        assert job.vm_name == "vm-01"
        assert job.previous_version == "119.0"
        assert job.started_at is not None
        assert job.completed_at is None

    @pytest.mark.asyncio
    async def test_lifecycle_sets_completed_at_only_when_terminal(self, session_factory):
        store = SqlJobStore(session_factory)
        job_id = await store.create_job("vm-01", "Google Chrome", "120.0.6099.109")

        await store.update_job(
            job_id, P.RUNNING, command_id="patch-google-chrome-1a2b3c4d", resource_group="rg-web"
        )
        running = await store.get_job(job_id)
        assert running.status == P.RUNNING
        assert running.completed_at is None
        assert running.command_id == "patch-google-chrome-1a2b3c4d"
        assert running.resource_group == "rg-web"

        await store.update_job(job_id, P.SUCCEEDED, execution_log="Installed")
        done = await store.get_job(job_id)
        assert done.status == P.SUCCEEDED
        assert done.completed_at is not None
        assert done.execution_log == "Installed"
        # Fields not passed on later updates are kept
        assert done.command_id == "patch-google-chrome-1a2b3c4d"

    @pytest.mark.asyncio
    async def test_terminal_job_cannot_change(self, session_factory):
        store = SqlJobStore(session_factory)
        job_id = await store.create_job("vm-01", "Google Chrome", "120.0.6099.109")
        await store.update_job(job_id, P.FAILED, error_message="Machine not found")

        with pytest.raises(InvalidTransition):
            await store.update_job(job_id, P.RUNNING)

        job = await store.get_job(job_id)
        assert job.status == P.FAILED
        assert job.error_message == "Machine not found"

    @pytest.mark.asyncio
    async def test_running_cannot_go_back_to_pending(self, session_factory):
        store = SqlJobStore(session_factory)
        job_id = await store.create_job("vm-01", "Google Chrome", "120.0.6099.109")
        await store.update_job(job_id, P.RUNNING)

        with pytest.raises(InvalidTransition):
            await store.update_job(job_id, P.PENDING)

    @pytest.mark.asyncio
    async def test_unknown_job(self, session_factory):
        store = SqlJobStore(session_factory)

        with pytest.raises(JobNotFoundError):
            await store.get_job("does-not-exist")
        with pytest.raises(JobNotFoundError):
            await store.update_job("does-not-exist", P.RUNNING)

    @pytest.mark.asyncio
    async def test_list_jobs_filters(self, session_factory):
        store = SqlJobStore(session_factory)
        first = await store.create_job("vm-01", "Google Chrome", "120.0.6099.109")
        await store.create_job("vm-02", "Google Chrome", "120.0.6099.109")
        await store.create_job("vm-01", "Mozilla Firefox", "121.0")
        await store.update_job(first, P.FAILED, error_message="boom")

        vm_jobs = await store.list_jobs(vm_name="vm-01")
        failed = await store.list_jobs(status=P.FAILED)
        limited = await store.list_jobs(limit=2)

        assert {job.software_name for job in vm_jobs} == {"Google Chrome", "Mozilla Firefox"}
        assert [job.job_id for job in failed] == [first]
        assert len(limited) == 2


async def add_entries(session_factory, *entries):
    async with session_factory() as session:
        session.add_all(list(entries))
        await session.commit()


def repo_entry(software_name, version, created_days_ago=0, **kwargs):
    created = datetime.now(timezone.utc) - timedelta(days=created_days_ago)
    values = {
        "software_name": software_name,
        "version": version,
        "install_cmd": f"https://downloads.example.com/{version}/setup.exe /S",
        "vendor": "Vendor",
        "os_platform": "Windows",
        "architecture": "x64",
        "is_active": True,
        "created_at": created,
        "updated_at": created,
    }
    values.update(kwargs)
    return ApplicationRepo(**values)


class TestSqlInstallScriptProvider:
    """Tests for SqlInstallScriptProvider.resolve."""

    @pytest.mark.asyncio
    async def test_returns_newest_active_entry(self, session_factory):
        await add_entries(
            session_factory,
            repo_entry("Google Chrome", "119.0", created_days_ago=10),
            repo_entry("Google Chrome", "120.0.6099.109", created_days_ago=1),
            repo_entry("Google Chrome", "121.0", created_days_ago=0, is_active=False),
        )
        provider = SqlInstallScriptProvider(session_factory, "template body")

        script = await provider.resolve("Google Chrome")

        assert script.script_content == "template body"
        assert script.version == "120.0.6099.109"
        assert script.install_command.endswith("/120.0.6099.109/setup.exe /S")
        assert script.vendor == "Vendor"

    @pytest.mark.asyncio
    async def test_filters_by_platform(self, session_factory):
        await add_entries(session_factory, repo_entry("7-Zip", "23.01", os_platform="Linux"))
        provider = SqlInstallScriptProvider(session_factory, "template body", os_platform="Windows")

        with pytest.raises(InstallScriptNotFound):
            await provider.resolve("7-Zip")

    @pytest.mark.asyncio
    async def test_unknown_software(self, session_factory):
        provider = SqlInstallScriptProvider(session_factory, "template body")

        with pytest.raises(InstallScriptNotFound) as exc_info:
            await provider.resolve("Unknown App")

        assert exc_info.value.software_name == "Unknown App"


class TestLoadScriptTemplate:

    def test_packaged_template_has_placeholders(self):
        from patchops.core.config import settings

        template = load_script_template(settings.patching.install_script_path)

        for placeholder in ("{{SoftwareName}}", "{{Version}}", "{{InstallCommand}}"):
            assert placeholder in template

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_script_template(str(tmp_path / "missing.ps1"))


def matched_pair(machine_name, software_name, version, vulnerabilities=0):
    machine = MachineRecord(
        machine_name=machine_name,
        context=ExecutionContext(
            subscription_id="00000000-0000-0000-0000-000000000001",
            resource_group="rg-web",
            location="eastus",
        ),
        os_type="windows",
        status="Connected",
    )
    entry = InventoryEntry(
        computer=machine_name.upper(),
        software_name=software_name,
        software_version=version,
        vulnerability_count=vulnerabilities,
    )
    return machine, entry


async def count_inventory(session_factory) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(VmInventory))


class TestInventoryStore:
    """Tests for InventoryStore."""

    @pytest.mark.asyncio
    async def test_save_upserts_per_collection_date(self, session_factory):
        store = InventoryStore(session_factory)
        collected_at = datetime(2026, 10, 1, 6, 0, tzinfo=timezone.utc)

        written = await store.save_matched(
            [matched_pair("web-01", "Google Chrome", "119.0", vulnerabilities=4)],
            collected_at=collected_at,
        )
        await store.save_matched(
            [matched_pair("web-01", "Google Chrome", "120.0.6099.109")],
            collected_at=collected_at,
        )

        assert written == 1
        assert await count_inventory(session_factory) == 1
        async with session_factory() as session:
            row = await session.scalar(select(VmInventory))
        # Stored under the registry name, not the inventory's spelling
        assert row.vm_name == "web-01"
        assert row.software_version == "120.0.6099.109"
        assert row.number_of_known_vulnerabilities == 0
        assert row.resource_group == "rg-web"

    @pytest.mark.asyncio
    async def test_cleanup_removes_old_rows(self, session_factory):
        store = InventoryStore(session_factory)
        now = datetime.now(timezone.utc)
        await store.save_matched(
            [matched_pair("vm-01", "7-Zip", "22.00")], collected_at=now - timedelta(days=45)
        )
        await store.save_matched(
            [matched_pair("vm-01", "7-Zip", "23.01")], collected_at=now - timedelta(days=1)
        )

        deleted = await store.cleanup(days_to_keep=30)

        assert deleted == 1
        assert await count_inventory(session_factory) == 1
