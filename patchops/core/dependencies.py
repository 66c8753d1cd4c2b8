"""
Dependency injection utilities for FastAPI.

Long-lived collaborators (REST clients, stores, executor) are built once
in the application lifespan and kept on ``app.state``. Per-request
objects (scheduler, reconciler) are assembled from them.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from patchops.core.config import Settings
from patchops.services.azure.client import (
    ARM_SCOPE,
    LOG_ANALYTICS_SCOPE,
    AzureRestClient,
    AzureTokenProvider,
)
from patchops.services.discovery.backends import LogAnalyticsBackend, ResourceGraphBackend
from patchops.services.discovery.inventory_store import InventoryStore
from patchops.services.discovery.query_retrier import QueryRetrier
from patchops.services.discovery.reconciler import DiscoveryReconciler
from patchops.services.discovery.registry import MachineRegistry
from patchops.services.execution.run_command import RemoteCommandExecutor
from patchops.services.patching.install_scripts import (
    SqlInstallScriptProvider,
    load_script_template,
)
from patchops.services.patching.job_store import SqlJobStore
from patchops.services.patching.scheduler import JobScheduler

logger = structlog.get_logger(__name__)


@dataclass
class ServiceContainer:
    """Collaborators shared by every request of one application instance."""

    settings: Settings
    arm_client: AzureRestClient
    log_analytics_client: AzureRestClient
    executor: RemoteCommandExecutor
    job_store: SqlJobStore
    script_provider: SqlInstallScriptProvider
    inventory_store: InventoryStore

    def build_reconciler(self) -> DiscoveryReconciler:
        azure = self.settings.azure
        discovery = self.settings.discovery

        registry_retrier = QueryRetrier(
            ResourceGraphBackend(
                self.arm_client,
                subscription_ids=[azure.subscription_id] if azure.subscription_id else [],
                api_version=azure.graph_api_version,
                page_size=discovery.page_size,
            ),
            max_retries=discovery.max_retries,
            retry_delay=discovery.retry_delay,
        )
        inventory_retrier = QueryRetrier(
            LogAnalyticsBackend(self.log_analytics_client, azure.log_analytics_workspace_id),
            max_retries=discovery.max_retries,
            retry_delay=discovery.retry_delay,
        )
        return DiscoveryReconciler(
            registry_retrier,
            inventory_retrier,
            machine_query=discovery.machine_query,
            inventory_query=discovery.inventory_query,
            default_subscription=azure.subscription_id,
        )

    def build_registry(self) -> MachineRegistry:
        return MachineRegistry(self.build_reconciler().fetch_machines)

    def build_scheduler(self) -> JobScheduler:
        patching = self.settings.patching
        return JobScheduler(
            job_store=self.job_store,
            script_provider=self.script_provider,
            executor=self.executor,
            registry_factory=self.build_registry,
            max_concurrency=patching.max_concurrency,
            slice_delay=patching.slice_delay,
            default_subscription=self.settings.azure.subscription_id,
            default_location=self.settings.azure.default_location,
        )

    async def close(self) -> None:
        await self.arm_client.close()
        await self.log_analytics_client.close()


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    token_provider: Optional[AzureTokenProvider] = None,
) -> ServiceContainer:
    """Create the shared collaborators from configuration."""
    azure = settings.azure
    patching = settings.patching
    tokens = token_provider or AzureTokenProvider.from_settings(azure)

    arm_client = AzureRestClient(
        azure.management_endpoint,
        ARM_SCOPE,
        token_provider=tokens,
        timeout_seconds=azure.request_timeout,
    )
    log_analytics_client = AzureRestClient(
        azure.log_analytics_endpoint,
        LOG_ANALYTICS_SCOPE,
        token_provider=tokens,
        timeout_seconds=azure.request_timeout,
    )

    return ServiceContainer(
        settings=settings,
        arm_client=arm_client,
        log_analytics_client=log_analytics_client,
        executor=RemoteCommandExecutor(
            arm_client,
            api_version=azure.arc_api_version,
            submit_timeout=patching.submit_timeout,
            poll_interval=patching.poll_interval,
            poll_timeout=patching.poll_timeout,
        ),
        job_store=SqlJobStore(session_factory),
        script_provider=SqlInstallScriptProvider(
            session_factory,
            load_script_template(patching.install_script_path),
            os_platform=patching.os_platform,
        ),
        inventory_store=InventoryStore(session_factory),
    )


# ============================================================================
# Request dependencies
# ============================================================================

def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_scheduler(request: Request) -> JobScheduler:
    return get_services(request).build_scheduler()


def get_reconciler(request: Request) -> DiscoveryReconciler:
    return get_services(request).build_reconciler()


def get_job_store(request: Request) -> SqlJobStore:
    return get_services(request).job_store


def get_inventory_store(request: Request) -> InventoryStore:
    return get_services(request).inventory_store
