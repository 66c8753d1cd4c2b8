"""
Discovery Backends.

Query endpoints behind the Query Retrier:
- Azure Resource Graph (machine registry, paginated with $skipToken)
- Log Analytics (software inventory, single page)
"""

from typing import Any, Dict, List, Optional

import httpx
import structlog

from patchops.services.azure.client import AzureRestClient
from patchops.services.discovery.query_retrier import QueryPage

logger = structlog.get_logger(__name__)


class DiscoveryBackendError(Exception):
    """A discovery backend call failed."""
    pass


class ResourceGraphBackend:
    """Azure Resource Graph query backend."""

    def __init__(
        self,
        client: AzureRestClient,
        subscription_ids: List[str],
        api_version: str = "2022-10-01",
        page_size: int = 1000,
    ):
        self.client = client
        self.subscription_ids = subscription_ids
        self.api_version = api_version
        self.page_size = page_size

    async def fetch_page(
        self, query_text: str, continuation_token: Optional[str] = None
    ) -> QueryPage:
        options: Dict[str, Any] = {"$top": self.page_size, "resultFormat": "objectArray"}
        if continuation_token:
            options["$skipToken"] = continuation_token

        body = {
            "subscriptions": self.subscription_ids,
            "query": query_text,
            "options": options,
        }

        try:
            response = await self.client.request(
                "POST",
                "/providers/Microsoft.ResourceGraph/resources",
                params={"api-version": self.api_version},
                json=body,
            )
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise DiscoveryBackendError(f"Resource Graph query failed: {e}") from e

        rows = payload.get("data") or []
        if isinstance(rows, dict):
            # Table result format
            rows = _table_to_rows(rows.get("columns", []), rows.get("rows", []))

        return QueryPage(rows=list(rows), continuation_token=payload.get("$skipToken"))


class LogAnalyticsBackend:
    """Log Analytics workspace query backend."""

    def __init__(self, client: AzureRestClient, workspace_id: str):
        self.client = client
        self.workspace_id = workspace_id

    async def fetch_page(
        self, query_text: str, continuation_token: Optional[str] = None
    ) -> QueryPage:
        try:
            response = await self.client.request(
                "POST",
                f"/v1/workspaces/{self.workspace_id}/query",
                json={"query": query_text},
            )
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise DiscoveryBackendError(f"Log Analytics query failed: {e}") from e

        if payload.get("error"):
            raise DiscoveryBackendError(
                f"Log Analytics query error: {payload['error'].get('message', payload['error'])}"
            )

        tables = payload.get("tables") or []
        if not tables:
            return QueryPage()

        table = tables[0]
        return QueryPage(rows=_table_to_rows(table.get("columns", []), table.get("rows", [])))


def _table_to_rows(columns: List[Dict[str, Any]], rows: List[List[Any]]) -> List[Dict[str, Any]]:
    names = [column.get("name") for column in columns]
    return [dict(zip(names, row)) for row in rows]
