"""Tests for the paginated, retrying discovery query runner."""

from __future__ import annotations

import json
from typing import List, Optional, Tuple

import httpx
import pytest

from patchops.core.errors import DiscoveryUnavailable
from patchops.services.azure.client import AzureRestClient
from patchops.services.discovery import query_retrier as query_retrier_module
from patchops.services.discovery.backends import (
    DiscoveryBackendError,
    LogAnalyticsBackend,
    ResourceGraphBackend,
)
from patchops.services.discovery.query_retrier import QueryPage, QueryRetrier


class FlakyBackend:
    """Fails a fixed number of calls, then serves the configured pages."""

    def __init__(self, failures: int, pages: Optional[List[QueryPage]] = None):
        self.failures = failures
        self.pages = pages or [QueryPage(rows=[{"name": "vm-01"}])]
        self.calls: List[Tuple[str, Optional[str]]] = []

    async def fetch_page(self, query_text, continuation_token=None):
        self.calls.append((query_text, continuation_token))
        if self.failures > 0:
            self.failures -= 1
            raise DiscoveryBackendError("backend unavailable")
        index = 0 if continuation_token is None else int(continuation_token)
        return self.pages[index]


class TestQueryRetrier:
    """Tests for QueryRetrier.query."""

    @pytest.mark.asyncio
    async def test_succeeds_after_two_failures(self):
        """Two failures then success makes exactly three calls."""
        backend = FlakyBackend(failures=2)
        retrier = QueryRetrier(backend, max_retries=3, retry_delay=0)

        rows = await retrier.query("Resources")

        assert rows == [{"name": "vm-01"}]
        assert len(backend.calls) == 3

    @pytest.mark.asyncio
    async def test_raises_after_initial_plus_max_retries(self):
        """Four consecutive failures with max_retries=3 raise after four calls."""
        backend = FlakyBackend(failures=4)
        retrier = QueryRetrier(backend, max_retries=3, retry_delay=0)

        with pytest.raises(DiscoveryUnavailable) as exc_info:
            await retrier.query("Resources")

        assert len(backend.calls) == 4
        assert "4 attempts" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_per_call_override_of_max_retries(self):
        backend = FlakyBackend(failures=10)
        retrier = QueryRetrier(backend, max_retries=3, retry_delay=0)

        with pytest.raises(DiscoveryUnavailable):
            await retrier.query("Resources", max_retries=1)

        assert len(backend.calls) == 2

    @pytest.mark.asyncio
    async def test_waits_constant_delay_between_attempts(self, monkeypatch):
        delays: List[float] = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr(query_retrier_module.asyncio, "sleep", fake_sleep)
        backend = FlakyBackend(failures=4)
        retrier = QueryRetrier(backend, max_retries=3, retry_delay=5.0)

        with pytest.raises(DiscoveryUnavailable):
            await retrier.query("Resources")

        # No sleep after the final attempt
        assert delays == [5.0, 5.0, 5.0]

    @pytest.mark.asyncio
    async def test_follows_continuation_tokens(self):
        """Rows from every page are concatenated, carrying the token forward."""
        pages = [
            QueryPage(rows=[{"name": "vm-01"}, {"name": "vm-02"}], continuation_token="1"),
            QueryPage(rows=[{"name": "vm-03"}], continuation_token="2"),
            QueryPage(rows=[{"name": "vm-04"}]),
        ]
        backend = FlakyBackend(failures=0, pages=pages)
        retrier = QueryRetrier(backend, retry_delay=0)

        rows = await retrier.query("Resources")

        assert [row["name"] for row in rows] == ["vm-01", "vm-02", "vm-03", "vm-04"]
        assert [token for _, token in backend.calls] == [None, "1", "2"]

    @pytest.mark.asyncio
    async def test_failure_mid_pagination_restarts_query(self):
        pages = [
            QueryPage(rows=[{"name": "vm-01"}], continuation_token="1"),
            QueryPage(rows=[{"name": "vm-02"}]),
        ]

        class FailsOnSecondPage(FlakyBackend):
            def __init__(self):
                super().__init__(failures=0, pages=pages)
                self.failed_once = False

            async def fetch_page(self, query_text, continuation_token=None):
                if continuation_token == "1" and not self.failed_once:
                    self.failed_once = True
                    self.calls.append((query_text, continuation_token))
                    raise DiscoveryBackendError("page lost")
                return await super().fetch_page(query_text, continuation_token)

        backend = FailsOnSecondPage()
        rows = await QueryRetrier(backend, retry_delay=0).query("Resources")

        assert [row["name"] for row in rows] == ["vm-01", "vm-02"]


def _client(handler) -> AzureRestClient:
    return AzureRestClient(
        "https://management.azure.com",
        "https://management.azure.com/.default",
        transport=httpx.MockTransport(handler),
    )


class TestResourceGraphBackend:
    """Tests for the Resource Graph page fetcher."""

    @pytest.mark.asyncio
    async def test_passes_skip_token_and_reads_next_token(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            seen.append(body)
            if "$skipToken" not in body["options"]:
                return httpx.Response(200, json={"data": [{"name": "vm-01"}], "$skipToken": "abc"})
            return httpx.Response(200, json={"data": [{"name": "vm-02"}]})

        backend = ResourceGraphBackend(_client(handler), ["sub-1"], page_size=1)
        rows = await QueryRetrier(backend, retry_delay=0).query("Resources")

        assert [row["name"] for row in rows] == ["vm-01", "vm-02"]
        assert seen[0]["subscriptions"] == ["sub-1"]
        assert seen[0]["options"]["$top"] == 1
        assert seen[1]["options"]["$skipToken"] == "abc"

    @pytest.mark.asyncio
    async def test_http_error_becomes_backend_error(self):
        def handler(request):
            return httpx.Response(503, json={"error": {"message": "throttled"}})

        backend = ResourceGraphBackend(_client(handler), ["sub-1"])

        with pytest.raises(DiscoveryBackendError):
            await backend.fetch_page("Resources")


class TestLogAnalyticsBackend:
    """Tests for the Log Analytics page fetcher."""

    @pytest.mark.asyncio
    async def test_converts_table_to_rows(self):
        def handler(request):
            assert request.url.path == "/v1/workspaces/ws-1/query"
            return httpx.Response(200, json={
                "tables": [{
                    "name": "PrimaryResult",
                    "columns": [{"name": "Computer"}, {"name": "SoftwareName"}],
                    "rows": [["WEB-01", "Google Chrome"], ["vm-02", "7-Zip"]],
                }]
            })

        backend = LogAnalyticsBackend(_client(handler), "ws-1")
        page = await backend.fetch_page("ConfigurationData")

        assert page.continuation_token is None
        assert page.rows == [
            {"Computer": "WEB-01", "SoftwareName": "Google Chrome"},
            {"Computer": "vm-02", "SoftwareName": "7-Zip"},
        ]

    @pytest.mark.asyncio
    async def test_query_error_payload_raises(self):
        def handler(request):
            return httpx.Response(200, json={"error": {"message": "Syntax error"}})

        backend = LogAnalyticsBackend(_client(handler), "ws-1")

        with pytest.raises(DiscoveryBackendError, match="Syntax error"):
            await backend.fetch_page("bad query")
