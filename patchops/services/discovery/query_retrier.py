"""
Query Retrier.

Runs a paginated discovery query against a backend, following
continuation tokens, with a bounded number of retries at a constant delay.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import structlog

from patchops.core.errors import DiscoveryUnavailable

logger = structlog.get_logger(__name__)

Row = Dict[str, Any]


@dataclass
class QueryPage:
    """One page of query results."""

    rows: List[Row] = field(default_factory=list)
    continuation_token: Optional[str] = None


class DiscoveryBackend(Protocol):
    """A query endpoint that may split results across pages."""

    async def fetch_page(
        self, query_text: str, continuation_token: Optional[str] = None
    ) -> QueryPage:
        ...


class QueryRetrier:
    """
    Executes discovery queries with pagination and retries.

    Holds no per-query state, so one instance can serve concurrent
    discovery cycles.
    """

    def __init__(
        self,
        backend: DiscoveryBackend,
        max_retries: int = 3,
        retry_delay: float = 5.0,
    ):
        self.backend = backend
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def query(
        self,
        query_text: str,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ) -> List[Row]:
        """
        Run ``query_text`` to completion and return all rows.

        A failed attempt restarts the query from the first page. After
        ``max_retries`` retries have failed, ``DiscoveryUnavailable`` is raised.

        Args:
            query_text: Query in the backend's language (KQL)
            max_retries: Retries after the initial attempt
            retry_delay: Seconds to wait between attempts

        Returns:
            Rows from every page, in page order
        """
        retries = self.max_retries if max_retries is None else max_retries
        delay = self.retry_delay if retry_delay is None else retry_delay

        last_error: Optional[Exception] = None
        for attempt in range(retries + 1):
            try:
                rows = await self._fetch_all(query_text)
                if attempt:
                    logger.info("Discovery query recovered", attempt=attempt + 1, rows=len(rows))
                return rows
            except Exception as e:
                last_error = e
                logger.warning(
                    "Discovery query failed",
                    attempt=attempt + 1,
                    max_attempts=retries + 1,
                    error=str(e),
                )
                if attempt < retries:
                    await asyncio.sleep(delay)

        logger.error("Discovery query exhausted retries", attempts=retries + 1, error=str(last_error))
        raise DiscoveryUnavailable(
            f"Discovery query failed after {retries + 1} attempts: {last_error}"
        ) from last_error

    async def _fetch_all(self, query_text: str) -> List[Row]:
        rows: List[Row] = []
        token: Optional[str] = None
        pages = 0
        while True:
            page = await self.backend.fetch_page(query_text, token)
            rows.extend(page.rows)
            pages += 1
            token = page.continuation_token
            if not token:
                break

        logger.debug("Discovery query complete", pages=pages, rows=len(rows))
        return rows
