"""
Azure REST Client.

Thin async wrapper over httpx for Azure Resource Manager and Log Analytics:
- Bearer token acquisition via azure-identity credentials
- Lazy client creation and explicit close
- One client per API audience (ARM, Log Analytics)
"""

import asyncio
from typing import Any, Dict, Optional

import httpx
import structlog

from patchops.core.config import AzureSettings

logger = structlog.get_logger(__name__)

ARM_SCOPE = "https://management.azure.com/.default"
LOG_ANALYTICS_SCOPE = "https://api.loganalytics.io/.default"


def build_credential(azure: AzureSettings):
    """
    Pick the azure-identity credential for the configured identity.

    Managed identity wins when enabled; a full service principal is used
    next; anything else falls through to ``DefaultAzureCredential``
    (environment, workload identity, CLI login).
    """
    if azure.use_managed_identity:
        from azure.identity import ManagedIdentityCredential

        return ManagedIdentityCredential(client_id=azure.client_id or None)

    if azure.tenant_id and azure.client_id and azure.client_secret:
        from azure.identity import ClientSecretCredential

        return ClientSecretCredential(
            tenant_id=azure.tenant_id,
            client_id=azure.client_id,
            client_secret=azure.client_secret,
        )

    from azure.identity import DefaultAzureCredential

    return DefaultAzureCredential()


class AzureTokenProvider:
    """Bearer tokens for one Azure identity, shared by every REST client."""

    def __init__(self, azure: AzureSettings):
        self._azure = azure
        self._credential = None

    @classmethod
    def from_settings(cls, azure: AzureSettings) -> "AzureTokenProvider":
        return cls(azure)

    async def get_token(self, scope: str) -> str:
        # Credentials are synchronous; keep them off the event loop
        if self._credential is None:
            self._credential = build_credential(self._azure)
            logger.debug("Azure credential selected", credential=type(self._credential).__name__)
        access_token = await asyncio.to_thread(self._credential.get_token, scope)
        return access_token.token


class AzureRestClient:
    """
    Async REST client bound to one Azure API audience.

    Tokens are fetched per request; azure-identity caches them internally.
    """

    def __init__(
        self,
        base_url: str,
        scope: str,
        token_provider: Optional[AzureTokenProvider] = None,
        timeout_seconds: float = 60,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.scope = scope
        self.token_provider = token_provider
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    @property
    def http(self) -> httpx.AsyncClient:
        """Underlying httpx client, reopened after ``close``."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Accept": "application/json"},
                timeout=self.timeout_seconds,
                transport=self._transport,
            )
        return self._http

    async def _auth_header(self) -> Dict[str, str]:
        if self.token_provider is None:
            return {}
        return {"Authorization": f"Bearer {await self.token_provider.get_token(self.scope)}"}

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """Send a request and raise ``httpx.HTTPStatusError`` on 4xx/5xx."""
        extra: Dict[str, Any] = {} if timeout is None else {"timeout": timeout}
        response = await self.http.request(
            method,
            path,
            params=params,
            json=json,
            headers=await self._auth_header(),
            **extra,
        )
        if response.is_error:
            logger.debug(
                "Azure request failed",
                method=method,
                path=path,
                status_code=response.status_code,
            )
        response.raise_for_status()
        return response

    async def close(self) -> None:
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
        self._http = None
