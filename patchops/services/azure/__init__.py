"""
Azure REST access shared by discovery and remote execution.
"""

from patchops.services.azure.client import (
    ARM_SCOPE,
    LOG_ANALYTICS_SCOPE,
    AzureRestClient,
    AzureTokenProvider,
    build_credential,
)

__all__ = [
    "ARM_SCOPE",
    "LOG_ANALYTICS_SCOPE",
    "AzureRestClient",
    "AzureTokenProvider",
    "build_credential",
]
