"""
Liveness and readiness probes.
"""

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text
import structlog

from patchops.core.config import settings
from patchops.core.database import engine

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: Optional[str] = None
    # "configured" once subscription and workspace ids are both set
    azure: Optional[str] = None


@router.get("/healthz", response_model=HealthResponse, response_model_exclude_none=True)
async def liveness():
    """Process is up. Touches nothing external."""
    return HealthResponse(status="healthy", version=settings.app.app_version)


async def _database_reachable() -> bool:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Job store unreachable", error=str(e))
        return False
    return True


@router.get("/health", response_model=HealthResponse)
async def readiness():
    """
    Readiness of the job store plus whether discovery can be addressed.

    Azure itself is not called; a missing subscription or workspace id
    is reported as ``unconfigured`` and marks the service degraded.
    """
    database_ok = await _database_reachable()
    azure_ok = bool(settings.azure.subscription_id and settings.azure.log_analytics_workspace_id)

    return HealthResponse(
        status="healthy" if database_ok and azure_ok else "degraded",
        version=settings.app.app_version,
        database="healthy" if database_ok else "unhealthy",
        azure="configured" if azure_ok else "unconfigured",
    )
