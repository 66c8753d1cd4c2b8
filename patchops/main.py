"""
patchops FastAPI application.

Wires configuration, logging, the shared service container and the
HTTP routers together.
"""

import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

from patchops.api.v1 import health, inventory, patching
from patchops.core.config import settings
from patchops.core.database import async_session_factory, close_db, init_db
from patchops.core.dependencies import build_services
from patchops.core.errors import ErrorKind, PatchOpsError
from patchops.core.logging import configure_logging

configure_logging(settings.log)

logger = structlog.get_logger(__name__)

# HTTP status for cycle-scoped errors that escape a request handler
STATUS_BY_KIND = {
    ErrorKind.DISCOVERY_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.CONFIGURATION: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Validate coordinates, prepare tables and build shared collaborators."""
    logger.info("patchops starting", version=settings.app.app_version, env=settings.app.app_env)

    # Raises ConfigurationError and aborts startup
    if settings.should_validate_coordinates:
        settings.azure.require_coordinates()

    try:
        await init_db()
    except Exception as e:
        logger.error("Could not create database tables", error=str(e))

    app.state.services = build_services(settings, async_session_factory)
    logger.info(
        "Patch orchestration ready",
        subscription_id=settings.azure.subscription_id or None,
        workspace_id=settings.azure.log_analytics_workspace_id or None,
        max_concurrency=settings.patching.max_concurrency,
        poll_interval=settings.patching.poll_interval,
        poll_timeout=settings.patching.poll_timeout,
    )

    yield

    logger.info("patchops stopping")
    await app.state.services.close()
    await close_db()


app = FastAPI(
    title=settings.app.app_name,
    version=settings.app.app_version,
    description="Patch deployment orchestration for Azure Arc managed machines",
    docs_url="/docs" if settings.docs_enabled else None,
    redoc_url="/redoc" if settings.docs_enabled else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.app.cors_origins_list,
    allow_credentials=settings.app.cors_credentials,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Tag each request with an id and log its duration."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id
    # Every event logged while serving the request carries its id
    structlog.contextvars.bind_contextvars(request_id=request_id)
    log = logger.bind(request_id=request_id, method=request.method, path=request.url.path)
    started = time.perf_counter()

    try:
        response = await call_next(request)
    except Exception as e:
        log.error("Request crashed", error=str(e), elapsed_ms=_elapsed_ms(started))
        raise
    finally:
        structlog.contextvars.unbind_contextvars("request_id")

    response.headers["X-Request-ID"] = request_id
    if settings.log.requests:
        log.info("Request handled", status_code=response.status_code, elapsed_ms=_elapsed_ms(started))
    return response


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _error_response(
    request: Request,
    status_code: int,
    code,
    message: str,
    details: Optional[list] = None,
) -> JSONResponse:
    error = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": error,
            "meta": {"request_id": getattr(request.state, "request_id", None)},
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return _error_response(request, exc.status_code, exc.status_code, exc.detail)


@app.exception_handler(RequestValidationError)
async def malformed_request(request: Request, exc: RequestValidationError):
    """Reject malformed request bodies with 400 and per-field details."""
    details = [
        {
            "field": ".".join(str(part) for part in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    return _error_response(
        request,
        status.HTTP_400_BAD_REQUEST,
        "VALIDATION_ERROR",
        "Request validation failed",
        details=details,
    )


@app.exception_handler(PatchOpsError)
async def patchops_error(request: Request, exc: PatchOpsError):
    """Cycle-scoped failures; job-scoped ones never reach this handler."""
    status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    logger.error(
        "Request aborted",
        path=request.url.path,
        kind=exc.kind.value,
        status_code=status_code,
        error=exc.message,
    )
    return _error_response(request, status_code, exc.kind.value.upper(), exc.message)


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception):
    logger.error("Unhandled exception", path=request.url.path, error=str(exc), exc_info=exc)
    message = str(exc) if settings.app.app_debug else "An internal error occurred"
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_ERROR",
        message,
    )


app.include_router(health.router)
app.include_router(patching.router, prefix="/api/v1")
app.include_router(inventory.router, prefix="/api/v1")
