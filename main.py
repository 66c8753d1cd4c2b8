#!/usr/bin/env python
"""
Run the patchops API under uvicorn.

    python main.py
    uvicorn patchops.main:app --host 0.0.0.0 --port 8000

APP_DEBUG=true runs a single reloading worker. APP_ENV=production makes
startup refuse to continue without AZURE_SUBSCRIPTION_ID and
AZURE_LOG_ANALYTICS_WORKSPACE_ID.
"""

from pathlib import Path

import uvicorn

from patchops.core.config import settings

PROJECT_DIR = Path(__file__).parent.resolve()


def main() -> None:
    debug = settings.app.app_debug
    reload = debug and settings.dev_auto_reload

    uvicorn.run(
        "patchops.main:app",
        host=settings.app.api_host,
        port=settings.app.api_port,
        reload=reload,
        reload_dirs=[str(PROJECT_DIR / "patchops")] if reload else None,
        workers=1 if debug else settings.app.api_workers,
        log_level=settings.log.level.lower(),
        access_log=settings.log.requests,
    )


if __name__ == "__main__":
    main()
