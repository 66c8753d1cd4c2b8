"""
structlog configuration.

Events go through stdlib logging so uvicorn and SQLAlchemy records share
one stream. ``LOG_FORMAT=text`` switches to the console renderer for
local runs.
"""

import logging
import sys

import structlog

from patchops.core.config import LogSettings


def configure_logging(log_settings: LogSettings) -> None:
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_settings.level.upper(),
    )

    if log_settings.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
