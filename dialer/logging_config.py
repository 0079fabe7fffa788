"""
Structured logging.

structlog runs on top of stdlib logging so records from Celery, uvicorn and
SQLAlchemy end up in the same stream as ours. JSON lines in production,
colored console output when DEBUG is on.
"""

import logging
import sys
from typing import Any, Optional

import structlog

from dialer.config import SERVICE_NAME, config

# These log every request or task event at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "celery", "kombu", "sqlalchemy.engine")


def add_service_name(logger, method_name, event_dict):
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_logging(level: Optional[str] = None, json_output: Optional[bool] = None):
    """
    Configure stdlib logging and structlog.

    Args:
        level: log level name, defaults to LOG_LEVEL
        json_output: force the renderer; defaults to JSON unless DEBUG
    """
    level_name = (level or config.LOG_LEVEL).upper()
    if json_output is None:
        json_output = not config.DEBUG

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name, logging.INFO),
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            add_service_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None) -> Any:
    """
    Usage:
        logger = get_logger(__name__)
        logger.info("call_scheduled", user_id=1, prospect_id=42)
    """
    return structlog.get_logger(name)


configure_logging()

logger = get_logger("dialer")
