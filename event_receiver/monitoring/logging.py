"""
Structured logging configuration.

structlog builds each event: the processor binds the message id and each
worker binds its name through contextvars. The event dict is handed to the
standard library as record extras and python-json-logger writes it as one
flat JSON object per line.
"""
import logging
import sys
from typing import Any

import structlog
from pythonjsonlogger import jsonlogger

from event_receiver.config import get_settings


def add_receiver_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """
    Stamp every event with the deployment it came from.

    Args:
        logger: Logger instance
        method_name: Log method name
        event_dict: Event dictionary

    Returns:
        dict[str, Any]: Event dictionary with app and policy fields
    """
    settings = get_settings()
    event_dict.setdefault("app_name", settings.app_name)
    event_dict.setdefault("app_env", settings.app_env)
    event_dict.setdefault("processing_policy", settings.processing_policy)
    return event_dict


def build_formatter() -> logging.Formatter:
    """JSON formatter naming fields the way structlog events do."""
    return jsonlogger.JsonFormatter(
        "%(levelname)s %(name)s %(message)s",
        rename_fields={"levelname": "level", "name": "logger", "message": "event"},
        timestamp=True,
    )


def setup_logging() -> None:
    """
    Configure structured logging.

    Replaces the root handlers with a single stdout handler, so calling it
    again does not duplicate output.
    """
    settings = get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            add_receiver_context,
            structlog.stdlib.render_to_log_kwargs,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    json_handler = logging.StreamHandler(sys.stdout)
    json_handler.setFormatter(build_formatter())
    root_logger.addHandler(json_handler)

    # SQL echo goes through its own logger
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    structlog.get_logger(__name__).info("logging_configured", log_level=settings.log_level)
