"""
Logging setup for the API and the staging sweeper.

structlog events are rendered to a JSON string and handed to the stdlib
root logger, whose python-json-logger handler wraps them with timestamp,
level and logger name.
"""
import logging
import sys
from typing import Any, Callable, List

import structlog
from pythonjsonlogger import jsonlogger

from smm_panel.config import Settings

QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "asyncio")


def app_context_processor(settings: Settings) -> Callable[..., dict[str, Any]]:
    """Return a processor stamping app name and environment on every event."""

    def add_app_context(
        logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        event_dict.setdefault("app_name", settings.app_name)
        event_dict.setdefault("app_env", settings.app_env)
        return event_dict

    return add_app_context


def _processors(settings: Settings) -> List[Any]:
    # request_id, method and path come from the request middleware contextvars
    renderer: Any = (
        structlog.dev.ConsoleRenderer(colors=False)
        if settings.debug
        else structlog.processors.JSONRenderer()
    )
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        app_context_processor(settings),
        renderer,
    ]


def _stdout_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "@timestamp", "levelname": "level", "name": "logger"},
        )
    )
    return handler


def setup_logging(settings: Settings) -> None:
    """
    Configure structlog and the root logger.

    Safe to call more than once: the root handlers are replaced each time.

    Args:
        settings: Application settings (log level, debug, app name)
    """
    structlog.configure(
        processors=_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(_stdout_handler())
    root_logger.setLevel(settings.log_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
