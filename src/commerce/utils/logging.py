"""Logging configuration for the commerce engine.

Entry points (the HTTP app and the webhook worker) call
``configure_logging()`` once at startup. Importing the domain never touches
logging configuration.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any

import structlog

from commerce.config import get_settings

_LEVEL_BY_ENVIRONMENT = {
    "production": "INFO",
    "staging": "INFO",
    "development": "DEBUG",
    "test": "WARNING",
}

_MAX_LOG_BYTES = 10 * 1024 * 1024


def get_log_level() -> str:
    """Explicit ``LOG_LEVEL`` wins; otherwise derived from the environment name."""
    settings = get_settings()
    if settings.log_level:
        return settings.log_level.upper()
    return _LEVEL_BY_ENVIRONMENT.get(settings.environment.lower(), "INFO")


def _use_json(format_type: str | None) -> bool:
    settings = get_settings()
    chosen = format_type or settings.log_format
    if chosen:
        return chosen.lower() == "json"
    return settings.environment.lower() in ("production", "staging")


def _rotating_handler(path: Path, level: int | str) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        filename=path,
        maxBytes=_MAX_LOG_BYTES,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(level)
    return handler


def _configure_handlers(level: str) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    log_dir = get_settings().log_dir
    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        handlers.append(_rotating_handler(directory / "commerce.log", level))
        handlers.append(_rotating_handler(directory / "commerce_error.log", logging.ERROR))

    root = logging.getLogger()
    root.handlers = handlers
    root.setLevel(level)

    # Provider HTTP chatter
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _renderer(json_output: bool):
    if json_output:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [
        structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.RichTracebackFormatter(show_locals=False, max_frames=4),
        )
    ]


def configure_logging(level: str | None = None, format_type: str | None = None) -> None:
    """Configure stdlib handlers and the structlog pipeline."""
    resolved_level = (level or get_log_level()).upper()
    _configure_handlers(resolved_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="logged_at"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.CallsiteParameterAdder(
                parameters=[
                    structlog.processors.CallsiteParameter.MODULE,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                ]
            ),
            *_renderer(_use_json(format_type)),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def add_context(**kwargs: Any) -> None:
    """Bind values (request path, worker name) onto every later log line."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
