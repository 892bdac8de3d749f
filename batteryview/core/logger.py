"""Structured logging configuration."""

import logging
import sys
from pathlib import Path

import structlog
from structlog.types import Processor

from batteryview.core.config import LoggingConfig

# Third-party loggers that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "apprise")


def _build_processors(log_format: str) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    return processors


def configure_logging(config: LoggingConfig) -> None:
    """Configure structured logging with structlog.

    Every event goes through the stdlib root logger, so the optional file
    handler receives the same rendered lines as stdout.

    Args:
        config: Logging configuration
    """
    level = getattr(logging, config.level)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
        force=True,
    )

    if config.file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(level)
        logging.getLogger().addHandler(file_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=_build_processors(config.format),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Logger name (default: module name)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
