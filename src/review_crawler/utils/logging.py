"""
Logging setup for the review crawler.

Every module logs through a child of the "review_crawler" logger.
Console output goes through rich on stderr so it never mixes with
command output on stdout; an optional rotating file keeps the plain
format from LoggingSettings.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from review_crawler.config.settings import LoggingSettings


ROOT_LOGGER_NAME = "review_crawler"

_logging_configured = False


def setup_logging(
    settings: "LoggingSettings | None" = None,
    level: str | None = None,
) -> logging.Logger:
    """
    Attach handlers to the application logger.

    Only the first call has an effect until reset_logging() is called.

    Args:
        settings: Logging configuration; console-only INFO when None
        level: Overrides settings.level, e.g. "DEBUG" for --verbose

    Returns:
        The application logger
    """
    global _logging_configured

    app_logger = logging.getLogger(ROOT_LOGGER_NAME)
    if _logging_configured:
        return app_logger

    level_name = level or (settings.level if settings else "INFO")
    numeric_level = logging.getLevelName(level_name.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    app_logger.handlers.clear()
    app_logger.setLevel(numeric_level)

    if settings is None or settings.log_to_console:
        console_handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            log_time_format=settings.date_format if settings else "%H:%M:%S",
        )
        console_handler.setLevel(numeric_level)
        app_logger.addHandler(console_handler)

    if settings is not None and settings.file_path is not None:
        app_logger.addHandler(_file_handler(settings, numeric_level))

    app_logger.propagate = False
    _logging_configured = True
    return app_logger


def _file_handler(settings: "LoggingSettings", level: int) -> RotatingFileHandler:
    path = Path(settings.file_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(
        path,
        maxBytes=settings.max_file_size_mb * 1024 * 1024,
        backupCount=settings.backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=settings.format, datefmt=settings.date_format))
    return handler


def get_logger(name: str | None = None) -> logging.Logger:
    """
    Logger under the application root.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Session started")
    """
    if name is None:
        return logging.getLogger(ROOT_LOGGER_NAME)
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def reset_logging() -> None:
    """Remove all handlers so setup_logging() can run again."""
    global _logging_configured

    app_logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(app_logger.handlers):
        handler.close()
        app_logger.removeHandler(handler)

    app_logger.setLevel(logging.NOTSET)
    app_logger.propagate = True
    _logging_configured = False


class LoggerAdapter(logging.LoggerAdapter):
    """Appends "[key=value]" pairs to every message."""

    def process(self, msg, kwargs):
        if self.extra:
            msg = f"{msg} " + " ".join(f"[{k}={v}]" for k, v in self.extra.items())
        return msg, kwargs


def get_logger_with_context(name: str | None = None, **context: str) -> LoggerAdapter:
    """
    Logger that tags every line with context.

    Example:
        >>> log = get_logger_with_context(__name__, target="B0ABC12345")
        >>> log.info("Page stored")  # "Page stored [target=B0ABC12345]"
    """
    return LoggerAdapter(get_logger(name), context)
