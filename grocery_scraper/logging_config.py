"""Logging setup: readable console output plus JSON log files.

Scraper modules log through ``logging.getLogger(__name__)``. Code that works
on behalf of one store and category uses ``get_logger(__name__, store=...,
category=...)`` so both fields land on every record of that run.
"""

import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from pythonjsonlogger import jsonlogger

from grocery_scraper.config import Settings, settings as default_settings

CONTEXT_FIELDS = ("store", "category")

CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s [%(scrape_context)s] %(name)s: %(message)s"
JSON_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"

# 10 MB per file, 5 backups
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

# Chatty third-party loggers
QUIET_LOGGERS = ("asyncio", "urllib3")


class ScrapeContextFilter(logging.Filter):
    """Renders store/category into ``scrape_context`` for the console format."""

    def filter(self, record: logging.LogRecord) -> bool:
        parts = [str(getattr(record, name)) for name in CONTEXT_FIELDS if getattr(record, name, None)]
        record.scrape_context = "/".join(parts) or "-"
        return True


class ScrapeJsonFormatter(jsonlogger.JsonFormatter):
    """JSON lines with UTC timestamp, level and code location."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["source"] = f"{record.filename}:{record.lineno}"
        log_record.pop("scrape_context", None)


def setup_logging(
    base_dir: Union[str, Path, None] = None,
    config: Optional[Settings] = None,
) -> logging.Logger:
    """Install console, ``app.log`` and ``error.log`` handlers on the root logger.

    Args:
        base_dir: Directory that receives ``logs/``. Falls back to
                  ``settings.log_dir``, then the working directory.
        config: Settings providing the log level (defaults to global)

    Returns:
        The root logger
    """
    config = config or default_settings
    root_dir = base_dir or config.log_dir
    logs_dir = (Path(root_dir) if root_dir else Path.cwd()) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    context_filter = ScrapeContextFilter()
    json_formatter = ScrapeJsonFormatter(JSON_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.addFilter(context_filter)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    app_file = RotatingFileHandler(
        logs_dir / "app.log", maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
    )
    app_file.setFormatter(json_formatter)

    error_file = logging.FileHandler(logs_dir / "error.log", encoding="utf-8")
    error_file.setLevel(logging.ERROR)
    error_file.setFormatter(json_formatter)

    for handler in (console, app_file, error_file):
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


class ContextLoggerAdapter(logging.LoggerAdapter):
    """Adds fixed context fields; per-call ``extra`` keys take precedence."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str, **context) -> ContextLoggerAdapter:
    """
    Get a logger that stamps context fields on every record.

    Args:
        name: Logger name (usually __name__)
        **context: Context fields, e.g. store="atb", category="Dairy"

    Returns:
        ContextLoggerAdapter
    """
    return ContextLoggerAdapter(logging.getLogger(name), context)
