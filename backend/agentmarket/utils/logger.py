"""
Logging utilities.

WHAT: Centralized logging configuration with a deal id on every record
WHY: A deal's history is scattered across requests and sweeps; grepping one
     match id must show all of it
HOW: Python logging with file and console handlers, a filter that defaults
     match_id, and LoggerAdapters that bind it
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from ..core.config import settings

NO_DEAL = "-"

# Third-party loggers that log every request at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


class DealContextFilter(logging.Filter):
    """Give records without a bound deal a placeholder match_id."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "match_id"):
            record.match_id = NO_DEAL
        return True


def setup_logging():
    """
    Configure application logging.

    WHAT: Set up root logger with file and console handlers
    WHY: Ensure deal transitions are captured to file and visible in console
    HOW: Handlers share the deal filter; the file handler adds source location
    """
    log_file = Path(settings.LOG_FILE)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root_logger.handlers.clear()

    deal_filter = DealContextFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.addFilter(deal_filter)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(levelname)s - [deal=%(match_id)s] %(name)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(console_handler)

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.addFilter(deal_filter)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(levelname)s - [deal=%(match_id)s] %(name)s - %(pathname)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(file_handler)

    if not settings.DEBUG:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info(f"Logging initialized (level={settings.LOG_LEVEL}, file={log_file})")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def deal_logger(logger: logging.Logger, match_id: str) -> logging.LoggerAdapter:
    """Adapter stamping match_id on every record it emits."""
    return logging.LoggerAdapter(logger, {"match_id": match_id})


def log_transition(
    logger: logging.Logger,
    match_id: str,
    old_status: str,
    new_status: str,
    action: str,
    actor: Optional[str] = None,
) -> None:
    """One INFO line per status change, in a fixed greppable shape."""
    logger.info(
        f"{old_status} -> {new_status} (action={action}, actor={actor or 'system'})",
        extra={"match_id": match_id, "old_status": old_status, "new_status": new_status, "action": action},
    )
