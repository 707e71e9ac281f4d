"""
Logging configuration for the MCP inspector.

Two destinations:
  - Console: DEBUG if --verbose, WARNING+ otherwise. Config
    ``console_format`` options:
    - "full"   - structured format identical to the file handler
    - "simple" - (default) bare messages for DEBUG/INFO, [LEVEL] prefix for WARNING+
    - "clean"  - no console output at all (file logging still active)
  - File: one file per task under <data_dir>/logs, always DEBUG, attached
    by ``attach_log_file()`` once the task id is known.

Format: "timestamp | level | name | task_id | tag | message"
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import config


_LOGGER_NAME = "mcp_inspector"

_FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(task_id)s | %(log_tag)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def tagged(tag: str) -> dict:
    """Return ``extra`` dict for logger calls: ``logger.debug("...", extra=tagged("x"))``."""
    return {"log_tag": tag}


# Module-level state (shared across re-inits)
_task_filter: Optional["_TaskFilter"] = None
_current_log_file: Optional[Path] = None


class _TaskFilter(logging.Filter):
    """Injects task_id into every log record."""

    def __init__(self) -> None:
        super().__init__()
        self.task_id = ""

    def filter(self, record: logging.LogRecord) -> bool:
        record.task_id = self.task_id or "-"
        if not hasattr(record, "log_tag"):
            record.log_tag = ""
        return True


class _ConsoleFormatter(logging.Formatter):
    """Console formatter: shows [LEVEL] prefix only for WARNING and above."""

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            return f"  [{record.levelname}] {record.getMessage()}"
        return f"  {record.getMessage()}"


def _ensure_filter(logger: logging.Logger) -> "_TaskFilter":
    global _task_filter
    if _task_filter is None:
        _task_filter = _TaskFilter()
    if _task_filter not in logger.filters:
        logger.addFilter(_task_filter)
    return _task_filter


def set_task_id(task_id: str) -> None:
    """Stamp subsequent records with *task_id* (empty string clears it)."""
    _ensure_filter(logging.getLogger(_LOGGER_NAME)).task_id = task_id


def attach_log_file(task_id: str) -> Path:
    """Attach a per-task file handler and stamp records with the task id.

    Creates or appends to task_{task_id}.log. Returns the log file path.
    """
    global _current_log_file
    log_dir = config.get_data_dir() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / f"task_{task_id}.log"
    _current_log_file = log_file

    logger = logging.getLogger(_LOGGER_NAME)
    _ensure_filter(logger)
    # Only one task file at a time
    logger.handlers = [h for h in logger.handlers if not isinstance(h, logging.FileHandler)]

    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(file_handler)
    set_task_id(task_id)

    logger.info("=" * 60)
    logger.info(f"Task started at {datetime.now().isoformat()}")
    logger.info(f"Log file: {log_file}")
    return log_file


def detach_log_file() -> None:
    """Close and remove the per-task file handler, if any."""
    global _current_log_file
    logger = logging.getLogger(_LOGGER_NAME)
    for handler in [h for h in logger.handlers if isinstance(h, logging.FileHandler)]:
        logger.removeHandler(handler)
        handler.close()
    _current_log_file = None
    set_task_id("")


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Configure console logging for the inspector.

    Args:
        verbose: If True, show DEBUG level on console; otherwise WARNING+.

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # Capture everything, filter at handler level

    # Clear existing handlers (in case of re-init)
    logger.handlers.clear()
    _ensure_filter(logger)

    console_format = config.get("console_format", "simple")

    if console_format != "clean":
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
        if console_format == "simple":
            console_handler.setFormatter(_ConsoleFormatter())
        else:
            console_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
        logger.addHandler(console_handler)

    return logger
