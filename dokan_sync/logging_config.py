"""Logging setup for dokan_sync.

Local log files live under ``<data dir>/logs``:
- ``local-YYYY-MM-DD.log``        all ``dokan_sync.*`` log records
- ``sync-events-YYYY-MM-DD.log``  one line per sync event, for support
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from dokan_sync.utils import get_dokan_home

LOGGER_NAME = "dokan_sync"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _log_dir() -> Path:
    log_dir = get_dokan_home() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def _today() -> str:
    return datetime.now().strftime("%Y-%m-%d")


def setup_dokan_logging(owner_scope: str = "default", level: str = "INFO") -> logging.Logger:
    """Configure the ``dokan_sync`` logger with a daily file handler.

    Args:
        owner_scope: Shop/user the process is serving (recorded once at startup).
        level: Log level name; unknown names fall back to INFO.

    Returns:
        The configured ``dokan_sync`` logger. Calling this twice does not
        add duplicate handlers.
    """
    logger = logging.getLogger(LOGGER_NAME)

    resolved = getattr(logging, str(level).upper(), None)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logger.setLevel(resolved)

    formatter = logging.Formatter(LOG_FORMAT)
    log_file = _log_dir() / f"local-{_today()}.log"

    has_file = any(
        isinstance(h, logging.FileHandler)
        and Path(h.baseFilename).resolve() == log_file.resolve()
        for h in logger.handlers
    )
    if not has_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in logger.handlers
    )
    if resolved <= logging.DEBUG and not has_console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        logger.addHandler(console)

    logger.debug(
        "Logging configured for scope=%s level=%s", owner_scope, logging.getLevelName(resolved)
    )
    return logger


def log_sync_event(event_type: str, details: str, owner_scope: Optional[str] = None) -> None:
    """Append one line to the daily sync-events log."""
    scope = owner_scope or "default"
    timestamp = datetime.now().isoformat(timespec="seconds")
    line = f"{timestamp} | {event_type} | scope={scope} | {details}\n"
    try:
        event_file = _log_dir() / f"sync-events-{_today()}.log"
        with open(event_file, "a", encoding="utf-8") as f:
            f.write(line)
    except OSError as e:
        logging.getLogger(LOGGER_NAME).warning(f"Could not write sync event log: {e}")


def log_sync_run(owner_scope: Optional[str], attempted: int, reconciled: int, failed: int) -> None:
    """Record a completed sync run."""
    log_sync_event(
        "push",
        f"attempted={attempted}, reconciled={reconciled}, failed={failed}",
        owner_scope,
    )


def log_pull(
    owner_scope: Optional[str], record_type: str, count: int, error: Optional[str] = None
) -> None:
    """Record a snapshot pull for one record type."""
    details = f"type={record_type}, count={count}"
    if error:
        details += f", error={error[:200]}"
    log_sync_event("pull", details, owner_scope)
