#!/usr/bin/env python3
"""Structured logging configuration for the brain core.

Provides a consistent logging setup:
- Console handler: warnings and above
- File handler: debug and above to <state dir>/brain.log

The state directory is resolved like every other brain document
(BRAIN_PROJECT_DIR -> ancestor .brain -> cwd) unless a store binds
its own root with set_log_dir.
"""

import logging
from pathlib import Path
from typing import Optional

from .paths import get_state_dir

LOG_FILE_NAME = "brain.log"

# Module-level logger cache
_loggers = {}

# State directory bound by a MemoryStore; None means resolve on demand
_log_dir: Optional[Path] = None


def get_log_file() -> Path:
    """Log file location: the bound state directory, else the resolved one."""
    return (_log_dir or get_state_dir()) / LOG_FILE_NAME


def _attach_file_handler(logger: logging.Logger) -> None:
    """Replace logger's file handler with one writing to get_log_file()."""
    for handler in [h for h in logger.handlers if isinstance(h, logging.FileHandler)]:
        logger.removeHandler(handler)
        handler.close()

    log_file = get_log_file()
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(file_handler)
    except (IOError, OSError):
        # Can't write to log file - continue with console only
        pass


def set_log_dir(state_dir: Optional[Path]) -> None:
    """Send every brain logger's file output to state_dir/brain.log.

    None drops the binding and re-resolves get_state_dir() now.
    """
    global _log_dir
    new_dir = Path(state_dir) if state_dir is not None else None
    if new_dir is not None and new_dir == _log_dir:
        return
    _log_dir = new_dir
    for logger in _loggers.values():
        _attach_file_handler(logger)


def get_logger(name: str = "brain") -> logging.Logger:
    """Get a configured logger for brain modules.

    Args:
        name: Logger name (typically module name like "brain.engine")

    Returns:
        Configured logger instance
    """
    if name in _loggers:
        return _loggers[name]

    logger = logging.getLogger(name)

    # Only configure if not already configured
    if not logger.handlers:
        logger.setLevel(logging.DEBUG)

        # Console handler: warnings and above
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(logging.Formatter(
            "[%(name)s] %(levelname)s: %(message)s"
        ))
        logger.addHandler(console_handler)

        # File handler: debug and above
        _attach_file_handler(logger)

        # Don't propagate to root logger
        logger.propagate = False

    _loggers[name] = logger
    return logger


def clear_log():
    """Clear the brain log file."""
    log_file = get_log_file()
    if log_file.exists():
        log_file.unlink()


def get_log_contents(max_lines: int = 100) -> list[str]:
    """Get recent log file contents.

    Args:
        max_lines: Maximum number of lines to return

    Returns:
        List of log lines (most recent last)
    """
    log_file = get_log_file()
    if not log_file.exists():
        return []

    try:
        lines = log_file.read_text().strip().split("\n")
        return lines[-max_lines:]
    except (IOError, OSError):
        return []
