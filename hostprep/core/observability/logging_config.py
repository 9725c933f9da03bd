"""
Logging configuration — central setup for the CLI.

Called once at startup by main.py. Every module that does
``logger = logging.getLogger(__name__)`` inherits this config.

Levels are resolved in precedence order:
    CLI flag  >  HOSTPREP_LOG_LEVEL env var  >  INFO (default)

Installers add a timestamped log file on top of the console
(see ``attach_task_log``) so a failed run on a remote box leaves a
transcript behind. HOSTPREP_LOG_FILE replaces that file.
"""

from __future__ import annotations

import logging
import sys
import time
from pathlib import Path

# ── Format strings ──────────────────────────────────────────────

# WARNING and above: just the message
_FMT_MINIMAL = "%(message)s"

# INFO: timestamped, level tagged
_FMT_VERBOSE = "[%(asctime)s] [%(levelname)s] %(message)s"
_DATEFMT_VERBOSE = "%Y-%m-%d %H:%M:%S"

# DEBUG: full diagnostic with file:line
_FMT_DEBUG = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_DEBUG = "%H:%M:%S"

# File output: always full detail
_FMT_FILE = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"

_TASK_HANDLER_NAME = "hostprep-task-log"


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Configure Python logging for the entire process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to a log file.
        log_file_level: Optional separate level for the log file.
            Defaults to the same as ``level``.
    """
    numeric_level = _parse_level(level)

    # ── Console handler (stderr) ────────────────────────────────
    if numeric_level <= logging.DEBUG:
        fmt, datefmt = _FMT_DEBUG, _DATEFMT_DEBUG
    elif numeric_level <= logging.INFO:
        fmt, datefmt = _FMT_VERBOSE, _DATEFMT_VERBOSE
    else:
        fmt, datefmt = _FMT_MINIMAL, None

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    # ── Root logger ─────────────────────────────────────────────
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)

    effective_level = numeric_level

    # ── File handler (optional) ─────────────────────────────────
    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else numeric_level
        effective_level = min(effective_level, file_level)
        root.addHandler(_file_handler(Path(log_file), file_level))

    root.setLevel(effective_level)

    # Don't propagate exceptions from logging itself
    logging.raiseExceptions = False


def attach_task_log(prefix: str, directory: Path = Path("/tmp")) -> Path | None:
    """Tee the root logger into ``<directory>/<prefix>_<timestamp>.log``.

    Does nothing (returns the existing path) when a file handler is
    already installed, e.g. via HOSTPREP_LOG_FILE. Returns None if the
    file cannot be opened; a missing transcript never stops a task.
    """
    root = logging.getLogger()
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler):
            return Path(handler.baseFilename)

    path = directory / f"{prefix}_{time.strftime('%Y%m%d_%H%M%S')}.log"
    try:
        directory.mkdir(parents=True, exist_ok=True)
        handler = _file_handler(path, logging.INFO)
    except OSError as e:
        logging.getLogger(__name__).warning("Cannot open log file %s: %s", path, e)
        return None
    handler.set_name(_TASK_HANDLER_NAME)
    root.addHandler(handler)
    if root.level > logging.INFO or root.level == logging.NOTSET:
        root.setLevel(logging.INFO)
    return path


def _file_handler(path: Path, level: int) -> logging.FileHandler:
    fh = logging.FileHandler(path, encoding="utf-8")
    fh.setLevel(level)
    fh.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
    return fh


def _parse_level(level: str | None) -> int:
    """Convert a level name string to its numeric constant."""
    if not level:
        return logging.INFO
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.INFO
    return numeric
