"""Logging setup for the scriptpilot console.

Records go to a rotating ``scriptpilot.log``. The console handler writes
warnings and above to stderr so log lines do not interleave with the
operator prompt. Conversation event logs live in ``events/`` beside the log
file.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from pathlib import Path

__all__ = ["setup_logging", "get_log_path", "log_dir", "event_log_dir", "LOG_DIR_ENV"]

LOG_DIR_ENV = "SCRIPTPILOT_LOG_DIR"
LOG_FILENAME = "scriptpilot.log"
_DEFAULT_LOG_DIR = Path.home() / ".scriptpilot" / "logs"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_LOG_PATH: Path | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    directory: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install the file and console handlers on the root logger.

    A second call is a no-op unless ``force`` is set, which replaces the
    handlers (settings can switch debug logging on after startup).
    """
    global _LOG_PATH
    if _LOG_PATH is not None and not force:
        return _LOG_PATH

    target = log_dir(directory)
    target.mkdir(parents=True, exist_ok=True)
    path = target / LOG_FILENAME
    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT)

    file_handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [file_handler]
    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(max(level, logging.WARNING))
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    quiet = max(level, logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)

    _LOG_PATH = path
    return path


def get_log_path() -> Path | None:
    return _LOG_PATH


def log_dir(directory: Path | str | None = None) -> Path:
    """Resolve the log directory: argument, then ``SCRIPTPILOT_LOG_DIR``, then the home default."""

    return Path(directory or os.environ.get(LOG_DIR_ENV) or _DEFAULT_LOG_DIR).expanduser()


def event_log_dir() -> Path:
    if _LOG_PATH is not None:
        return _LOG_PATH.parent / "events"
    return log_dir() / "events"
