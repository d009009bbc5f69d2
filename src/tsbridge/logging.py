"""Logging for tsbridge.

Everything logs under the ``tsbridge`` logger namespace. Two extra levels
sit around the standard ones:

    TRACE    (5)   raw frames in both directions
    DEBUG    (10)  discarded replies, table bookkeeping
    VERBOSE  (15)  server events
    INFO     (20)  process lifecycle
    WARNING  (30)  server stderr output, timeouts
    ERROR    (40)  dropped (malformed) frames

Output goes to the file named by ``logging.file`` (or TSBRIDGE_LOG), and
otherwise to stderr when stderr is a terminal. Nothing is printed to a
redirected stderr, so piping ``tsbridge`` output stays clean.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tsbridge.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

logger = logging.getLogger("tsbridge")

# --verbose=N, from errors only (0) to everything (4)
_BY_VERBOSITY = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)

_BY_NAME = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "INFO": logging.INFO,
    "VERBOSE": VERBOSE,
    "DEBUG": logging.DEBUG,
    "TRACE": TRACE,
}

_installed: list[logging.Handler] = []


class _LowercaseLevelFormatter(logging.Formatter):
    """Renders ``12:00:01 warning: message`` without touching the shared record."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s: %(message)s", datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        copy = logging.makeLogRecord(record.__dict__)
        copy.levelname = record.levelname.lower()
        return super().format(copy)


def resolve_level(config: LoggingConfig | None) -> int:
    """Effective level for a LoggingConfig.

    ``verbose`` beats ``level``; verbosity is clamped to 0..4 and unknown
    level names mean INFO.
    """
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        return _BY_VERBOSITY[min(max(config.verbose, 0), len(_BY_VERBOSITY) - 1)]
    if not config.level:
        return logging.INFO
    return _BY_NAME.get(config.level.upper(), logging.INFO)


def _log_file(config: LoggingConfig | None) -> str | None:
    path = (config.file if config else None) or os.environ.get("TSBRIDGE_LOG")
    return os.path.expanduser(path) if path else None


def _open_handlers(config: LoggingConfig | None) -> list[logging.Handler]:
    path = _log_file(config)
    if path:
        try:
            return [logging.FileHandler(path, mode="a", encoding="utf-8")]
        except OSError as e:
            if not sys.stderr.isatty():
                return []
            print(f"[tsbridge] Cannot open log file {path}: {e}", file=sys.stderr)
    if sys.stderr.isatty():
        return [logging.StreamHandler(sys.stderr)]
    return []


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Install tsbridge's handlers. Only the first call has any effect."""
    if _installed:
        return

    level = resolve_level(config)
    logger.setLevel(level)
    formatter = _LowercaseLevelFormatter()
    handlers = _open_handlers(config)
    # Marks setup as done even when nothing could be opened
    _installed.append(logging.NullHandler())
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        _installed.append(handler)


def reset_logging() -> None:
    """Undo setup_logging(); used between tests."""
    while _installed:
        handler = _installed.pop()
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


def get_logger(name: str | None = None) -> logging.Logger:
    """The tsbridge logger, or its child ``tsbridge.<name>``."""
    return logger.getChild(name) if name else logger
