"""Logging setup for the turn tracker client.

- Log records go to a rotating UTF-8 file under logs/ by default.
- Console output is off unless asked for, so log lines do not interleave
  with the interactive prompt.
- websockets and httpx are held at WARNING unless the client runs at DEBUG;
  their per-frame / per-request lines drown out the channel's own.
- Calling setup_logging() again reconfigures the same named handlers
  instead of stacking new ones.

Environment overrides:
    TURN_TRACKER_LOG_LEVEL=DEBUG|INFO|WARNING|ERROR
    TURN_TRACKER_LOG_FILE=path/to/file.log
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

_FILE_HANDLER_NAME = "turn_tracker_file"
_CONSOLE_HANDLER_NAME = "turn_tracker_console"
_DEFAULT_LOG_FILE = Path("logs") / "turn_tracker.log"
_CHATTY_LIBRARIES = ("websockets", "httpx", "httpcore")


def _parse_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    name = (level or "").strip().upper()
    return logging._nameToLevel.get(name, logging.INFO)


def _resolve_log_path(log_file: str | None) -> Path:
    path = Path(log_file) if log_file else _DEFAULT_LOG_FILE
    if not path.is_absolute():
        path = Path.cwd() / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def setup_logging(
    *,
    level: str | int | None = "INFO",
    log_file: str | None = None,
    enable_file: bool = True,
    enable_console: bool = False,
    console_level: str | int = "WARNING",
    max_bytes: int = 1024 * 1024,
    backup_count: int = 3,
) -> logging.Logger:
    """Configure the root logger and return it."""
    level = os.environ.get("TURN_TRACKER_LOG_LEVEL") or level
    log_file = os.environ.get("TURN_TRACKER_LOG_FILE") or log_file
    file_level = _parse_level(level)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)  # handlers do the filtering

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)-8s %(name)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handlers = {h.name: h for h in root.handlers}

    log_path = None
    if enable_file:
        log_path = _resolve_log_path(log_file)
        file_handler = handlers.get(_FILE_HANDLER_NAME)
        if file_handler is None:
            file_handler = RotatingFileHandler(
                str(log_path),
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            file_handler.name = _FILE_HANDLER_NAME
            root.addHandler(file_handler)
        file_handler.setFormatter(fmt)
        file_handler.setLevel(file_level)

    if enable_console:
        console_handler = handlers.get(_CONSOLE_HANDLER_NAME)
        if console_handler is None:
            console_handler = logging.StreamHandler()
            console_handler.name = _CONSOLE_HANDLER_NAME
            root.addHandler(console_handler)
        console_handler.setFormatter(fmt)
        console_handler.setLevel(_parse_level(console_level))

    library_level = logging.DEBUG if file_level <= logging.DEBUG else logging.WARNING
    for name in _CHATTY_LIBRARIES:
        logging.getLogger(name).setLevel(library_level)

    logging.getLogger(__name__).info(
        "Logging initialized | level=%s file=%s console=%s",
        logging.getLevelName(file_level), log_path, enable_console,
    )
    return root
