"""Logging setup shared by every resurev module.

Console output goes to stdout at ``LOG_LEVEL``. A daily DEBUG file under
``RESUREV_LOG_DIR`` (default ``logs/`` next to the package) is added unless
``RESUREV_LOG_FILE`` is set to 0/false/no/off.
"""
from __future__ import annotations

import logging
import os
import sys
from datetime import date
from pathlib import Path

_DEFAULT_LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
_FORMATTER = logging.Formatter(
    "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
)
_OFF = ("0", "false", "no", "off")
_ready = False


def _level_from_env() -> int:
    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _daily_file_handler() -> logging.Handler | None:
    if os.environ.get("RESUREV_LOG_FILE", "1").strip().lower() in _OFF:
        return None
    log_dir = Path(os.environ.get("RESUREV_LOG_DIR") or _DEFAULT_LOG_DIR)
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_dir / f"resurev_{date.today():%Y-%m-%d}.log", encoding="utf-8")
    except OSError:
        # Read-only checkout; console logging still works
        return None
    handler.setLevel(logging.DEBUG)
    return handler


def _install_handlers() -> None:
    level = _level_from_env()
    root = logging.getLogger()
    root.setLevel(level)
    if root.handlers:
        return

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    handlers: list[logging.Handler] = [console]
    file_handler = _daily_file_handler()
    if file_handler is not None:
        handlers.append(file_handler)
    for handler in handlers:
        handler.setFormatter(_FORMATTER)
        root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Named logger; the root handlers are installed on the first call."""
    global _ready
    if not _ready:
        _install_handlers()
        _ready = True
    return logging.getLogger(name)
