"""Logging for peach.

Solves run on worker threads, so every record carries the thread name
(``peach-equation_0`` and so on) next to the logger name. Loggers live under
the ``peach`` hierarchy and are obtained through :func:`get_logger`.

Handlers are installed lazily on first use from ``PEACH_LOG_LEVEL``
(default WARNING) and ``PEACH_LOG_FILE``. :func:`configure_logging` replaces
them explicitly; the command line calls it for ``--log-level``.
"""

from __future__ import annotations

import logging
import os
import sys
import threading
from typing import Optional, Union

ROOT_LOGGER = "peach"
CONSOLE_FORMAT = "%(levelname)-7s [%(threadName)s] %(name)s: %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"

_configured = False
_configure_lock = threading.Lock()
_handlers: list = []


class _StderrHandler(logging.StreamHandler):
    """Writes to whatever ``sys.stderr`` is when a record is emitted."""

    def __init__(self) -> None:
        super().__init__(sys.stderr)

    @property
    def stream(self):
        return sys.stderr

    @stream.setter
    def stream(self, value) -> None:
        pass


def _parse_level(level: Union[int, str, None]) -> int:
    if level is None:
        env_value = logging.getLevelName(os.environ.get("PEACH_LOG_LEVEL", "WARNING").upper())
        return env_value if isinstance(env_value, int) else logging.WARNING
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level '{level}'")
    return value


def configure_logging(
    level: Union[int, str, None] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Install the console (and optional file) handler on the ``peach`` logger.

    Calling it again replaces the handlers it installed before. ``level`` and
    ``log_file`` default to ``PEACH_LOG_LEVEL`` and ``PEACH_LOG_FILE``.
    """
    global _configured
    resolved = _parse_level(level)
    path = log_file if log_file is not None else os.environ.get("PEACH_LOG_FILE")
    root = logging.getLogger(ROOT_LOGGER)
    with _configure_lock:
        for handler in _handlers:
            root.removeHandler(handler)
            handler.close()
        _handlers.clear()

        console = _StderrHandler()
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        _handlers.append(console)
        if path:
            file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
            _handlers.append(file_handler)

        for handler in _handlers:
            root.addHandler(handler)
        root.setLevel(resolved)
        _configured = True
    return root


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name`` (usually ``__name__``) inside the ``peach`` tree."""
    if not _configured:
        configure_logging()
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
