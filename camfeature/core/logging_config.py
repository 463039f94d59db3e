"""Root logging setup for camfeature entry points.

Backend callbacks arrive on worker threads, so every record carries the
thread name next to the component prefix added by ``StructuredLogger``.
"""

from __future__ import annotations

import contextlib
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"
LOG_DATEFMT = "%H:%M:%S"
LOG_FILE_MAX_BYTES = 512 * 1024
LOG_FILE_BACKUPS = 2

# Chatty at DEBUG and unrelated to the camera.
NOISY_LOGGERS = ("asyncio",)

_configured = False

PathLike = Union[str, Path]


def coerce_level(level: Union[int, str]) -> int:
    """Translate ``"debug"``/``"INFO"``/``20`` into a numeric logging level."""
    if isinstance(level, int):
        return level
    numeric = logging.getLevelName(str(level).strip().upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level '{level}'")
    return numeric


def _file_handler(log_file: PathLike) -> logging.Handler:
    path = Path(log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS, encoding="utf-8")


def _reset_root(root: logging.Logger) -> None:
    for handler in list(root.handlers):
        root.removeHandler(handler)
        with contextlib.suppress(Exception):
            handler.close()


def configure_logging(
    level: Union[int, str] = logging.INFO,
    *,
    console: bool = True,
    log_file: Optional[PathLike] = None,
    force: bool = False,
) -> None:
    """Send camfeature logs to stdout and, optionally, a size-rotated file.

    A second call only adjusts the level unless ``force`` is set. Loggers in
    :data:`NOISY_LOGGERS` stay at WARNING unless the level is stricter.
    """
    global _configured
    numeric_level = coerce_level(level)
    root = logging.getLogger()
    if _configured and not force:
        root.setLevel(numeric_level)
        return

    _reset_root(root)
    handlers: list[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        handlers.append(_file_handler(log_file))
    if not handlers:
        handlers.append(logging.NullHandler())

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(numeric_level)

    quiet_level = max(numeric_level, logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    _configured = True


__all__ = ["configure_logging", "coerce_level", "LOG_FORMAT", "LOG_DATEFMT", "NOISY_LOGGERS"]
