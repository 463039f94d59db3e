"""Shared infrastructure: logging and asyncio helpers."""

from .asyncio_utils import create_logged_task
from .logging_config import configure_logging
from .logging_utils import StructuredLogger, ensure_structured_logger, get_module_logger

__all__ = [
    "StructuredLogger",
    "configure_logging",
    "create_logged_task",
    "ensure_structured_logger",
    "get_module_logger",
]
