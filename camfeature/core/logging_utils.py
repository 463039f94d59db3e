"""Component-tagged logging helpers shared across camfeature."""

from __future__ import annotations

import logging
from typing import Optional, Union

LOGGER_NAMESPACE = "camfeature"
DEFAULT_COMPONENT = "core"


def _qualify(name: Optional[str]) -> str:
    if not name:
        return LOGGER_NAMESPACE
    if name == LOGGER_NAMESPACE or name.startswith(f"{LOGGER_NAMESPACE}."):
        return name
    return f"{LOGGER_NAMESPACE}.{name}"


def _component_for(name: str) -> str:
    if name.startswith(f"{LOGGER_NAMESPACE}."):
        return name[len(LOGGER_NAMESPACE) + 1:] or DEFAULT_COMPONENT
    if name == LOGGER_NAMESPACE:
        return DEFAULT_COMPONENT
    return name or DEFAULT_COMPONENT


class StructuredLogger:
    """Thin wrapper that prefixes every record with ``[component]``.

    Anything that is not part of the logging call surface is forwarded to
    the wrapped :class:`logging.Logger`, so handlers and levels behave as
    usual.
    """

    __slots__ = ("_logger", "_component")

    def __init__(self, logger: logging.Logger, component: Optional[str] = None) -> None:
        self._logger = logger
        self._component = component or _component_for(logger.name)

    def __getattr__(self, item):
        return getattr(self._logger, item)

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"StructuredLogger({self._logger.name!r}, component={self._component!r})"

    @property
    def name(self) -> str:
        return self._logger.name

    @property
    def component(self) -> str:
        return self._component

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _format(self, message: object, args: tuple) -> str:
        text = str(message)
        if args:
            try:
                text = text % args
            except (TypeError, ValueError):
                text = f"{text} | args={' '.join(str(arg) for arg in args)}"
        prefix = f"[{self._component}]"
        if not text.startswith(prefix):
            text = f"{prefix} {text}"
        return text

    def log(self, level: int, message: object, *args, **kwargs) -> None:
        if self._logger.isEnabledFor(level):
            self._logger.log(level, self._format(message, args), **kwargs)

    def debug(self, message: object, *args, **kwargs) -> None:
        self.log(logging.DEBUG, message, *args, **kwargs)

    def info(self, message: object, *args, **kwargs) -> None:
        self.log(logging.INFO, message, *args, **kwargs)

    def warning(self, message: object, *args, **kwargs) -> None:
        self.log(logging.WARNING, message, *args, **kwargs)

    def error(self, message: object, *args, **kwargs) -> None:
        self.log(logging.ERROR, message, *args, **kwargs)

    def exception(self, message: object, *args, **kwargs) -> None:
        kwargs.setdefault("exc_info", True)
        self.log(logging.ERROR, message, *args, **kwargs)

    def critical(self, message: object, *args, **kwargs) -> None:
        self.log(logging.CRITICAL, message, *args, **kwargs)

    def getChild(self, suffix: str) -> "StructuredLogger":
        return StructuredLogger(self._logger.getChild(suffix), component=f"{self._component}.{suffix}")


LoggerLike = Union[StructuredLogger, logging.Logger, logging.LoggerAdapter, None]


def get_module_logger(name: Optional[str] = None) -> StructuredLogger:
    """Return a structured logger inside the ``camfeature`` namespace."""
    return StructuredLogger(logging.getLogger(_qualify(name)))


def ensure_structured_logger(
    logger: LoggerLike,
    *,
    component: Optional[str] = None,
    fallback_name: Optional[str] = None,
) -> StructuredLogger:
    """Wrap an injected logger, or create a module logger when none is given."""
    if isinstance(logger, StructuredLogger):
        return logger
    if isinstance(logger, logging.LoggerAdapter):
        return StructuredLogger(logger.logger, component=component)
    if isinstance(logger, logging.Logger):
        return StructuredLogger(logger, component=component)
    return get_module_logger(fallback_name)


__all__ = [
    "LoggerLike",
    "StructuredLogger",
    "ensure_structured_logger",
    "get_module_logger",
]
