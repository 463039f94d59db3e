"""Asyncio helpers for fire-and-forget work that must not lose exceptions."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Optional

from .logging_utils import LoggerLike, ensure_structured_logger


def create_logged_task(
    coro: Coroutine[Any, Any, Any],
    *,
    logger: LoggerLike = None,
    context: Optional[str] = None,
    pending: Optional[set[asyncio.Task[Any]]] = None,
) -> asyncio.Task[Any]:
    """Schedule ``coro`` and log its exception once it finishes.

    When ``pending`` is given the task is kept in it until done, which also
    keeps a strong reference so the task is not garbage collected early.
    """
    log = ensure_structured_logger(logger, fallback_name="asyncio")
    task = asyncio.get_running_loop().create_task(coro, name=context)
    label = context or task.get_name()

    def _done(done_task: asyncio.Task[Any]) -> None:
        if done_task.cancelled():
            return
        exc = done_task.exception()
        if exc is not None:
            log.error("Unhandled exception in %s", label, exc_info=exc)

    task.add_done_callback(_done)
    if pending is not None:
        pending.add(task)
        task.add_done_callback(pending.discard)
    return task


__all__ = ["create_logged_task"]
