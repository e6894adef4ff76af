"""Explicit fire-and-forget scheduling of coroutines."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)

_BACKGROUND_TASKS: set[asyncio.Task[Any]] = set()


def fire_and_forget(coro: Coroutine[Any, Any, Any], context: str) -> asyncio.Task[Any]:
    """Schedule ``coro`` without awaiting it; failures are logged under ``context``.

    The running loop keeps only weak references to tasks, so a strong one is held
    here until the task finishes.
    """

    task = asyncio.create_task(coro, name=context)
    _BACKGROUND_TASKS.add(task)
    task.add_done_callback(lambda done: _on_done(done, context))
    return task


def pending_background_tasks() -> int:
    return len(_BACKGROUND_TASKS)


def _on_done(task: asyncio.Task[Any], context: str) -> None:
    _BACKGROUND_TASKS.discard(task)
    if task.cancelled():
        logger.warning("Background task cancelled: %s", context)
        return
    error = task.exception()
    if error is not None:
        logger.error(
            "Background task failed: %s: %s",
            context,
            error,
            exc_info=(type(error), error, error.__traceback__),
        )
