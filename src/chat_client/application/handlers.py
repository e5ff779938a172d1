"""Callback registry with set semantics."""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

H = TypeVar("H", bound=Callable[..., Any])


class HandlerSet(Generic[H]):
    """Insertion-ordered set of callbacks.

    Registering the same callable twice keeps a single entry, so it is
    delivered once. A handler that raises is logged and does not stop
    delivery to the others. Coroutine results are scheduled as tasks.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._handlers: dict[H, None] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    def add(self, handler: H) -> None:
        self._handlers[handler] = None

    def discard(self, handler: H) -> None:
        self._handlers.pop(handler, None)

    def clear(self) -> None:
        self._handlers.clear()

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, handler: object) -> bool:
        return handler in self._handlers

    def emit(self, *args: Any) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(*args)
            except Exception:
                logger.exception("Error in %s handler %r", self._name, handler)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Error in async %s handler", self._name, exc_info=task.exception(),
            )
