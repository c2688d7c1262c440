"""
Detached task supervision.

Fire-and-forget work (webhook emits after a write, gallery auto-sync) runs as
supervised tasks: the caller never sees the outcome, failures are logged and
sent to Sentry.
"""
import asyncio
from typing import Coroutine

import structlog

from playgram.sentry_config import capture_exception

logger = structlog.get_logger()


class TaskSupervisor:
    """Keeps strong references to detached tasks and reports their failures."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine, name: str, **context) -> asyncio.Task:
        """Run coro in the background. Its exceptions never reach the caller."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(t, context))
        return task

    def _on_done(self, task: asyncio.Task, context: dict):
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("background_task_cancelled", task=task.get_name(), **context)
            return

        exc = task.exception()
        if exc is not None:
            logger.error(
                "background_task_failed",
                task=task.get_name(),
                error=str(exc),
                error_type=type(exc).__name__,
                **context,
            )
            capture_exception(exc)

    async def drain(self) -> None:
        """Wait for every in-flight task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight tasks and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("background_tasks_stopped", cancelled=len(tasks))
