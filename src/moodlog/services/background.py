"""Registry of detached pipeline tasks.

The HTTP response returns as soon as streaming starts; the pipeline keeps
running in a task the registry holds a reference to, so it is neither garbage
collected mid-flight nor lost on shutdown.
"""

import asyncio
from typing import Coroutine, Dict, Optional, Set

from moodlog.utils.logging import get_logger


logger = get_logger(__name__)


class TaskRegistry:
    """Tracks running background tasks and drains them on shutdown."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()
        self.completed_count = 0
        self.failed_count = 0

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug("background_task_spawned", task=task.get_name(), active=len(self._tasks))
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)

        if task.cancelled():
            logger.warning("background_task_cancelled", task=task.get_name())
            return

        error = task.exception()
        if error is not None:
            self.failed_count += 1
            logger.error(
                "background_task_failed",
                task=task.get_name(),
                error=str(error),
                error_type=type(error).__name__,
            )
            return

        self.completed_count += 1

    async def drain(self, timeout: float) -> Dict[str, int]:
        """
        Wait for running tasks, cancelling whatever is still running after
        ``timeout`` seconds.

        Returns:
            Counts of tasks that finished and that had to be cancelled
        """
        pending = set(self._tasks)
        if not pending:
            return {"finished": 0, "cancelled": 0}

        logger.info("background_tasks_draining", count=len(pending), timeout=timeout)
        done, still_running = await asyncio.wait(pending, timeout=timeout)

        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning("background_tasks_cancelled", count=len(still_running))

        return {"finished": len(done), "cancelled": len(still_running)}
