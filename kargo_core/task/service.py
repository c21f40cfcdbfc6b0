"""Task tracking service for controllers.

Controllers react to store events from synchronous listener callbacks, so any
reconciliation work is scheduled as a tracked asyncio task. The service allows
callers to wait until all scheduled reconciliations have finished.
"""

import asyncio
from functools import partial
import logging
from typing import Any, Coroutine

_LOGGER = logging.getLogger(__name__)

__all__ = ["TaskService"]


class TaskService:
    """Tracks reconciliation tasks and waits for them to complete."""

    def __init__(self) -> None:
        """Initialize the task service."""
        self._active_tasks: set[asyncio.Task[Any]] = set()

    def create_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a new task."""
        task = asyncio.create_task(coro, name=name)
        self._active_tasks.add(task)
        task.add_done_callback(partial(self._task_done, self._active_tasks))
        return task

    def _task_done(
        self, task_set: set[asyncio.Task[Any]], task: asyncio.Task[Any]
    ) -> None:
        """Log the outcome of a finished task and stop tracking it."""
        try:
            task.result()
        except asyncio.CancelledError:
            _LOGGER.debug("Task %s was cancelled", task.get_name())
        except Exception as e:
            _LOGGER.error("Task %s failed: %s", task.get_name(), e)
        finally:
            task_set.discard(task)

    async def block_till_done(self) -> None:
        """Wait until no tracked tasks remain.

        Tasks scheduled by the tasks being waited on are waited for as well.
        """
        while active_tasks := list(self._active_tasks):
            _LOGGER.debug("Waiting for %d tasks to complete", len(active_tasks))
            await asyncio.gather(*active_tasks, return_exceptions=True)
        await asyncio.sleep(0)

    async def cancel_all(self) -> None:
        """Cancel all tracked tasks and wait for them to finish."""
        tasks = list(self._active_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def get_num_active_tasks(self) -> int:
        """Get the number of active tasks."""
        return len(self._active_tasks)
