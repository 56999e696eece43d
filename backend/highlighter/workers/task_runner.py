"""Background task runner using asyncio."""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List

logger = logging.getLogger(__name__)


class TaskRunner:
    """Runs long operations in the background, at most one per key."""

    def __init__(self):
        self._running_tasks: Dict[str, asyncio.Task] = {}

    def start(self, key: str, factory: Callable[[], Awaitable]) -> bool:
        """
        Start a background task.

        Args:
            key: Identifies the operation, e.g. "detect:<stream id>"
            factory: Creates the coroutine to run

        Returns:
            True if the task started, False if one with the key is running
        """
        if self.is_running(key):
            logger.warning(f"Task {key} is already running")
            return False

        task = asyncio.create_task(self._run_task(key, factory))
        self._running_tasks[key] = task
        return True

    async def _run_task(self, key: str, factory: Callable[[], Awaitable]):
        """Run a task with error handling."""
        try:
            await factory()
            logger.info(f"Task {key} completed")
        except asyncio.CancelledError:
            logger.info(f"Task {key} was cancelled")
            raise
        except Exception:
            logger.exception(f"Task {key} failed")
        finally:
            self._running_tasks.pop(key, None)

    def cancel(self, key: str) -> bool:
        """Cancel a running task."""
        task = self._running_tasks.get(key)
        if task:
            task.cancel()
            return True
        return False

    def is_running(self, key: str) -> bool:
        """Check if a task is currently running."""
        task = self._running_tasks.get(key)
        return task is not None and not task.done()

    def running(self) -> List[str]:
        return [key for key in self._running_tasks if self.is_running(key)]

    async def shutdown(self):
        """Cancel all running tasks."""
        tasks = list(self._running_tasks.values())
        for task in tasks:
            task.cancel()

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._running_tasks.clear()
