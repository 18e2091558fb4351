"""
Background task tracking.

Fire-and-forget work (topic derivation, memory compaction, persistence writes)
runs as asyncio tasks owned by a BackgroundTasks instance. Failures are logged
on completion and never reach the code that spawned the task.
"""

import asyncio
from typing import Coroutine, Optional, Set

import logfire


class BackgroundTasks:
    """A set of detached asyncio tasks with logged failures and a drain point."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
        """
        Schedule coro on the running loop.

        Args:
            coro: Coroutine to run detached from the caller
            name: Task name used in log messages

        Returns:
            The created task
        """
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logfire.debug(f"Background task {task.get_name()} cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logfire.error(f"Background task {task.get_name()} failed: {exc!r}")

    async def drain(self) -> None:
        """Wait until no background task is pending, including ones spawned meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def __len__(self) -> int:
        return len(self._tasks)
