"""Supervised background tasks for work that outlives a request."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Dict, List, Optional


logger = logging.getLogger(__name__)


class BackgroundTaskRegistry:
    """Holds strong references to named tasks and logs their failures in one place."""

    def __init__(self) -> None:
        self._tasks: Dict[asyncio.Task, str] = {}

    def spawn(self, name: str, coro: Awaitable) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks[task] = name
        task.add_done_callback(self._on_done)
        logger.debug(f"Background task started: {name}")
        return task

    def active(self) -> List[str]:
        return sorted(name for task, name in self._tasks.items() if not task.done())

    def __len__(self) -> int:
        return len(self._tasks)

    async def wait_all(self, timeout: Optional[float] = None) -> None:
        """Wait for every task spawned so far; failures are already logged."""
        tasks = list(self._tasks)
        if not tasks:
            return
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} background task(s) still running after {timeout}s")

    async def cancel_all(self) -> None:
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} background task(s)")

    def _on_done(self, task: asyncio.Task) -> None:
        name = self._tasks.pop(task, task.get_name())
        if task.cancelled():
            logger.debug(f"Background task cancelled: {name}")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background task {name} failed: {exc}", exc_info=exc)
