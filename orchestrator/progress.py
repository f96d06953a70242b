"""Throttled, best-effort progress persistence for long-running phases."""

from __future__ import annotations

import asyncio
import logging
from typing import Set

from storage import BaseStateStore


logger = logging.getLogger(__name__)


class ProgressReporter:
    """
    Synchronous progress callback that persists ``metadata.progress``.

    A value is written only when it moved at least ``step`` points past the
    last reported one, or when it reaches 100. Writes run as background tasks
    serialized by a lock, never lower the stored value and log their own
    failures. Call ``drain()`` before the run's terminal write.
    """

    def __init__(self, store: BaseStateStore, run_id: str, *, step: int = 5) -> None:
        self._store = store
        self._run_id = run_id
        self._step = max(1, int(step))
        self._reported = 0
        self._written = 0
        self._lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()

    @property
    def written(self) -> int:
        return self._written

    def __call__(self, progress: float) -> None:
        value = int(max(0.0, min(100.0, float(progress))))
        if value <= self._reported:
            return
        if value < 100 and value - self._reported < self._step:
            return
        self._reported = value

        task = asyncio.get_running_loop().create_task(self._write(value))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _write(self, value: int) -> None:
        async with self._lock:
            if value <= self._written:
                return
            try:
                await self._store.merge_run_metadata(self._run_id, {"progress": value})
            except Exception as exc:
                logger.warning(f"Progress update failed for run {self._run_id}: {exc}")
                return
            self._written = value
