"""Interval jobs run inside the background task registry."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable


logger = logging.getLogger(__name__)


async def run_periodically(
    name: str,
    job: Callable[[], Awaitable[Any]],
    interval: float,
    *,
    initial_delay: float = 0.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """Run ``job`` after ``initial_delay`` and then every ``interval`` seconds until cancelled."""
    if initial_delay > 0:
        await sleep(initial_delay)
    while True:
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(f"Scheduled {name} failed: {exc}")
        await sleep(interval)
