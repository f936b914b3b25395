"""Background dispatch for fire-and-forget side effects.

Feedback, audit and usage writes run off the critical path.  They are still
tracked here so failures get logged and shutdown can wait for them.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)


class BackgroundDispatcher:
    """Runs coroutines as detached tasks and logs (never raises) their failures."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self.failures = 0

    def dispatch(self, name: str, factory: Callable[[], Awaitable[object]]) -> asyncio.Task:
        """Schedule ``factory()`` on the running loop and return its task.

        The caller must not await the returned task on the request path.
        """

        async def _run() -> None:
            try:
                await factory()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.failures += 1
                logger.exception("background task failed", task=name)

        task = asyncio.get_running_loop().create_task(_run(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for outstanding tasks; cancel whatever is left after *timeout*."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        done, not_done = await asyncio.wait(tasks, timeout=timeout)
        for task in not_done:
            task.cancel()
        if not_done:
            logger.warning("background tasks cancelled at drain", count=len(not_done))
            await asyncio.gather(*not_done, return_exceptions=True)
