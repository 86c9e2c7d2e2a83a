"""Fire-and-forget background jobs."""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundJobs:
    """Runs job coroutines as tasks the caller never awaits.

    Failures are logged here; nothing propagates back to whoever enqueued
    the job.
    """

    def __init__(self, name: str):
        self._name = name
        self._tasks: set[asyncio.Task] = set()

    def _spawn(self, job: Coroutine[Any, Any, None], label: str) -> asyncio.Task:
        task = asyncio.create_task(self._run(job, label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, job: Coroutine[Any, Any, None], label: str) -> None:
        try:
            await job
        except asyncio.CancelledError:
            logger.debug(f"[{self._name}] job cancelled: {label}")
            raise
        except Exception:
            logger.exception(f"[{self._name}] job failed: {label}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every job queued so far."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel outstanding jobs."""
        for task in list(self._tasks):
            task.cancel()
        await self.drain()
