"""Registry of in-process job loop tasks, keyed by job id."""
import asyncio
from functools import partial
from typing import Coroutine

import structlog

logger = structlog.get_logger()


class TaskRegistry:
    def __init__(self):
        self._tasks: dict[str, asyncio.Task] = {}
        self._all: set[asyncio.Task] = set()

    def is_live(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    def live_job_ids(self) -> list[str]:
        return [job_id for job_id, task in self._tasks.items() if not task.done()]

    def launch(self, job_id: str, coro: Coroutine, replace: bool = False) -> bool:
        """Schedule coro as the loop for job_id.

        Refuses when a live loop is registered, unless replace is set; a
        replaced loop keeps running until it notices it lost ownership.
        """
        if self.is_live(job_id) and not replace:
            coro.close()
            logger.warning("job_loop_already_registered", job_id=job_id)
            return False
        task = asyncio.create_task(coro, name=f"job-loop:{job_id}")
        self._tasks[job_id] = task
        self._all.add(task)
        task.add_done_callback(partial(self._on_done, job_id))
        return True

    def _on_done(self, job_id: str, task: asyncio.Task) -> None:
        self._all.discard(task)
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]
        if task.cancelled():
            logger.info("job_loop_task_cancelled", job_id=job_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("job_loop_died", job_id=job_id, error=str(exc))

    async def join(self, job_id: str, timeout: float | None = None) -> None:
        """Wait for the registered loop of job_id to finish."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)

    async def shutdown(self) -> None:
        """Cancel every loop task. Jobs stay running in the store and are recovered later."""
        tasks = list(self._all)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
