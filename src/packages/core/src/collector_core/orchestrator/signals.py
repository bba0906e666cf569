"""In-process wake-ups for job loops.

The control API writes the job row first and then notifies; the loop treats a
wake-up only as a hint to re-read the row. Loops in other processes never see
these events and fall back to polling.
"""
import asyncio


class JobSignals:
    def __init__(self):
        self._events: dict[str, asyncio.Event] = {}
        # loops currently holding each job's event; a restart briefly has two
        self._holders: dict[str, int] = {}

    def open(self, job_id: str) -> None:
        self._events.setdefault(job_id, asyncio.Event())
        self._holders[job_id] = self._holders.get(job_id, 0) + 1

    def close(self, job_id: str) -> None:
        """Release one holder; the event goes away with the last one."""
        remaining = self._holders.get(job_id, 0) - 1
        if remaining > 0:
            self._holders[job_id] = remaining
            return
        self._holders.pop(job_id, None)
        self._events.pop(job_id, None)

    def is_open(self, job_id: str) -> bool:
        return job_id in self._holders

    def notify(self, job_id: str) -> None:
        event = self._events.get(job_id)
        if event is not None:
            event.set()

    async def wait(self, job_id: str, timeout: float) -> bool:
        """Wait up to timeout for a notification. True if notified."""
        event = self._events.setdefault(job_id, asyncio.Event())
        try:
            await asyncio.wait_for(event.wait(), timeout=max(0.0, timeout))
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            event.clear()
