"""Stub collaborators for endpoint tests."""
import time

from collector_core.orchestrator import CollectionService, JobRunner, Pipeline, RunnerConfig
from collector_core.pipeline import BannedKeywordFilter, Item


class StubExtraction:
    """Offset 1 is always empty; every other offset yields an item."""

    async def fetch_one(self, target, offset):
        if offset == 1:
            return None
        return Item(external_id=f"B{offset:04d}", title=f"Item {offset}")


class StubRecords:
    def __init__(self):
        self.saved = {}

    async def exists(self, owner_id, external_id):
        return (owner_id, external_id) in self.saved

    async def save(self, item, owner_id):
        self.saved[(owner_id, item.external_id)] = item
        return f"rec-{item.external_id}"


async def _no_sleep(delay):
    return None


def build_test_service(pacing_interval_seconds: float = 0.0) -> CollectionService:
    records = StubRecords()
    pipeline = Pipeline(
        extraction=StubExtraction(),
        duplicates=records,
        filter=BannedKeywordFilter(["replica"]),
        persistence=records,
    )
    config = RunnerConfig(pacing_interval_seconds=pacing_interval_seconds, poll_interval_seconds=0.01)
    return CollectionService(JobRunner(pipeline, config, sleep=_no_sleep), max_total_target=50)


def wait_for_idle(service: CollectionService, timeout: float = 5.0) -> None:
    """Block until the service has no live job loops."""
    deadline = time.monotonic() + timeout
    while service.registry.live_job_ids():
        assert time.monotonic() < deadline, "job loops still running"
        time.sleep(0.02)
