"""In-memory collaborators and helpers for orchestrator tests."""
import asyncio
import time

from collector_core.orchestrator import JobRunner, Pipeline, RunnerConfig
from collector_core.pipeline import BannedKeywordFilter, FilterDecision, Item


def make_item(offset: int, **overrides) -> Item:
    fields = {"external_id": f"item-{offset}", "title": f"Item {offset}", "payload": {"offset": offset}}
    fields.update(overrides)
    return Item(**fields)


class FakeExtraction:
    """script maps offset -> list of per-attempt outcomes (Item, None or an exception).

    The last outcome repeats. Unscripted offsets yield make_item(offset).
    """

    def __init__(self, script: dict | None = None):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.calls: list[int] = []

    async def fetch_one(self, target, offset):
        self.calls.append(offset)
        outcomes = self.script.get(offset)
        if not outcomes:
            return make_item(offset)
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeDuplicates:
    def __init__(self, existing=()):
        self.existing = set(existing)

    async def exists(self, owner_id, external_id):
        return external_id in self.existing


class FakePersistence:
    def __init__(self, failures: int = 0):
        self.failures = failures
        self.attempts = 0
        self.saved: dict[str, Item] = {}

    async def save(self, item, owner_id):
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("disk full")
        self.saved[item.external_id] = item
        return f"rec-{item.external_id}"


class FakeRegistration:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.attempts = 0
        self.registered: list[str] = []

    async def register(self, record):
        self.attempts += 1
        if self.fail:
            raise RuntimeError("catalog returned 500")
        self.registered.append(record.id)


class RejectAll:
    async def check(self, item):
        return FilterDecision.reject("nope")


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_pipeline(
    extraction=None,
    duplicates=None,
    persistence=None,
    registration=None,
    banned_keywords=None,
) -> Pipeline:
    return Pipeline(
        extraction=extraction or FakeExtraction(),
        duplicates=duplicates or FakeDuplicates(),
        filter=BannedKeywordFilter(banned_keywords or []),
        persistence=persistence or FakePersistence(),
        registration=registration,
    )


def make_runner(pipeline: Pipeline | None = None, sleep=None, **config) -> JobRunner:
    config.setdefault("pacing_interval_seconds", 0.0)
    config.setdefault("poll_interval_seconds", 0.01)
    return JobRunner(pipeline or make_pipeline(), RunnerConfig(**config), sleep=sleep or RecordingSleep())


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01):
    """Poll predicate (sync or async) until it returns truthy."""
    deadline = time.monotonic() + timeout
    while True:
        result = predicate()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return result
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)
