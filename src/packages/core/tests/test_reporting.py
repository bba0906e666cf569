"""Tests for collection summaries."""
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from collector_core.jobs import JobStats
from collector_core.reporting import StatsWebhook, day_start_iso, format_stats_message

STATS = JobStats(
    since="2026-10-19T00:00:00Z",
    total_jobs=4,
    total_success=12,
    total_failed=3,
    running_jobs=1,
    completed_jobs=2,
    failed_jobs=1,
)


def test_day_start_is_utc_midnight():
    kst = timezone(timedelta(hours=9))
    assert day_start_iso(datetime(2026, 10, 20, 7, 30, tzinfo=kst)) == "2026-10-19T00:00:00Z"


def test_message_lists_totals_and_job_counts():
    message = format_stats_message(STATS, "2026-10-19")
    assert "since 2026-10-19" in message
    assert "Succeeded: 12" in message
    assert "Failed: 3" in message
    assert "- running: 1" in message
    assert "- completed: 2" in message


@pytest.mark.asyncio
async def test_webhook_posts_content():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(204)

    hook = StatsWebhook("http://hooks.local/abc", transport=httpx.MockTransport(handler))
    assert await hook.send(STATS)
    assert "Succeeded: 12" in seen["body"]["content"]


@pytest.mark.asyncio
async def test_webhook_failure_is_reported_not_raised():
    def refuse(request):
        raise httpx.ConnectError("refused")

    hook = StatsWebhook("http://hooks.local/abc", transport=httpx.MockTransport(refuse))
    assert not await hook.send(STATS)

    rejected = StatsWebhook("http://hooks.local/abc", transport=httpx.MockTransport(lambda r: httpx.Response(400)))
    assert not await rejected.send(STATS)
