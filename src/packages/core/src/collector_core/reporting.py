"""Periodic collection summaries posted to a chat webhook."""
from datetime import datetime, timezone

import httpx
import structlog

from collector_core.jobs import JobStats

logger = structlog.get_logger()


def day_start_iso(now: datetime | None = None) -> str:
    """Midnight UTC of the current day, in the jobs table's timestamp format."""
    now = now or datetime.now(timezone.utc)
    start = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)
    return start.isoformat() + "Z"


def format_stats_message(stats: JobStats, label: str) -> str:
    return (
        f"**Collection summary since {label}**\n\n"
        f"Succeeded: {stats.total_success}\n"
        f"Failed: {stats.total_failed}\n\n"
        f"Jobs:\n"
        f"- running: {stats.running_jobs}\n"
        f"- paused: {stats.paused_jobs}\n"
        f"- completed: {stats.completed_jobs}\n"
        f"- failed: {stats.failed_jobs}"
    )


class StatsWebhook:
    """POSTs ``{"content": message}``, the shape Discord and Slack-compatible hooks accept."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def send(self, stats: JobStats) -> bool:
        """Post a summary. Delivery failures are logged, never raised."""
        message = format_stats_message(stats, (stats.since or "the beginning")[:10])
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(self.url, json={"content": message})
            except httpx.HTTPError as e:
                logger.warning("stats_webhook_failed", error=str(e))
                return False
        if response.status_code >= 400:
            logger.warning("stats_webhook_rejected", status=response.status_code)
            return False
        logger.info("stats_webhook_sent", since=stats.since)
        return True
