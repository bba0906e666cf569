"""Banned-content filter."""
import structlog

from collector_core.pipeline.base import FilterDecision, Item

logger = structlog.get_logger()


class BannedKeywordFilter:
    """Rejects items whose title contains a banned keyword (case-insensitive substring)."""

    def __init__(self, keywords: list[str] | None = None):
        self.keywords = sorted({k.strip().lower() for k in keywords or [] if k and k.strip()})

    def match(self, title: str) -> str | None:
        """Return the first banned keyword found in title, if any."""
        lowered = (title or "").lower()
        for keyword in self.keywords:
            if keyword in lowered:
                return keyword
        return None

    async def check(self, item: Item) -> FilterDecision:
        keyword = self.match(item.title)
        if keyword is None:
            return FilterDecision.accept()
        logger.info("item_filtered", external_id=item.external_id, keyword=keyword)
        return FilterDecision.reject(f"banned keyword: {keyword}")
