"""SQLite-backed duplicate check and persistence."""
import asyncio

from collector_core.pipeline.base import Item
from collector_core.records import record_exists, upsert_record


class SqliteRecordStore:
    """Implements both DuplicateCheck and PersistenceService on the records table."""

    async def exists(self, owner_id: str, external_id: str) -> bool:
        return await asyncio.to_thread(record_exists, owner_id, external_id)

    async def save(self, item: Item, owner_id: str) -> str:
        return await asyncio.to_thread(
            upsert_record,
            owner_id,
            item.external_id,
            item.title,
            item.source_url,
            item.payload,
        )
