"""Collected record storage."""
from collector_core.records.repo import record_exists, upsert_record, get_record

__all__ = ["record_exists", "upsert_record", "get_record"]
