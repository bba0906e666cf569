"""Pipeline collaborators: contracts and default implementations."""
from collector_core.pipeline.base import (
    DuplicateCheck,
    ExtractionService,
    FilterDecision,
    FilterService,
    Item,
    PersistenceService,
    RegistrationService,
    SavedRecord,
    SourceTarget,
)
from collector_core.pipeline.source import resolve_input_spec, DEFAULT_SEARCH_URL_TEMPLATE
from collector_core.pipeline.extraction import HttpExtractionService
from collector_core.pipeline.filtering import BannedKeywordFilter
from collector_core.pipeline.persistence import SqliteRecordStore
from collector_core.pipeline.registration import HttpRegistrationService, RegistrationError

__all__ = [
    "DuplicateCheck",
    "ExtractionService",
    "FilterDecision",
    "FilterService",
    "Item",
    "PersistenceService",
    "RegistrationService",
    "SavedRecord",
    "SourceTarget",
    "resolve_input_spec",
    "DEFAULT_SEARCH_URL_TEMPLATE",
    "HttpExtractionService",
    "BannedKeywordFilter",
    "SqliteRecordStore",
    "HttpRegistrationService",
    "RegistrationError",
]
