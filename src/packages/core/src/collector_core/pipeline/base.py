"""Collaborator contracts consumed by the orchestrator."""
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field


class SourceTarget(BaseModel):
    """A job's input specification resolved into something fetchable."""

    url: str
    kind: str  # "keyword" or "url"
    original: str


class Item(BaseModel):
    """One collected unit as returned by extraction."""

    external_id: str = Field(..., min_length=1)
    title: str = ""
    source_url: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class FilterDecision(BaseModel):
    """Outcome of the content filter."""

    passed: bool
    reason: str | None = None

    @classmethod
    def accept(cls) -> "FilterDecision":
        return cls(passed=True)

    @classmethod
    def reject(cls, reason: str) -> "FilterDecision":
        return cls(passed=False, reason=reason)


class SavedRecord(BaseModel):
    """A persisted item, handed to registration."""

    id: str
    owner_id: str
    item: Item


@runtime_checkable
class ExtractionService(Protocol):
    async def fetch_one(self, target: SourceTarget, offset: int) -> Item | None:
        """Return the item at offset, or None. May raise transient errors."""
        ...


@runtime_checkable
class DuplicateCheck(Protocol):
    async def exists(self, owner_id: str, external_id: str) -> bool: ...


@runtime_checkable
class FilterService(Protocol):
    async def check(self, item: Item) -> FilterDecision: ...


@runtime_checkable
class PersistenceService(Protocol):
    async def save(self, item: Item, owner_id: str) -> str:
        """Upsert the item and return the record id. Raises on failure."""
        ...


@runtime_checkable
class RegistrationService(Protocol):
    async def register(self, record: SavedRecord) -> None:
        """Register with the downstream catalog. Raises on failure."""
        ...
