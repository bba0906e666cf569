"""Downstream catalog registration over HTTP."""
import httpx

from collector_core.pipeline.base import SavedRecord
from collector_core.util import TransientError


class RegistrationError(Exception):
    """The catalog refused the record."""


class HttpRegistrationService:
    """POSTs saved records to the catalog as JSON."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def register(self, record: SavedRecord) -> None:
        body = {
            "record_id": record.id,
            "owner_id": record.owner_id,
            "external_id": record.item.external_id,
            "title": record.item.title,
            "source_url": record.item.source_url,
            "payload": record.item.payload,
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(f"{self.base_url}/records", json=body, headers=self._headers())
            except httpx.TransportError as e:
                raise TransientError(f"Catalog unreachable: {e}") from e
        if response.status_code >= 400:
            raise RegistrationError(f"Catalog returned {response.status_code}: {response.text[:200]}")
