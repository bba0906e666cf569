"""HTTP client for the extraction backend."""
import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError

from collector_core.pipeline.base import Item, SourceTarget
from collector_core.util import PermanentItemError, TransientError

logger = structlog.get_logger()

RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}


class HttpExtractionService:
    """Asks an extraction backend for the item at a given offset of a source page.

    The backend answers ``{"item": {...}}`` or ``{"item": null}``. The DOM work
    happens on the other side of this call.
    """

    def __init__(self, base_url: str, timeout: float = 60.0, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def fetch_one(self, target: SourceTarget, offset: int) -> Item | None:
        url = f"{self.base_url}/extract"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(url, json={"url": target.url, "offset": offset})
            except httpx.TimeoutException as e:
                raise TransientError(f"Extraction timeout at offset {offset}") from e
            except httpx.TransportError as e:
                raise TransientError(f"Extraction connection failed: {e}") from e

        if response.status_code in RETRYABLE_STATUS:
            raise TransientError(f"Extraction backend returned {response.status_code}")
        if response.status_code != 200:
            raise PermanentItemError(
                f"Extraction backend returned {response.status_code}: {response.text[:200]}",
                code="extraction_rejected",
            )

        try:
            data = response.json()
        except ValueError as e:
            raise PermanentItemError("Extraction result is not JSON", code="malformed_result") from e
        raw = data.get("item") if isinstance(data, dict) else None
        if not raw:
            return None
        try:
            return Item(**raw)
        except (PydanticValidationError, TypeError) as e:
            logger.warning("extraction_malformed_item", offset=offset, error=str(e))
            raise PermanentItemError(f"Malformed extraction result: {e}", code="malformed_result") from e
