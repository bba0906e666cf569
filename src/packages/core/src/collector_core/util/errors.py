"""Error taxonomy shared by the orchestrator, the pipeline and the API."""
import asyncio
from dataclasses import dataclass

import httpx


class CollectorError(Exception):
    """Base class for collector errors."""


class ValidationError(CollectorError):
    """Invalid input supplied by a caller."""


class TransientError(CollectorError):
    """Timeout, connection failure or upstream throttling. Safe to retry."""


class PermanentItemError(CollectorError):
    """The current item can never succeed (malformed result, duplicate, ...)."""

    def __init__(self, message: str, code: str = "permanent_error"):
        super().__init__(message)
        self.code = code


class FatalJobError(CollectorError):
    """The whole job cannot continue."""


class InputSpecError(FatalJobError):
    """The job's input specification cannot be resolved into a fetch target."""


class StoreError(FatalJobError):
    """The job store could not be read or written."""


@dataclass(frozen=True)
class ErrorInfo:
    """Classified error, stored on failed job items."""

    code: str
    reason: str
    transient: bool


_MESSAGE_RULES: list[tuple[tuple[str, ...], str, str, bool]] = [
    (("timeout", "timed out"), "timeout", "Upstream took too long to respond", True),
    (
        ("network", "connection", "econnrefused", "enotfound"),
        "network_error",
        "Could not reach the upstream source",
        True,
    ),
    (
        ("rate limit", "too many requests", "429"),
        "rate_limited",
        "Upstream is throttling requests",
        True,
    ),
    (
        ("captcha", "bot", "blocked", "access denied"),
        "bot_detected",
        "Upstream flagged the request as automated",
        True,
    ),
    (
        ("duplicate", "already exists"),
        "duplicate",
        "Item already exists in the catalog",
        False,
    ),
]


def classify_error(exc: BaseException) -> ErrorInfo:
    """Map any exception to an ErrorInfo.

    Typed errors win; otherwise the message is matched against known
    upstream failure signatures.
    """
    if isinstance(exc, PermanentItemError):
        return ErrorInfo(exc.code, str(exc) or exc.code, False)
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return ErrorInfo("timeout", "Upstream took too long to respond", True)
    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return ErrorInfo("network_error", "Could not reach the upstream source", True)

    message = str(exc).lower()
    for needles, code, reason, transient in _MESSAGE_RULES:
        if any(n in message for n in needles):
            return ErrorInfo(code, reason, transient or isinstance(exc, TransientError))
    if isinstance(exc, TransientError):
        return ErrorInfo("transient_error", str(exc) or "Transient upstream failure", True)
    return ErrorInfo("unknown_error", str(exc)[:500] or type(exc).__name__, False)


def is_transient(exc: BaseException) -> bool:
    """Whether a stage may retry after this exception."""
    return classify_error(exc).transient
