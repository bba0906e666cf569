"""Resolve a job's input specification (keyword or URL) into a fetch target."""
import re
from urllib.parse import quote_plus, urlparse

from collector_core.pipeline.base import SourceTarget
from collector_core.util import InputSpecError

DEFAULT_SEARCH_URL_TEMPLATE = "https://www.amazon.com/s?k={query}"

_URL_RE = re.compile(r"^https?://", re.IGNORECASE)


def _host_allowed(host: str, allowed_hosts: list[str]) -> bool:
    host = host.lower()
    for allowed in allowed_hosts:
        allowed = allowed.lower().lstrip(".")
        if host == allowed or host.endswith("." + allowed):
            return True
    return False


def resolve_input_spec(
    input_spec: str,
    search_url_template: str = DEFAULT_SEARCH_URL_TEMPLATE,
    allowed_hosts: list[str] | None = None,
) -> SourceTarget:
    """Turn user input into a SourceTarget.

    URLs are validated against allowed_hosts (when given); anything else is a
    keyword search rendered into search_url_template.

    Raises:
        InputSpecError: empty input, malformed URL or disallowed host.
    """
    text = (input_spec or "").strip()
    if not text:
        raise InputSpecError("Input specification is empty")

    if _URL_RE.match(text):
        parsed = urlparse(text)
        if not parsed.hostname:
            raise InputSpecError(f"Malformed URL: {text}")
        if allowed_hosts and not _host_allowed(parsed.hostname, allowed_hosts):
            raise InputSpecError(f"Host not allowed: {parsed.hostname}")
        return SourceTarget(url=text, kind="url", original=input_spec)

    if "{query}" not in search_url_template:
        raise InputSpecError("Search URL template has no {query} placeholder")
    url = search_url_template.format(query=quote_plus(text))
    return SourceTarget(url=url, kind="keyword", original=input_spec)
