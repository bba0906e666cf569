"""Worker settings."""
import json
import os


def get_redis_url() -> str:
    """Get Redis URL from environment."""
    return os.environ.get("REDIS_URL", "redis://redis:6379/0")


def _float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


def _list(name: str) -> list[str]:
    """JSON array or comma-separated list."""
    raw = os.environ.get(name, "").strip()
    if not raw:
        return []
    if raw.startswith("["):
        return [str(v) for v in json.loads(raw)]
    return [v.strip() for v in raw.split(",") if v.strip()]


def get_pipeline_settings() -> dict:
    """Collaborator endpoints, same names as the API settings."""
    return {
        "extraction_url": os.environ.get("EXTRACTION_URL", "http://extractor:8080"),
        "extraction_timeout_seconds": _float("EXTRACTION_TIMEOUT_SECONDS", 60.0),
        "catalog_url": os.environ.get("CATALOG_URL") or None,
        "catalog_token": os.environ.get("CATALOG_TOKEN") or None,
        "banned_keywords": _list("BANNED_KEYWORDS"),
    }


def get_runner_settings() -> dict:
    """Loop timing and input resolution, same names as the API settings."""
    return {
        "pacing_interval_seconds": _float("PACING_INTERVAL_SECONDS", 60.0),
        "poll_interval_seconds": _float("POLL_INTERVAL_SECONDS", 1.0),
        "heartbeat_interval_seconds": _float("HEARTBEAT_INTERVAL_SECONDS", 15.0),
        "lease_timeout_seconds": _float("LEASE_TIMEOUT_SECONDS", 45.0),
        "search_url_template": os.environ.get("SEARCH_URL_TEMPLATE", "https://www.amazon.com/s?k={query}"),
        "allowed_hosts": _list("ALLOWED_SOURCE_HOSTS"),
    }
