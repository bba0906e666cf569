"""Wiring of the default collaborators into a runner."""
from collector_core.orchestrator.runner import JobRunner, Pipeline, RunnerConfig
from collector_core.orchestrator.signals import JobSignals
from collector_core.pipeline import (
    BannedKeywordFilter,
    HttpExtractionService,
    HttpRegistrationService,
    SqliteRecordStore,
)


def build_pipeline(
    extraction_url: str,
    extraction_timeout_seconds: float = 60.0,
    catalog_url: str | None = None,
    catalog_token: str | None = None,
    banned_keywords: list[str] | None = None,
) -> Pipeline:
    """HTTP extraction, SQLite records, keyword filter and, if configured, catalog registration."""
    records = SqliteRecordStore()
    registration = None
    if catalog_url:
        registration = HttpRegistrationService(catalog_url, token=catalog_token)
    return Pipeline(
        extraction=HttpExtractionService(extraction_url, timeout=extraction_timeout_seconds),
        duplicates=records,
        filter=BannedKeywordFilter(banned_keywords),
        persistence=records,
        registration=registration,
    )


def build_runner(pipeline: Pipeline, signals: JobSignals | None = None, **config) -> JobRunner:
    """config takes RunnerConfig fields; allowed_hosts may be any iterable."""
    if "allowed_hosts" in config:
        config["allowed_hosts"] = tuple(config["allowed_hosts"] or ())
    return JobRunner(pipeline, RunnerConfig(**config), signals=signals)
