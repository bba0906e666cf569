"""Sequential job orchestration."""
from collector_core.orchestrator.progress import (
    build_progress,
    estimated_seconds_remaining,
    progress_percentage,
)
from collector_core.orchestrator.registry import TaskRegistry
from collector_core.orchestrator.retry import (
    EXTRACTION_RETRY,
    PERSISTENCE_RETRY,
    REGISTRATION_RETRY,
    RetryPolicy,
    call_with_retry,
)
from collector_core.orchestrator.runner import ItemOutcome, JobRunner, Pipeline, RunnerConfig, call_store
from collector_core.orchestrator.service import CollectionService, DEFAULT_MAX_TOTAL_TARGET
from collector_core.orchestrator.signals import JobSignals
from collector_core.orchestrator.factory import build_pipeline, build_runner

__all__ = [
    "build_progress",
    "estimated_seconds_remaining",
    "progress_percentage",
    "TaskRegistry",
    "EXTRACTION_RETRY",
    "PERSISTENCE_RETRY",
    "REGISTRATION_RETRY",
    "RetryPolicy",
    "call_with_retry",
    "ItemOutcome",
    "JobRunner",
    "Pipeline",
    "RunnerConfig",
    "call_store",
    "CollectionService",
    "DEFAULT_MAX_TOTAL_TARGET",
    "JobSignals",
    "build_pipeline",
    "build_runner",
]
