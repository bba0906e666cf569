"""Job management module."""
from collector_core.jobs.repo import (
    init_db,
    create_job,
    get_job,
    list_jobs,
    transition_job,
    reset_job,
    claim_loop,
    release_loop,
    heartbeat,
    update_job_progress,
    complete_job,
    fail_job,
    list_orphaned_jobs,
    list_running_jobs,
    job_stats,
    create_job_item,
    update_job_item,
    get_job_item,
    list_job_items,
)
from collector_core.jobs.models import (
    Job,
    JobItem,
    JobItemStatus,
    JobMode,
    JobProgress,
    JobStats,
    JobStatus,
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
)

__all__ = [
    "init_db",
    "create_job",
    "get_job",
    "list_jobs",
    "transition_job",
    "reset_job",
    "claim_loop",
    "release_loop",
    "heartbeat",
    "update_job_progress",
    "complete_job",
    "fail_job",
    "list_orphaned_jobs",
    "list_running_jobs",
    "job_stats",
    "create_job_item",
    "update_job_item",
    "get_job_item",
    "list_job_items",
    "Job",
    "JobItem",
    "JobItemStatus",
    "JobMode",
    "JobProgress",
    "JobStats",
    "JobStatus",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
]
