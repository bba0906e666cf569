"""Job models."""
from enum import Enum

from pydantic import BaseModel


class JobStatus(str, Enum):
    """Job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobItemStatus(str, Enum):
    """Per-offset item states."""

    PENDING = "pending"
    EXTRACTING = "extracting"
    SAVED = "saved"
    REGISTERED = "registered"
    FAILED = "failed"


class JobMode(str, Enum):
    """collect_only stops after persistence; collect_sync also registers."""

    COLLECT_ONLY = "collect_only"
    COLLECT_SYNC = "collect_sync"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({JobStatus.RUNNING, JobStatus.PAUSED})


class Job(BaseModel):
    """A job row."""

    id: str
    owner_id: str
    input_spec: str
    mode: JobMode = JobMode.COLLECT_SYNC
    status: JobStatus
    total_target: int
    current_count: int = 0
    success_count: int = 0
    failed_count: int = 0
    started_at: str | None = None
    completed_at: str | None = None
    error_message: str | None = None
    loop_token: str | None = None
    heartbeat_at: float | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class JobItem(BaseModel):
    """A job item row."""

    id: str
    job_id: str
    position: int
    external_id: str | None = None
    status: JobItemStatus
    linked_record_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    failed_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class JobProgress(BaseModel):
    """Progress snapshot returned to callers."""

    job_id: str
    status: JobStatus
    current_count: int
    total_target: int
    success_count: int
    failed_count: int
    progress_percentage: int
    started_at: str | None = None
    completed_at: str | None = None
    error_message: str | None = None
    estimated_seconds_remaining: int


class JobStats(BaseModel):
    """Collection totals over jobs created since a point in time."""

    since: str | None = None
    total_jobs: int = 0
    total_success: int = 0
    total_failed: int = 0
    pending_jobs: int = 0
    running_jobs: int = 0
    paused_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    cancelled_jobs: int = 0
