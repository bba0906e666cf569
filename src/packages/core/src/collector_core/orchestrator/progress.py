"""Progress and ETA derived from a job row."""
import math

from collector_core.jobs.models import Job, JobProgress, JobStatus


def progress_percentage(current_count: int, total_target: int) -> int:
    """round(current / total * 100), halves rounded up."""
    if total_target <= 0:
        return 0
    return int(math.floor(current_count * 100 / total_target + 0.5))


def estimated_seconds_remaining(job: Job, pacing_interval_seconds: float) -> int:
    if job.status != JobStatus.RUNNING:
        return 0
    remaining = max(0, job.total_target - job.current_count)
    return int(math.ceil(remaining * pacing_interval_seconds))


def build_progress(job: Job, pacing_interval_seconds: float) -> JobProgress:
    return JobProgress(
        job_id=job.id,
        status=job.status,
        current_count=job.current_count,
        total_target=job.total_target,
        success_count=job.success_count,
        failed_count=job.failed_count,
        progress_percentage=progress_percentage(job.current_count, job.total_target),
        started_at=job.started_at,
        completed_at=job.completed_at,
        error_message=job.error_message,
        estimated_seconds_remaining=estimated_seconds_remaining(job, pacing_interval_seconds),
    )
