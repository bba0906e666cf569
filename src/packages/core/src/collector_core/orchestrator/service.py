"""Starting, observing and controlling collection jobs."""
import asyncio
from typing import AsyncIterator, Callable

import structlog

from collector_core import jobs
from collector_core.jobs import Job, JobItem, JobItemStatus, JobMode, JobProgress, JobStats, JobStatus
from collector_core.orchestrator.progress import build_progress
from collector_core.orchestrator.registry import TaskRegistry
from collector_core.orchestrator.runner import JobRunner, call_store
from collector_core.util import ValidationError, epoch_now, utc_now_iso

logger = structlog.get_logger()

DEFAULT_MAX_TOTAL_TARGET = 1000


class CollectionService:
    """Front door for jobs.

    Loops run as tasks in ``registry`` unless ``enqueue`` is given, in which
    case launching hands the job id to it (a queue) and falls back to an
    in-process task if that raises.
    """

    def __init__(
        self,
        runner: JobRunner,
        registry: TaskRegistry | None = None,
        enqueue: Callable[..., None] | None = None,
        max_total_target: int = DEFAULT_MAX_TOTAL_TARGET,
    ):
        self.runner = runner
        self.registry = registry or TaskRegistry()
        self.enqueue = enqueue
        self.max_total_target = max_total_target

    @property
    def signals(self):
        return self.runner.signals

    @property
    def lease_timeout_seconds(self) -> float:
        return self.runner.config.lease_timeout_seconds

    def launch(self, job_id: str, replace: bool = False, **options) -> bool:
        """Start a loop for job_id. options go to ``JobRunner.run``."""
        if self.enqueue is not None:
            try:
                self.enqueue(job_id, **options)
                return True
            except Exception as e:
                logger.warning("enqueue_failed_running_in_process", job_id=job_id, error=str(e))
        return self.registry.launch(job_id, self.runner.run(job_id, **options), replace=replace)

    def heartbeat_is_fresh(self, job: Job) -> bool:
        """A loop somewhere holds the job and heartbeated within the lease."""
        if job.loop_token is None or job.heartbeat_at is None:
            return False
        return job.heartbeat_at >= epoch_now() - self.lease_timeout_seconds

    def validate_start(self, owner_id: str, input_spec: str, total_target: int) -> None:
        """Raise ValidationError for a request start_job would refuse."""
        if not owner_id or not owner_id.strip():
            raise ValidationError("owner_id is required")
        if not input_spec or not input_spec.strip():
            raise ValidationError("input_spec is required")
        if total_target < 1 or total_target > self.max_total_target:
            raise ValidationError(f"total_target must be between 1 and {self.max_total_target}")

    async def start_job(
        self,
        owner_id: str,
        input_spec: str,
        total_target: int,
        mode: JobMode = JobMode.COLLECT_SYNC,
    ) -> str:
        """Create a pending job, launch its loop and return the id."""
        self.validate_start(owner_id, input_spec, total_target)
        job = await call_store(jobs.create_job, owner_id, input_spec.strip(), total_target, JobMode(mode))
        logger.info(
            "job_created",
            job_id=job.id,
            owner_id=owner_id,
            total_target=total_target,
            mode=job.mode.value,
        )
        self.launch(job.id)
        return job.id

    async def get_job(self, job_id: str) -> Job | None:
        return await call_store(jobs.get_job, job_id)

    async def get_progress(self, job_id: str) -> JobProgress | None:
        job = await self.get_job(job_id)
        if job is None:
            return None
        return build_progress(job, self.runner.config.pacing_interval_seconds)

    async def stream_progress(self, job_id: str, interval: float = 5.0) -> AsyncIterator[JobProgress]:
        """Yield a snapshot now and every interval seconds; stops after a terminal one."""
        while True:
            progress = await self.get_progress(job_id)
            if progress is None:
                return
            yield progress
            if progress.status in jobs.TERMINAL_STATUSES:
                return
            await asyncio.sleep(interval)

    async def list_jobs(self, owner_id: str | None = None, active_only: bool = False, limit: int = 20) -> list[Job]:
        return await call_store(jobs.list_jobs, owner_id, active_only, limit)

    async def list_items(
        self,
        job_id: str,
        status: JobItemStatus | None = None,
        limit: int = 100,
    ) -> list[JobItem]:
        return await call_store(jobs.list_job_items, job_id, status, limit)

    async def pause(self, job_id: str) -> bool:
        ok = await call_store(jobs.transition_job, job_id, [JobStatus.RUNNING], JobStatus.PAUSED)
        if ok:
            self.signals.notify(job_id)
            logger.info("job_pause_requested", job_id=job_id)
        return ok

    async def resume(self, job_id: str) -> bool:
        job = await self.get_job(job_id)
        if job is None or job.status != JobStatus.PAUSED:
            return False
        resumed_at = epoch_now()
        if not await call_store(jobs.transition_job, job_id, [JobStatus.PAUSED], JobStatus.RUNNING):
            return False
        if self.registry.is_live(job_id):
            self.signals.notify(job_id)
            logger.info("job_resume_requested", job_id=job_id, relaunched=False)
        elif self.heartbeat_is_fresh(job):
            # Held by a loop outside this process, possibly dead: it must
            # acknowledge the resume or be taken over.
            self.launch(
                job_id,
                takeover_from=job.loop_token,
                ack_since=resumed_at,
                ack_within=self.runner.config.resume_ack_seconds,
            )
            logger.info("job_resume_requested", job_id=job_id, relaunched=False, holder=job.loop_token)
        else:
            self.launch(job_id)
            logger.info("job_resume_requested", job_id=job_id, relaunched=True)
        return True

    async def restart(self, job_id: str) -> bool:
        """Reset a paused or cancelled job to offset 0 under a fresh loop."""
        ok = await call_store(jobs.reset_job, job_id, [JobStatus.PAUSED, JobStatus.CANCELLED])
        if not ok:
            return False
        # Wake the old loop so it notices the cleared token and exits.
        self.signals.notify(job_id)
        self.launch(job_id, replace=True)
        logger.info("job_restarted", job_id=job_id)
        return True

    async def cancel(self, job_id: str) -> bool:
        ok = await call_store(
            jobs.transition_job,
            job_id,
            [JobStatus.PENDING, JobStatus.RUNNING, JobStatus.PAUSED],
            JobStatus.CANCELLED,
            completed_at=utc_now_iso(),
            error_message="Cancelled by user",
        )
        if ok:
            self.signals.notify(job_id)
            logger.info("job_cancel_requested", job_id=job_id)
        return ok

    async def recover_orphaned_jobs(self, verify_held: bool = False) -> list[str]:
        """Relaunch running jobs whose loop is gone.

        With ``verify_held`` (at startup) jobs whose holder still looks fresh
        are launched too; those loops take over only if the holder does not
        heartbeat again, which covers loops that died with the last process.
        """
        now = epoch_now()
        if verify_held:
            candidates = await call_store(jobs.list_running_jobs)
        else:
            candidates = await call_store(jobs.list_orphaned_jobs, now - self.lease_timeout_seconds)
        relaunched = []
        for job in candidates:
            if self.registry.is_live(job.id):
                continue
            if self.heartbeat_is_fresh(job):
                self.launch(
                    job.id,
                    takeover_from=job.loop_token,
                    ack_since=now,
                    ack_within=self.runner.config.liveness_ack_seconds,
                )
            else:
                self.launch(job.id)
            relaunched.append(job.id)
        if relaunched:
            logger.info("orphaned_jobs_relaunched", job_ids=relaunched, verify_held=verify_held)
        return relaunched

    async def get_stats(self, since: str | None = None, owner_id: str | None = None) -> JobStats:
        """Collection totals for jobs created since the given ISO timestamp."""
        return await call_store(jobs.job_stats, since, owner_id)
