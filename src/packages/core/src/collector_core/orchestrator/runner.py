"""The per-job sequential loop.

One loop processes one offset at a time: extract, de-duplicate, filter,
persist, register. The job row is re-read before every step and stays
authoritative for status; the loop owns the counts only while its
``loop_token`` matches the row.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import structlog

from collector_core import jobs
from collector_core.jobs import Job, JobItemStatus, JobMode, JobStatus
from collector_core.orchestrator.retry import (
    EXTRACTION_RETRY,
    PERSISTENCE_RETRY,
    REGISTRATION_RETRY,
    RetryPolicy,
    call_with_retry,
)
from collector_core.orchestrator.signals import JobSignals
from collector_core.pipeline import (
    DEFAULT_SEARCH_URL_TEMPLATE,
    DuplicateCheck,
    ExtractionService,
    FilterService,
    Item,
    PersistenceService,
    RegistrationService,
    SavedRecord,
    SourceTarget,
    resolve_input_spec,
)
from collector_core.util import (
    FatalJobError,
    StoreError,
    classify_error,
    epoch_now,
    generate_token,
    is_transient,
    utc_now_iso,
)

logger = structlog.get_logger()


async def call_store(fn: Callable[..., Any], *args, **kwargs) -> Any:
    """Run a blocking job store call off the event loop."""
    return await asyncio.to_thread(fn, *args, **kwargs)


@dataclass
class Pipeline:
    extraction: ExtractionService
    duplicates: DuplicateCheck
    filter: FilterService
    persistence: PersistenceService
    registration: RegistrationService | None = None


@dataclass(frozen=True)
class RunnerConfig:
    pacing_interval_seconds: float = 60.0
    poll_interval_seconds: float = 1.0
    heartbeat_interval_seconds: float = 15.0
    lease_timeout_seconds: float = 45.0
    search_url_template: str = DEFAULT_SEARCH_URL_TEMPLATE
    allowed_hosts: tuple[str, ...] = ()
    extraction_retry: RetryPolicy = EXTRACTION_RETRY
    persistence_retry: RetryPolicy = PERSISTENCE_RETRY
    registration_retry: RetryPolicy = REGISTRATION_RETRY

    @property
    def resume_ack_seconds(self) -> float:
        """How long a paused loop may take to notice it was resumed."""
        return 2 * self.poll_interval_seconds + 0.05

    @property
    def liveness_ack_seconds(self) -> float:
        """How long a live loop may take to heartbeat again."""
        return 2 * self.heartbeat_interval_seconds + self.poll_interval_seconds


@dataclass
class ItemOutcome:
    success: bool
    status: JobItemStatus
    error_code: str | None = None
    error_message: str | None = None
    external_id: str | None = None
    record_id: str | None = None

    @classmethod
    def failed(cls, code: str, message: str, external_id: str | None = None) -> "ItemOutcome":
        return cls(
            success=False,
            status=JobItemStatus.FAILED,
            error_code=code,
            error_message=message[:500],
            external_id=external_id,
        )


@dataclass
class _LoopState:
    job_id: str
    token: str
    log: Any
    last_item_at: float | None = None


class JobRunner:
    def __init__(
        self,
        pipeline: Pipeline,
        config: RunnerConfig | None = None,
        signals: JobSignals | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.pipeline = pipeline
        self.config = config or RunnerConfig()
        self.signals = signals or JobSignals()
        self.sleep = sleep

    async def run(
        self,
        job_id: str,
        takeover_from: str | None = None,
        ack_since: float | None = None,
        ack_within: float | None = None,
    ) -> None:
        """Run job_id's loop until the job completes, is cancelled, or loses ownership.

        ``takeover_from`` is the token of a holder that may have died with its
        process. If it shows no sign of life (a heartbeat after ``ack_since``)
        within ``ack_within`` seconds, this loop takes the job over.
        """
        state = _LoopState(job_id=job_id, token=generate_token(), log=logger.bind(job_id=job_id))
        self.signals.open(job_id)
        claimed = False
        keep_alive = None
        try:
            claimed = await self._claim(state, takeover_from, ack_since, ack_within)
            if not claimed:
                state.log.info("job_loop_already_live")
                return
            keep_alive = asyncio.create_task(self._keep_alive(state))
            await self._run_claimed(state)
        except FatalJobError as e:
            state.log.error("job_failed", error=str(e))
            await self._fail(state, str(e))
        except Exception as e:
            state.log.exception("job_loop_crashed", error=str(e))
            await self._fail(state, f"Unexpected error: {e}")
        finally:
            if keep_alive is not None:
                keep_alive.cancel()
            self.signals.close(job_id)
            if claimed:
                try:
                    await call_store(jobs.release_loop, job_id, state.token)
                except StoreError as e:
                    state.log.warning("job_loop_release_failed", error=str(e))

    async def _claim(
        self,
        state: _LoopState,
        takeover_from: str | None,
        ack_since: float | None,
        ack_within: float | None,
    ) -> bool:
        stale_before = epoch_now() - self.config.lease_timeout_seconds
        if await call_store(jobs.claim_loop, state.job_id, state.token, stale_before):
            return True
        if takeover_from is None:
            return False

        since = ack_since if ack_since is not None else epoch_now()
        window = ack_within if ack_within is not None else self.config.liveness_ack_seconds
        deadline = time.monotonic() + window
        while True:
            job = await call_store(jobs.get_job, state.job_id)
            if job is None or job.is_terminal:
                return False
            if job.loop_token != takeover_from:
                # released, or claimed by someone else meanwhile
                return await call_store(jobs.claim_loop, state.job_id, state.token, stale_before)
            if job.heartbeat_at is not None and job.heartbeat_at > since:
                state.log.info("job_loop_holder_alive", holder=takeover_from)
                return False
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self.config.poll_interval_seconds, remaining))

        state.log.warning("job_loop_taken_over", holder=takeover_from)
        return await call_store(
            jobs.claim_loop, state.job_id, state.token, stale_before, replace_token=takeover_from
        )

    async def _keep_alive(self, state: _LoopState) -> None:
        """Heartbeat on a fixed cadence, including during long stages."""
        while True:
            await asyncio.sleep(self.config.heartbeat_interval_seconds)
            try:
                if not await call_store(jobs.heartbeat, state.job_id, state.token):
                    return
            except StoreError as e:
                state.log.warning("job_heartbeat_failed", error=str(e))

    async def _fail(self, state: _LoopState, message: str) -> None:
        try:
            recorded = await call_store(jobs.fail_job, state.job_id, message, state.token)
        except StoreError as e:
            state.log.error("job_failure_not_recorded", error=str(e))
            return
        if not recorded:
            state.log.info("job_failure_skipped", reason="not owned or already finished")

    async def _run_claimed(self, state: _LoopState) -> None:
        job = await call_store(jobs.get_job, state.job_id)
        if job is None:
            state.log.warning("job_not_found")
            return
        if job.is_terminal:
            state.log.info("job_already_finished", status=job.status.value)
            return

        target = resolve_input_spec(
            job.input_spec,
            search_url_template=self.config.search_url_template,
            allowed_hosts=self.config.allowed_hosts or None,
        )

        if job.status == JobStatus.PENDING:
            await call_store(
                jobs.transition_job,
                state.job_id,
                [JobStatus.PENDING],
                JobStatus.RUNNING,
                started_at=utc_now_iso(),
            )
        state.log.info(
            "job_loop_started",
            target=target.url,
            mode=job.mode.value,
            current_count=job.current_count,
            total_target=job.total_target,
        )

        while True:
            job = await self._reload(state)
            if job is None:
                return

            if job.status == JobStatus.PAUSED:
                state.log.info("job_paused", current_count=job.current_count)
                job = await self._wait_while_paused(state)
                if job is None:
                    return
                state.log.info("job_resumed", current_count=job.current_count)

            if job.status != JobStatus.RUNNING:
                state.log.info("job_loop_exit", status=job.status.value)
                return

            current = job.current_count
            success = job.success_count
            failed = job.failed_count

            if current >= job.total_target:
                await self._complete(state, job)
                return

            if state.last_item_at is not None:
                remaining = self.config.pacing_interval_seconds - (time.monotonic() - state.last_item_at)
                if remaining > 0 and await self._pace(state, remaining):
                    continue

            outcome = await self.process_item(job, target, offset=current)
            state.last_item_at = time.monotonic()

            current += 1
            if outcome.success:
                success += 1
            else:
                failed += 1

            if not await call_store(jobs.update_job_progress, state.job_id, state.token, current, success, failed):
                state.log.info("job_loop_superseded")
                return
            state.log.info(
                "item_processed",
                offset=current - 1,
                success=outcome.success,
                error_code=outcome.error_code,
                current_count=current,
                total_target=job.total_target,
            )

            if current >= job.total_target:
                job = job.model_copy(update={"current_count": current, "success_count": success, "failed_count": failed})
                await self._complete(state, job)
                return

    async def _reload(self, state: _LoopState) -> Job | None:
        """Re-read the row. None when the loop must stop."""
        job = await call_store(jobs.get_job, state.job_id)
        if job is None:
            state.log.warning("job_disappeared")
            return None
        if job.loop_token != state.token:
            state.log.info("job_loop_superseded")
            return None
        if job.status == JobStatus.CANCELLED:
            state.log.info("job_cancelled", current_count=job.current_count)
            return None
        return job

    async def _complete(self, state: _LoopState, job: Job) -> None:
        if await call_store(jobs.complete_job, state.job_id, state.token):
            state.log.info(
                "job_completed",
                total_target=job.total_target,
                success_count=job.success_count,
                failed_count=job.failed_count,
            )
        else:
            state.log.info("job_completion_skipped")

    async def _wait_while_paused(self, state: _LoopState) -> Job | None:
        """Idle until resumed. None when cancelled or superseded meanwhile."""
        while True:
            await self.signals.wait(state.job_id, self.config.poll_interval_seconds)
            job = await self._reload(state)
            if job is None:
                return None
            if job.status != JobStatus.PAUSED:
                # lets a loop waiting to take over see this one is alive
                await call_store(jobs.heartbeat, state.job_id, state.token)
                return job

    async def _pace(self, state: _LoopState, seconds: float) -> bool:
        """Wait out the pacing interval. True if the job left running meanwhile."""
        deadline = time.monotonic() + seconds
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            await self.signals.wait(state.job_id, min(self.config.poll_interval_seconds, remaining))
            job = await call_store(jobs.get_job, state.job_id)
            if job is None or job.loop_token != state.token or job.status != JobStatus.RUNNING:
                return True

    async def process_item(self, job: Job, target: SourceTarget, offset: int) -> ItemOutcome:
        """Run one offset through the pipeline. Only job store failures escape."""
        row = await call_store(jobs.create_job_item, job.id, offset)
        log = logger.bind(job_id=job.id, item_id=row.id, offset=offset)
        try:
            outcome = await self._run_stages(job, target, offset, row.id, log)
        except StoreError:
            raise
        except Exception as e:
            log.exception("item_unexpected_error", error=str(e))
            outcome = ItemOutcome.failed(classify_error(e).code, str(e))

        fields: dict[str, Any] = {
            "status": outcome.status,
            "external_id": outcome.external_id,
            "linked_record_id": outcome.record_id,
            "error_code": outcome.error_code,
            "error_message": outcome.error_message,
        }
        if outcome.status == JobItemStatus.FAILED:
            fields["failed_at"] = utc_now_iso()
        await call_store(jobs.update_job_item, row.id, **fields)
        return outcome

    async def _run_stages(self, job: Job, target: SourceTarget, offset: int, item_id: str, log) -> ItemOutcome:
        p = self.pipeline
        cfg = self.config
        await call_store(jobs.update_job_item, item_id, status=JobItemStatus.EXTRACTING)

        try:
            item = await call_with_retry(
                lambda: p.extraction.fetch_one(target, offset),
                cfg.extraction_retry,
                stage="extraction",
                should_retry=is_transient,
                sleep=self.sleep,
                job_id=job.id,
                offset=offset,
            )
        except Exception as e:
            info = classify_error(e)
            log.warning("extraction_failed", code=info.code, error=str(e))
            return ItemOutcome.failed(info.code, f"Extraction failed: {e}")
        if item is None:
            log.info("extraction_empty")
            return ItemOutcome.failed("no_item", f"No item found at offset {offset}")
        if not isinstance(item, Item):
            return ItemOutcome.failed("malformed_result", f"Extraction returned {type(item).__name__}")

        try:
            duplicate = await p.duplicates.exists(job.owner_id, item.external_id)
        except Exception as e:
            log.warning("duplicate_check_failed", error=str(e))
            return ItemOutcome.failed("duplicate_check_failed", str(e), item.external_id)
        if duplicate:
            log.info("item_duplicate", external_id=item.external_id)
            return ItemOutcome.failed("duplicate", f"{item.external_id} already collected", item.external_id)

        try:
            decision = await p.filter.check(item)
        except Exception as e:
            log.warning("filter_failed", error=str(e))
            return ItemOutcome.failed("filter_failed", str(e), item.external_id)
        if not decision.passed:
            return ItemOutcome.failed("filtered", decision.reason or "Rejected by content filter", item.external_id)

        try:
            record_id = await call_with_retry(
                lambda: p.persistence.save(item, job.owner_id),
                cfg.persistence_retry,
                stage="persistence",
                sleep=self.sleep,
                job_id=job.id,
                offset=offset,
            )
        except Exception as e:
            log.error("persistence_failed", external_id=item.external_id, error=str(e))
            return ItemOutcome.failed("persistence_failed", f"Save failed: {e}", item.external_id)
        record_id = str(record_id) if record_id is not None else None
        await call_store(
            jobs.update_job_item,
            item_id,
            status=JobItemStatus.SAVED,
            external_id=item.external_id,
            linked_record_id=record_id,
        )

        saved = ItemOutcome(
            success=True,
            status=JobItemStatus.SAVED,
            external_id=item.external_id,
            record_id=record_id,
        )
        if job.mode == JobMode.COLLECT_ONLY or p.registration is None:
            return saved

        record = SavedRecord(id=record_id or "", owner_id=job.owner_id, item=item)
        try:
            await call_with_retry(
                lambda: p.registration.register(record),
                cfg.registration_retry,
                stage="registration",
                sleep=self.sleep,
                job_id=job.id,
                offset=offset,
            )
        except Exception as e:
            # The record is kept; only the item notes the failure.
            log.warning("registration_failed", external_id=item.external_id, error=str(e))
            saved.error_code = "registration_failed"
            saved.error_message = f"Registration failed: {e}"[:500]
            return saved

        saved.status = JobItemStatus.REGISTERED
        return saved
