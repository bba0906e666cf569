"""Tests for job control, supervision and recovery."""
import asyncio

import pytest

from collector_core import jobs
from collector_core.jobs import JobMode, JobStatus
from collector_core.orchestrator import CollectionService, JobSignals, TaskRegistry
from collector_core.util import PermanentItemError, ValidationError, epoch_now

from collector_fakes import FakeExtraction, make_pipeline, make_runner, wait_until


def _service(extraction=None, **config):
    runner = make_runner(make_pipeline(extraction=extraction), **config)
    return CollectionService(runner, max_total_target=1000)


def _status(job_id):
    return jobs.get_job(job_id).status


async def _finished(service, job_id):
    await wait_until(lambda: _status(job_id) in jobs.TERMINAL_STATUSES and not service.registry.is_live(job_id))


@pytest.mark.asyncio
async def test_start_job_runs_to_completion():
    service = _service()
    job_id = await service.start_job("o", "wireless mouse", 3)
    await _finished(service, job_id)

    progress = await service.get_progress(job_id)
    assert progress.status == JobStatus.COMPLETED
    assert progress.current_count == 3
    assert progress.progress_percentage == 100
    assert progress.estimated_seconds_remaining == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("owner,spec,target", [("", "q", 1), ("o", " ", 1), ("o", "q", 0), ("o", "q", 1001)])
async def test_start_job_validation(owner, spec, target):
    with pytest.raises(ValidationError):
        await _service().start_job(owner, spec, target)
    assert jobs.list_jobs() == []


@pytest.mark.asyncio
async def test_start_job_keeps_mode():
    service = _service()
    job_id = await service.start_job("o", "q", 1, mode=JobMode.COLLECT_ONLY)
    await _finished(service, job_id)
    assert jobs.get_job(job_id).mode == JobMode.COLLECT_ONLY


@pytest.mark.asyncio
async def test_pause_and_resume_same_loop():
    extraction = FakeExtraction()
    service = _service(extraction, pacing_interval_seconds=0.2)
    job_id = await service.start_job("o", "q", 3)
    await wait_until(lambda: jobs.get_job(job_id).current_count >= 1)

    assert await service.pause(job_id)
    assert _status(job_id) == JobStatus.PAUSED
    await asyncio.sleep(0.1)
    paused_at = jobs.get_job(job_id).current_count
    await asyncio.sleep(0.5)
    assert jobs.get_job(job_id).current_count == paused_at
    assert service.registry.is_live(job_id)
    assert not await service.pause(job_id)

    assert await service.resume(job_id)
    await _finished(service, job_id)
    row = jobs.get_job(job_id)
    assert row.status == JobStatus.COMPLETED
    assert row.current_count == 3
    assert extraction.calls == [0, 1, 2]


@pytest.mark.asyncio
async def test_resume_relaunches_when_loop_is_gone():
    service = _service()
    job = jobs.create_job("o", "q", 2)
    jobs.transition_job(job.id, [JobStatus.PENDING], JobStatus.PAUSED, current_count=1, failed_count=1)

    assert await service.resume(job.id)
    await _finished(service, job.id)
    row = jobs.get_job(job.id)
    assert row.status == JobStatus.COMPLETED
    assert (row.current_count, row.success_count, row.failed_count) == (2, 1, 1)


@pytest.mark.asyncio
async def test_resume_requires_paused():
    service = _service()
    job = jobs.create_job("o", "q", 2)
    assert not await service.resume(job.id)
    assert not await service.resume("missing")
    assert _status(job.id) == JobStatus.PENDING


@pytest.mark.asyncio
async def test_cancel_running_job():
    service = _service(pacing_interval_seconds=30)
    job_id = await service.start_job("o", "q", 5)
    await wait_until(lambda: jobs.get_job(job_id).current_count == 1)

    assert await service.cancel(job_id)
    await _finished(service, job_id)
    row = jobs.get_job(job_id)
    assert row.status == JobStatus.CANCELLED
    assert row.current_count == 1
    assert row.completed_at is not None
    assert row.error_message == "Cancelled by user"
    assert not await service.cancel(job_id)


@pytest.mark.asyncio
async def test_cancel_paused_job_stops_idle_loop():
    service = _service(pacing_interval_seconds=30)
    job_id = await service.start_job("o", "q", 5)
    await wait_until(lambda: jobs.get_job(job_id).current_count == 1)
    assert await service.pause(job_id)

    assert await service.cancel(job_id)
    await _finished(service, job_id)
    assert _status(job_id) == JobStatus.CANCELLED


@pytest.mark.asyncio
async def test_restart_resets_counts_and_replaces_loop():
    extraction = FakeExtraction()
    service = _service(extraction, pacing_interval_seconds=0.2)
    job_id = await service.start_job("o", "q", 3)
    await wait_until(lambda: jobs.get_job(job_id).current_count >= 1)
    assert await service.pause(job_id)

    assert await service.restart(job_id)
    row = jobs.get_job(job_id)
    assert row.status == JobStatus.RUNNING
    assert row.error_message is None

    await _finished(service, job_id)
    row = jobs.get_job(job_id)
    assert row.status == JobStatus.COMPLETED
    assert (row.current_count, row.success_count + row.failed_count) == (3, 3)
    assert extraction.calls[-3:] == [0, 1, 2]


@pytest.mark.asyncio
async def test_restart_cancelled_job():
    service = _service()
    job = jobs.create_job("o", "q", 2)
    jobs.transition_job(job.id, [JobStatus.PENDING], JobStatus.CANCELLED, current_count=1, failed_count=1)

    assert await service.restart(job.id)
    await _finished(service, job.id)
    row = jobs.get_job(job.id)
    assert row.status == JobStatus.COMPLETED
    assert (row.current_count, row.success_count, row.failed_count) == (2, 2, 0)


@pytest.mark.asyncio
async def test_restart_refused_for_completed_job():
    service = _service()
    job_id = await service.start_job("o", "q", 1)
    await _finished(service, job_id)

    assert not await service.restart(job_id)
    assert not await service.pause(job_id)
    assert _status(job_id) == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_recover_orphaned_jobs():
    service = _service()
    orphan = jobs.create_job("o", "q", 2)
    jobs.transition_job(
        orphan.id, [JobStatus.PENDING], JobStatus.RUNNING, loop_token="dead", heartbeat_at=epoch_now() - 3600
    )
    healthy = jobs.create_job("o", "q", 2)
    jobs.transition_job(
        healthy.id, [JobStatus.PENDING], JobStatus.RUNNING, loop_token="alive", heartbeat_at=epoch_now()
    )

    relaunched = await service.recover_orphaned_jobs()

    assert relaunched == [orphan.id]
    await _finished(service, orphan.id)
    assert _status(orphan.id) == JobStatus.COMPLETED
    assert _status(healthy.id) == JobStatus.RUNNING


@pytest.mark.asyncio
async def test_enqueue_failure_falls_back_to_in_process():
    def broken_enqueue(job_id):
        raise ConnectionError("redis down")

    runner = make_runner()
    service = CollectionService(runner, enqueue=broken_enqueue)
    job_id = await service.start_job("o", "q", 1)
    await _finished(service, job_id)
    assert _status(job_id) == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_enqueue_used_when_available():
    queued = []
    service = CollectionService(make_runner(), enqueue=queued.append)
    job_id = await service.start_job("o", "q", 1)
    assert queued == [job_id]
    assert not service.registry.is_live(job_id)
    assert _status(job_id) == JobStatus.PENDING


@pytest.mark.asyncio
async def test_stream_progress_ends_on_terminal_status():
    service = _service()
    job_id = await service.start_job("o", "q", 2)
    snapshots = [p async for p in service.stream_progress(job_id, interval=0.01)]
    assert snapshots[-1].status == JobStatus.COMPLETED
    assert all(s.job_id == job_id for s in snapshots)
    assert [p async for p in service.stream_progress("missing", interval=0.01)] == []


@pytest.mark.asyncio
async def test_registry_rejects_duplicate_live_loop():
    registry = TaskRegistry()
    release = asyncio.Event()

    async def loop():
        await release.wait()

    assert registry.launch("j1", loop())
    assert not registry.launch("j1", loop())
    assert registry.live_job_ids() == ["j1"]
    release.set()
    await registry.join("j1", timeout=1)
    await asyncio.sleep(0)
    assert not registry.is_live("j1")


@pytest.mark.asyncio
async def test_registry_notices_dead_loop():
    registry = TaskRegistry()

    async def crash():
        raise RuntimeError("boom")

    registry.launch("j1", crash())
    await wait_until(lambda: not registry.is_live("j1"))
    assert registry.live_job_ids() == []
    # a dead loop can be replaced without replace=True
    assert registry.launch("j1", asyncio.sleep(0))
    await registry.shutdown()


@pytest.mark.asyncio
async def test_resume_takes_over_from_holder_that_died():
    service = _service()
    job = jobs.create_job("o", "q", 2)
    # paused by a loop whose process is gone; its heartbeat is still recent
    jobs.transition_job(
        job.id, [JobStatus.PENDING], JobStatus.PAUSED, loop_token="dead-process", heartbeat_at=epoch_now() - 10
    )

    assert await service.resume(job.id)
    await _finished(service, job.id)
    row = jobs.get_job(job.id)
    assert row.status == JobStatus.COMPLETED
    assert row.current_count == 2


@pytest.mark.asyncio
async def test_resume_leaves_job_with_live_holder_elsewhere():
    extraction = FakeExtraction()
    holder = make_runner(make_pipeline(extraction=extraction), pacing_interval_seconds=0.2)
    job = jobs.create_job("o", "q", 3)
    task = asyncio.create_task(holder.run(job.id))
    await wait_until(lambda: jobs.get_job(job.id).current_count >= 1)
    jobs.transition_job(job.id, [JobStatus.RUNNING], JobStatus.PAUSED)
    await asyncio.sleep(0.1)

    service = _service(poll_interval_seconds=0.2)
    assert await service.resume(job.id)
    await asyncio.wait_for(task, timeout=5)
    await _finished(service, job.id)

    row = jobs.get_job(job.id)
    assert row.status == JobStatus.COMPLETED
    assert row.current_count == 3
    assert extraction.calls == [0, 1, 2]


@pytest.mark.asyncio
async def test_startup_recovery_takes_over_jobs_held_by_dead_process():
    service = _service(heartbeat_interval_seconds=0.05)
    job = jobs.create_job("o", "q", 2)
    jobs.transition_job(
        job.id, [JobStatus.PENDING], JobStatus.RUNNING, loop_token="dead-process", heartbeat_at=epoch_now()
    )

    assert await service.recover_orphaned_jobs() == []
    assert await service.recover_orphaned_jobs(verify_held=True) == [job.id]
    await _finished(service, job.id)
    assert _status(job.id) == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_streamed_snapshots_keep_counts_consistent():
    extraction = FakeExtraction({1: [None], 3: [PermanentItemError("listing removed", "not_found")]})
    service = _service(extraction, pacing_interval_seconds=0.05)
    job_id = await service.start_job("o", "q", 5)

    async def pause_then_resume():
        await wait_until(lambda: jobs.get_job(job_id).current_count >= 2)
        assert await service.pause(job_id)
        await asyncio.sleep(0.1)
        assert await service.resume(job_id)

    control = asyncio.create_task(pause_then_resume())
    snapshots = [p async for p in service.stream_progress(job_id, interval=0.01)]
    await control

    assert JobStatus.PAUSED in {s.status for s in snapshots}
    for s in snapshots:
        if s.status != JobStatus.PENDING:
            assert s.current_count == s.success_count + s.failed_count
            assert s.current_count <= s.total_target
    counts = [s.current_count for s in snapshots]
    assert counts == sorted(counts)
    last = snapshots[-1]
    assert last.status == JobStatus.COMPLETED
    assert (last.current_count, last.success_count, last.failed_count) == (5, 3, 2)


@pytest.mark.asyncio
async def test_signals_survive_superseded_loop_closing():
    signals = JobSignals()
    signals.open("j1")  # old loop
    signals.open("j1")  # its replacement
    signals.close("j1")
    assert signals.is_open("j1")

    waiter = asyncio.create_task(signals.wait("j1", timeout=1))
    await asyncio.sleep(0)
    signals.notify("j1")
    assert await waiter

    signals.close("j1")
    assert not signals.is_open("j1")


@pytest.mark.asyncio
async def test_get_stats_after_finished_job():
    service = _service(FakeExtraction({1: [None]}))
    job_id = await service.start_job("o", "q", 3)
    await _finished(service, job_id)

    stats = await service.get_stats(owner_id="o")
    assert (stats.total_success, stats.total_failed) == (2, 1)
    assert (stats.completed_jobs, stats.running_jobs, stats.failed_jobs) == (1, 0, 0)


def test_validate_start():
    service = _service()
    service.validate_start("o", "wireless mouse", 1000)
    with pytest.raises(ValidationError, match="between 1 and 1000"):
        service.validate_start("o", "wireless mouse", 1001)
