"""Collection job endpoints."""
import json
from typing import Awaitable, Callable

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from collector_api.deps import client_key, get_rate_limiter, get_service
from collector_api.settings import get_settings
from collector_core.jobs import Job, JobItemStatus, JobMode, TERMINAL_STATUSES
from collector_core.orchestrator import CollectionService
from collector_core.ratelimit import AdmissionRateLimiter, RateLimitUnavailable
from collector_core.reporting import day_start_iso
from collector_core.util import ValidationError

router = APIRouter(prefix="/collect", tags=["collect"])
logger = structlog.get_logger()


class CollectJobCreate(BaseModel):
    """Request to start a collection job."""

    owner_id: str
    input_spec: str
    total_target: int
    mode: JobMode = JobMode.COLLECT_SYNC


def _job_summary(job: Job) -> dict:
    return {
        "job_id": job.id,
        "owner_id": job.owner_id,
        "input_spec": job.input_spec,
        "mode": job.mode.value,
        "status": job.status.value,
        "total_target": job.total_target,
        "current_count": job.current_count,
        "success_count": job.success_count,
        "failed_count": job.failed_count,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
        "error_message": job.error_message,
        "created_at": job.created_at,
        "updated_at": job.updated_at,
    }


@router.post("/jobs")
async def create_collect_job(
    body: CollectJobCreate,
    request: Request,
    service: CollectionService = Depends(get_service),
    limiter: AdmissionRateLimiter = Depends(get_rate_limiter),
):
    """Start a collection job."""
    # Validate before admission; an invalid request never takes a slot.
    try:
        service.validate_start(body.owner_id, body.input_spec, body.total_target)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    key = client_key(request)
    try:
        decision = await run_in_threadpool(limiter.check, key)
    except RateLimitUnavailable as e:
        logger.error("rate_limit_unavailable", client=key, error=str(e))
        return JSONResponse(
            status_code=503,
            content={"detail": "Rate limiter unavailable"},
            headers={"Retry-After": "5"},
        )
    if not decision.allowed:
        return JSONResponse(
            status_code=429,
            content={"detail": decision.reason, "retry_after": decision.retry_after},
            headers={"Retry-After": str(decision.retry_after)},
        )
    try:
        job_id = await service.start_job(body.owner_id, body.input_spec, body.total_target, body.mode)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info("collect_job_requested", job_id=job_id, client=key)
    return {"job_id": job_id}


@router.get("/jobs")
async def list_collect_jobs(
    owner_id: str | None = None,
    active_only: bool = False,
    limit: int = 20,
    service: CollectionService = Depends(get_service),
):
    """List jobs. If active_only=true, returns only running/paused jobs."""
    jobs = await service.list_jobs(owner_id=owner_id, active_only=active_only, limit=limit)
    return {"jobs": [_job_summary(j) for j in jobs]}


@router.get("/jobs/{job_id}")
async def get_collect_job_progress(job_id: str, service: CollectionService = Depends(get_service)):
    """Get job progress."""
    progress = await service.get_progress(job_id)
    if progress is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return progress.model_dump(mode="json")


@router.get("/jobs/{job_id}/stream")
async def stream_collect_job_progress(job_id: str, service: CollectionService = Depends(get_service)):
    """Server-sent progress events until the job finishes."""
    if await service.get_job(job_id) is None:
        raise HTTPException(status_code=404, detail="Job not found")
    interval = get_settings().stream_interval_seconds

    async def events():
        last = None
        async for progress in service.stream_progress(job_id, interval=interval):
            last = progress
            yield f"data: {progress.model_dump_json()}\n\n"
        if last is None or last.status not in TERMINAL_STATUSES:
            yield f"event: error\ndata: {json.dumps({'error': 'Job not found'})}\n\n"

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/jobs/{job_id}/items")
async def list_collect_job_items(
    job_id: str,
    status: JobItemStatus | None = None,
    limit: int = 100,
    service: CollectionService = Depends(get_service),
):
    """List the items processed so far, in offset order."""
    if await service.get_job(job_id) is None:
        raise HTTPException(status_code=404, detail="Job not found")
    items = await service.list_items(job_id, status=status, limit=limit)
    return {"items": [i.model_dump(mode="json") for i in items]}


async def _control(
    job_id: str,
    action: Callable[[str], Awaitable[bool]],
    verb: str,
    service: CollectionService,
) -> dict:
    if not await action(job_id):
        job = await service.get_job(job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")
        raise HTTPException(
            status_code=400,
            detail=f"Job cannot be {verb} (status: {job.status.value})",
        )
    job = await service.get_job(job_id)
    return {"job_id": job_id, "status": job.status.value if job else None}


@router.post("/jobs/{job_id}/pause")
async def pause_collect_job(job_id: str, service: CollectionService = Depends(get_service)):
    """Pause a running job."""
    return await _control(job_id, service.pause, "paused", service)


@router.post("/jobs/{job_id}/resume")
async def resume_collect_job(job_id: str, service: CollectionService = Depends(get_service)):
    """Resume a paused job."""
    return await _control(job_id, service.resume, "resumed", service)


@router.post("/jobs/{job_id}/restart")
async def restart_collect_job(job_id: str, service: CollectionService = Depends(get_service)):
    """Restart a paused or cancelled job from the beginning."""
    return await _control(job_id, service.restart, "restarted", service)


@router.post("/jobs/{job_id}/cancel")
async def cancel_collect_job(job_id: str, service: CollectionService = Depends(get_service)):
    """Cancel a pending, running or paused job."""
    return await _control(job_id, service.cancel, "cancelled", service)


@router.get("/stats")
async def get_collect_stats(
    since: str | None = None,
    owner_id: str | None = None,
    service: CollectionService = Depends(get_service),
):
    """Item totals and job counts for jobs created since an ISO date (default: today, UTC)."""
    stats = await service.get_stats(since=since or day_start_iso(), owner_id=owner_id)
    return stats.model_dump()
