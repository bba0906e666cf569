"""FastAPI application entrypoint."""
import asyncio
import os

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from collector_api.deps import build_rate_limiter, build_service
from collector_api.logging import configure_logging
from collector_api.routers import admin, health, jobs
from collector_api.settings import get_settings
from collector_core.jobs import init_db
from collector_core.reporting import StatsWebhook, day_start_iso
from collector_core.util import StoreError

configure_logging(get_settings().log_level)
logger = structlog.get_logger()

app = FastAPI(title="Sequential Collector API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix="/api")
app.include_router(jobs.router, prefix="/api")
app.include_router(admin.router, prefix="/api")


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error("job_store_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=503, content={"detail": "Job store unavailable"})


async def _every(interval: float, name: str, tick):
    """Run tick every interval seconds; a failing tick is logged and retried next time."""
    while True:
        await asyncio.sleep(interval)
        try:
            await tick()
        except Exception as e:
            logger.warning("background_tick_failed", task=name, error=str(e))


async def _sweep_rate_limiter():
    await asyncio.to_thread(app.state.rate_limiter.sweep)


async def _recover_jobs():
    await app.state.service.recover_orphaned_jobs()


async def _report_stats():
    stats = await app.state.service.get_stats(since=day_start_iso())
    await app.state.stats_webhook.send(stats)


@app.on_event("startup")
async def startup():
    """Initialize on startup."""
    settings = get_settings()
    os.environ.setdefault("SQLITE_PATH", settings.sqlite_path)
    logger.info("initializing_database")
    init_db()

    app.state.service = build_service(settings)
    app.state.rate_limiter = build_rate_limiter(settings)
    app.state.background = [
        asyncio.create_task(_every(settings.rate_limit_sweep_interval_seconds, "rate_limit_sweep", _sweep_rate_limiter)),
        asyncio.create_task(_every(settings.lease_timeout_seconds, "job_recovery", _recover_jobs)),
    ]
    if settings.stats_webhook_url:
        app.state.stats_webhook = StatsWebhook(settings.stats_webhook_url)
        app.state.background.append(
            asyncio.create_task(_every(settings.stats_report_interval_seconds, "stats_report", _report_stats))
        )

    if settings.resume_orphaned_on_startup:
        relaunched = await app.state.service.recover_orphaned_jobs(verify_held=True)
        logger.info("startup_recovery_done", relaunched=len(relaunched))


@app.on_event("shutdown")
async def shutdown():
    """Stop background work; running jobs are picked up again on next startup."""
    for task in app.state.background:
        task.cancel()
    await app.state.service.registry.shutdown()
