"""Construction of the shared service objects and their FastAPI dependencies."""
import structlog
from fastapi import Request

from collector_api.settings import Settings, get_settings
from collector_core.orchestrator import CollectionService, build_pipeline, build_runner
from collector_core.ratelimit import AdmissionRateLimiter, RateLimitConfig, build_storage

logger = structlog.get_logger()


def _enqueue_rq(job_id: str, **options) -> None:
    """Hand a job loop to the RQ worker."""
    from redis import Redis
    from rq import Queue
    from collector_worker.tasks import run_collection_job

    conn = Redis.from_url(get_settings().redis_url)
    q = Queue("default", connection=conn)
    q.enqueue(run_collection_job, args=(job_id,), kwargs=options, job_timeout=-1)


def build_service(settings: Settings) -> CollectionService:
    pipeline = build_pipeline(
        settings.extraction_url,
        extraction_timeout_seconds=settings.extraction_timeout_seconds,
        catalog_url=settings.catalog_url,
        catalog_token=settings.catalog_token,
        banned_keywords=settings.banned_keywords,
    )
    runner = build_runner(
        pipeline,
        pacing_interval_seconds=settings.pacing_interval_seconds,
        poll_interval_seconds=settings.poll_interval_seconds,
        heartbeat_interval_seconds=settings.heartbeat_interval_seconds,
        lease_timeout_seconds=settings.lease_timeout_seconds,
        search_url_template=settings.search_url_template,
        allowed_hosts=settings.allowed_source_hosts,
    )
    enqueue = _enqueue_rq if settings.executor == "rq" else None
    return CollectionService(runner, enqueue=enqueue, max_total_target=settings.max_total_target)


def build_rate_limiter(settings: Settings) -> AdmissionRateLimiter:
    config = RateLimitConfig(
        enabled=settings.rate_limiting_active,
        min_interval_seconds=settings.rate_limit_min_interval_seconds,
        window_seconds=settings.rate_limit_window_seconds,
        max_requests=settings.rate_limit_max_requests,
        sweep_interval_seconds=settings.rate_limit_sweep_interval_seconds,
    )
    storage_uri = settings.redis_url if settings.rate_limit_backend == "redis" else "memory://"
    logger.info(
        "rate_limiter_configured",
        enabled=config.enabled,
        backend=settings.rate_limit_backend,
    )
    return AdmissionRateLimiter(config, build_storage(storage_uri))


def get_service(request: Request) -> CollectionService:
    return request.app.state.service


def get_rate_limiter(request: Request) -> AdmissionRateLimiter:
    return request.app.state.rate_limiter


def client_key(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client is not None:
        return request.client.host
    return "unknown"
