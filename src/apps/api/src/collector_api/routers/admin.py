"""Rate limiter administration."""
from fastapi import APIRouter, Depends

from collector_api.deps import get_rate_limiter
from collector_core.ratelimit import AdmissionRateLimiter

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/rate-limit")
def rate_limit_stats(limiter: AdmissionRateLimiter = Depends(get_rate_limiter)):
    """Tracked callers and their recent requests."""
    return limiter.stats()


@router.delete("/rate-limit")
def reset_rate_limit(key: str | None = None, limiter: AdmissionRateLimiter = Depends(get_rate_limiter)):
    """Forget one caller, or all callers when key is omitted."""
    limiter.reset(key)
    return {"reset": key or "all"}
