"""Admission rate limiting."""
from collector_core.ratelimit.limiter import (
    AdmissionRateLimiter,
    RateLimitConfig,
    RateLimitDecision,
    RateLimitUnavailable,
    build_storage,
)

__all__ = [
    "AdmissionRateLimiter",
    "RateLimitConfig",
    "RateLimitDecision",
    "RateLimitUnavailable",
    "build_storage",
]
