"""Sequential collector core: job store, orchestration, pipeline and rate limiting."""
