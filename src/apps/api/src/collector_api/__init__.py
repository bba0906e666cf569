"""HTTP API for collection jobs."""
