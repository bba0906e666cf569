"""Collection task."""
import asyncio

import structlog

from collector_core.orchestrator import build_pipeline, build_runner
from collector_worker.settings import get_pipeline_settings, get_runner_settings

logger = structlog.get_logger()


def run_collection_job(job_id: str, **options) -> None:
    """Run a job's loop to the end in this worker process. options go to JobRunner.run."""
    runner = build_runner(build_pipeline(**get_pipeline_settings()), **get_runner_settings())
    logger.info("worker_job_started", job_id=job_id)
    asyncio.run(runner.run(job_id, **options))
    logger.info("worker_job_finished", job_id=job_id)
