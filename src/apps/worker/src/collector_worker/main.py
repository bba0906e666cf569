"""RQ worker entrypoint."""
import structlog
from redis import Redis
from rq import Worker

from collector_core.jobs import init_db
from collector_worker.settings import get_redis_url
from collector_worker.tasks import run_collection_job  # noqa: F401

logger = structlog.get_logger()


def main():
    """Start the worker."""
    init_db()
    conn = Redis.from_url(get_redis_url())
    worker = Worker(["default"], connection=conn)
    logger.info("worker_starting", queues=["default"])
    worker.work()


if __name__ == "__main__":
    main()
