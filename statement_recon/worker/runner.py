"""
Worker entry point.
Run with: python -m statement_recon.worker.runner

A single worker process consumes the queue, so batches never extract in parallel.
"""

from redis import Redis
from rq import Worker

from statement_recon.config import settings
from statement_recon.observability.logging import setup_logging


def main():
    """Start the RQ worker."""
    setup_logging()

    conn = Redis.from_url(settings.REDIS_URL)
    worker = Worker(
        queues=[settings.QUEUE_NAME],
        connection=conn,
        name=f"statement-worker-{settings.APP_VERSION}",
    )

    print(f"Starting worker on queue '{settings.QUEUE_NAME}'...")
    worker.work(with_scheduler=False)


if __name__ == "__main__":
    main()
