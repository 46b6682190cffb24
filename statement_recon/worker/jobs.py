"""
RQ job functions for statement batch extraction.
These are the entry points that the worker calls.
"""

from typing import Optional

import structlog
from redis import Redis
from rq import Queue

from statement_recon.config import settings

logger = structlog.get_logger(__name__)


def get_queue() -> Queue:
    """Get the batch job queue."""
    conn = Redis.from_url(settings.REDIS_URL)
    return Queue(settings.QUEUE_NAME, connection=conn)


def enqueue_batch(job_id: str, company_id: Optional[str] = None) -> str:
    """
    Enqueue a stored batch for extraction.
    Returns the RQ job ID.
    """
    q = get_queue()
    job = q.enqueue(
        process_batch_job,
        job_id,
        company_id,
        job_timeout=settings.JOB_TIMEOUT_SECONDS,
        result_ttl=86400,  # Keep results for 24 hours
        failure_ttl=604800,  # Keep failures for 7 days
    )
    logger.info("batch_enqueued", job_id=job_id, rq_job_id=job.id)
    return job.id


def process_batch_job(job_id: str, company_id: Optional[str] = None) -> dict:
    """
    Main job function: run a stored batch through the extraction pipeline.
    This runs inside the RQ worker process.
    """
    import asyncio

    logger.info("batch_job_started", job_id=job_id)

    try:
        result = asyncio.run(_process_batch_async(job_id, company_id))
        logger.info("batch_job_completed", job_id=job_id, status=result.get("status"))
        return result
    except Exception as e:
        logger.error("batch_job_failed", job_id=job_id, error=str(e))
        raise


async def _process_batch_async(job_id: str, company_id: Optional[str]) -> dict:
    from statement_recon.dependencies import build_service, get_batch_store
    from statement_recon.models.database import close_db

    batches = get_batch_store()
    summary = batches.load(job_id)
    if summary is None:
        raise LookupError(f"Batch not found: {job_id}")

    service = build_service()
    try:
        result = await service.submit_batch(
            summary.items,
            job=summary.job,
            company_id=company_id,
            stop_signal=lambda: batches.stop_requested(job_id),
            on_progress=batches.save,
        )
        batches.save(result)
    finally:
        # asyncio.run closes the loop; pooled connections must not outlive it
        await close_db()

    return {
        "status": result.job.status.value,
        "succeeded": result.succeeded,
        "failed": result.failed,
        "skipped": result.skipped,
    }
