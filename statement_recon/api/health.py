"""
Liveness and readiness checks.
/health always answers 200 and reports each backing service; /health/ready is
true only when the record database and the batch store both respond.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy import text

from statement_recon.config import settings
from statement_recon.dependencies import get_batch_store
from statement_recon.models.database import async_session_factory
from statement_recon.storage.batch_store import BatchStore

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])


async def check_database() -> Optional[str]:
    """None when the record database answers, else the error text."""
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            return None if result.scalar() == 1 else "unexpected reply"
    except Exception as e:
        return str(e)[:200]


def check_batch_store(batches: BatchStore) -> Optional[str]:
    try:
        return None if batches.ping() else "no reply"
    except Exception as e:
        return str(e)[:200]


@router.get("/health")
async def health_check(batches: BatchStore = Depends(get_batch_store)):
    """Never fails; a broken dependency only degrades the reported status."""
    db_error = await check_database()
    batch_error = check_batch_store(batches)

    response = {
        "status": "healthy" if db_error is None and batch_error is None else "degraded",
        "version": settings.APP_VERSION,
        "database": "connected" if db_error is None else "unreachable",
        "batch_store": "connected" if batch_error is None else "unreachable",
    }
    if db_error:
        response["database_error"] = db_error
    if batch_error:
        response["batch_store_error"] = batch_error
    return response


@router.get("/health/ready")
async def readiness_check(batches: BatchStore = Depends(get_batch_store)):
    db_error = await check_database()
    batch_error = check_batch_store(batches)
    if db_error or batch_error:
        logger.warning("readiness_failed", database_error=db_error, batch_store_error=batch_error)
    return {
        "ready": db_error is None and batch_error is None,
        "database": db_error is None,
        "batch_store": batch_error is None,
    }
