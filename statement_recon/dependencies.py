"""
FastAPI dependency injection.
Provides the statement service, object and batch stores, and API key validation.
"""

from typing import Optional

from fastapi import Header, HTTPException, status
from redis import Redis

from statement_recon.config import settings
from statement_recon.engines.pdfplumber_engine import PdfPlumberEngine, PdfPlumberUnlocker
from statement_recon.errors import (
    BankReferenceInvalid,
    InvalidTransition,
    ParseError,
    PersistenceConflict,
    RecordNotFound,
    SourceFileMissing,
    StatementError,
)
from statement_recon.models.database import async_session_factory
from statement_recon.pipeline.orchestrator import ExtractionPipeline
from statement_recon.service import StatementService
from statement_recon.storage.artifact_store import ArtifactStore
from statement_recon.storage.bank_directory import SqlBankDirectory
from statement_recon.storage.batch_store import BatchStore, RedisBatchStore
from statement_recon.storage.cycle_store import SqlCycleService
from statement_recon.storage.sql_record_store import SqlRecordStore


# ── Singleton instances ──────────────────────────────────────
_artifact_store: Optional[ArtifactStore] = None
_batch_store: Optional[BatchStore] = None
_service: Optional[StatementService] = None


def get_artifact_store() -> ArtifactStore:
    """Get or create the artifact store singleton."""
    global _artifact_store
    if _artifact_store is None:
        _artifact_store = ArtifactStore()
    return _artifact_store


def get_batch_store() -> BatchStore:
    global _batch_store
    if _batch_store is None:
        _batch_store = RedisBatchStore(Redis.from_url(settings.REDIS_URL))
    return _batch_store


def build_service(artifact_store: Optional[ArtifactStore] = None) -> StatementService:
    """Wire the production stores and the pdfplumber engine together."""
    return StatementService(
        store=SqlRecordStore(async_session_factory),
        cycles=SqlCycleService(async_session_factory),
        objects=artifact_store or get_artifact_store(),
        banks=SqlBankDirectory(async_session_factory),
        pipeline=ExtractionPipeline(PdfPlumberEngine(), PdfPlumberUnlocker()),
    )


def get_service() -> StatementService:
    """One service per process so inline batches share the single extraction slot."""
    global _service
    if _service is None:
        _service = build_service()
    return _service


async def verify_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[str]:
    """
    Verify API key if configured.
    If API_KEY is not set, all requests are allowed (dev mode).
    """
    if settings.API_KEY is None:
        return None

    if x_api_key is None or x_api_key != settings.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return x_api_key


def http_error(e: StatementError) -> HTTPException:
    """Translate a domain error into the matching HTTP status."""
    if isinstance(e, (RecordNotFound, SourceFileMissing)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, (PersistenceConflict, InvalidTransition)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(e, (ParseError, BankReferenceInvalid)):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=e.to_dict())
