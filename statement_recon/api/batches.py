"""
/api/v1/batches endpoints.
Bulk upload of statement PDFs, progress, cooperative stop and the manual
corrections (bank assignment, period entry, password) that recover items.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from statement_recon.config import settings
from statement_recon.dependencies import (
    get_artifact_store,
    get_batch_store,
    get_service,
    http_error,
    verify_api_key,
)
from statement_recon.errors import StatementError
from statement_recon.models.enums import JobStatus, UploadStatus
from statement_recon.schemas.api import (
    AssignBankRequest,
    BatchAccepted,
    EnterPeriodRequest,
    PasswordRequest,
    UploadItemRequest,
)
from statement_recon.schemas.batches import BatchSummary, Job, UploadItem
from statement_recon.schemas.extraction import DocumentHandle
from statement_recon.service import SaveResult, StatementService
from statement_recon.storage.artifact_store import ArtifactStore
from statement_recon.storage.batch_store import BatchStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/batches", tags=["batches"], dependencies=[Depends(verify_api_key)])

RETRYABLE_STATUSES = (UploadStatus.PENDING, UploadStatus.FAILED, UploadStatus.UNMATCHED)


async def _store_uploads(files: list[UploadFile], job: Job, store: ArtifactStore) -> list[UploadItem]:
    allowed = settings.ALLOWED_MIME_TYPES.split(",")
    max_bytes = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
    items = []

    for index, file in enumerate(files):
        if file.content_type not in allowed:
            raise HTTPException(
                status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                detail=f"Unsupported file type: {file.content_type}. Allowed: {settings.ALLOWED_MIME_TYPES}",
            )
        data = await file.read()
        if not data:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Empty file: {file.filename}")
        if len(data) > max_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File too large: {file.filename}. Max: {max_bytes} bytes",
            )

        file_name = file.filename or f"statement_{index}.pdf"
        relative = store.put(f"incoming/{job.id}/{index:03d}_{file_name}", data)
        items.append(UploadItem(
            index=index,
            document=DocumentHandle(path=str(store.full_path(relative)), file_name=file_name, size_bytes=len(data)),
        ))
    return items


def _load(batches: BatchStore, job_id: str) -> BatchSummary:
    summary = batches.load(job_id)
    if summary is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Batch not found: {job_id}")
    return summary


def _item(summary: BatchSummary, index: int) -> UploadItem:
    for item in summary.items:
        if item.index == index:
            return item
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Item {index} not in batch {summary.job.id}")


@router.post("", response_model=BatchSummary, status_code=status.HTTP_201_CREATED)
async def run_batch(
    files: list[UploadFile] = File(...),
    company_id: Optional[str] = Form(None),
    service: StatementService = Depends(get_service),
    store: ArtifactStore = Depends(get_artifact_store),
    batches: BatchStore = Depends(get_batch_store),
):
    """Upload PDFs and extract them inline, one at a time."""
    job = Job()
    items = await _store_uploads(files, job, store)
    summary = await service.submit_batch(
        items,
        job=job,
        company_id=company_id,
        stop_signal=lambda: batches.stop_requested(job.id),
        on_progress=batches.save,
    )
    batches.save(summary)
    return summary


@router.post("/enqueue", response_model=BatchAccepted, status_code=status.HTTP_202_ACCEPTED)
async def enqueue_batch(
    files: list[UploadFile] = File(...),
    company_id: Optional[str] = Form(None),
    store: ArtifactStore = Depends(get_artifact_store),
    batches: BatchStore = Depends(get_batch_store),
):
    """Upload PDFs and hand extraction to the RQ worker."""
    from statement_recon.worker.jobs import enqueue_batch as enqueue

    job = Job()
    items = await _store_uploads(files, job, store)
    job.total = len(items)
    batches.save(BatchSummary(job=job, succeeded=0, failed=0, items=items))
    rq_job_id = enqueue(job.id, company_id)
    return BatchAccepted(job_id=job.id, status=job.status, total=job.total, queued=True, rq_job_id=rq_job_id)


@router.get("/{job_id}", response_model=BatchSummary)
async def get_batch(job_id: str, batches: BatchStore = Depends(get_batch_store)):
    return _load(batches, job_id)


@router.post("/{job_id}/stop")
async def stop_batch(job_id: str, batches: BatchStore = Depends(get_batch_store)):
    """Cooperative stop: the item in flight finishes, the next one never starts."""
    _load(batches, job_id)
    batches.request_stop(job_id)
    logger.info("batch_stop_requested", job_id=job_id)
    return {"job_id": job_id, "stop_requested": True}


@router.post("/{job_id}/retry", response_model=BatchSummary)
async def retry_batch(
    job_id: str,
    company_id: Optional[str] = Form(None),
    service: StatementService = Depends(get_service),
    batches: BatchStore = Depends(get_batch_store),
):
    """Re-run pending, failed and unmatched items of an existing batch."""
    summary = _load(batches, job_id)
    if summary.job.status == JobStatus.RUNNING:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Batch is still running")
    batches.clear_stop(job_id)
    pending = [item for item in summary.items if item.status in RETRYABLE_STATUSES]
    items = summary.items
    result = await service.submit_batch(
        pending,
        job=Job(id=job_id),
        company_id=company_id,
        stop_signal=lambda: batches.stop_requested(job_id),
        on_progress=lambda progress: batches.save(progress.model_copy(update={"items": items})),
    )
    summary = BatchSummary(
        job=result.job,
        succeeded=result.succeeded,
        failed=result.failed,
        skipped=result.skipped,
        failures=result.failures,
        items=items,
    )
    batches.save(summary)
    return summary


@router.post("/{job_id}/items/{index}/bank", response_model=UploadItem)
async def assign_bank(
    job_id: str,
    index: int,
    body: AssignBankRequest,
    service: StatementService = Depends(get_service),
    batches: BatchStore = Depends(get_batch_store),
):
    summary = _load(batches, job_id)
    item = _item(summary, index)
    try:
        await service.assign_bank(item, body.bank_id)
    except StatementError as e:
        raise http_error(e)
    batches.save(summary)
    return item


@router.post("/{job_id}/items/{index}/period", response_model=UploadItem)
async def enter_period(
    job_id: str,
    index: int,
    body: EnterPeriodRequest,
    service: StatementService = Depends(get_service),
    batches: BatchStore = Depends(get_batch_store),
):
    """Manual period entry; the item becomes matched without an engine call."""
    summary = _load(batches, job_id)
    item = _item(summary, index)
    try:
        await service.enter_period(item, body.period_text, bank_id=body.bank_id, closing_balance=body.closing_balance)
    except StatementError as e:
        raise http_error(e)
    batches.save(summary)
    return item


@router.post("/{job_id}/items/{index}/password", response_model=UploadItem)
async def provide_password(
    job_id: str,
    index: int,
    body: PasswordRequest,
    service: StatementService = Depends(get_service),
    batches: BatchStore = Depends(get_batch_store),
):
    summary = _load(batches, job_id)
    item = _item(summary, index)
    try:
        service.provide_password(item, body.password)
    except StatementError as e:
        raise http_error(e)
    batches.save(summary)
    return item


@router.post("/{job_id}/items/{index}/upload", response_model=SaveResult)
async def upload_item(
    job_id: str,
    index: int,
    body: UploadItemRequest,
    service: StatementService = Depends(get_service),
    batches: BatchStore = Depends(get_batch_store),
):
    """Store the item's document and reconcile its payload into statement records."""
    summary = _load(batches, job_id)
    item = _item(summary, index)
    try:
        result = await service.upload_item(item, kind=body.kind)
    except StatementError as e:
        raise http_error(e)
    batches.save(summary)
    return result


@router.post("/{job_id}/items/{index}/vouch", response_model=UploadItem)
async def vouch_item(
    job_id: str,
    index: int,
    service: StatementService = Depends(get_service),
    batches: BatchStore = Depends(get_batch_store),
):
    summary = _load(batches, job_id)
    item = _item(summary, index)
    try:
        service.vouch(item)
    except StatementError as e:
        raise http_error(e)
    batches.save(summary)
    return item
