"""
/api/v1/statements endpoints.
Period parsing, classification, saving, verification, validation and deletion
of per-month statement records.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response

from statement_recon.config import settings
from statement_recon.dependencies import (
    get_artifact_store,
    get_service,
    http_error,
    verify_api_key,
)
from statement_recon.errors import StatementError
from statement_recon.models.enums import StatementKind
from statement_recon.pipeline.statement_classifier import ClassificationResult
from statement_recon.schemas.api import (
    ClassifyRequest,
    ParsePeriodRequest,
    SaveStatementRequest,
    SignedUrlResponse,
    ValidateRequest,
    VerifyBalanceRequest,
)
from statement_recon.schemas.statements import StatementPeriod, StatementRecord
from statement_recon.service import SaveResult, StatementService
from statement_recon.storage.artifact_store import ArtifactStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/statements", tags=["statements"])
protected = [Depends(verify_api_key)]


@router.get("/documents/{path:path}")
async def download_document(
    path: str,
    expires: int = Query(...),
    signature: str = Query(...),
    store: ArtifactStore = Depends(get_artifact_store),
):
    """Serve a stored statement PDF to holders of a valid signed URL."""
    if not store.verify_signed_url(path, expires, signature):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired signature")
    try:
        data = store.get(path)
    except FileNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return Response(content=data, media_type="application/pdf")


@router.post("/parse-period", response_model=StatementPeriod, dependencies=protected)
async def parse_period(body: ParsePeriodRequest, service: StatementService = Depends(get_service)):
    try:
        return service.parse_period(body.text)
    except StatementError as e:
        raise http_error(e)


@router.post("/classify", response_model=ClassificationResult, dependencies=protected)
async def classify(body: ClassifyRequest, service: StatementService = Depends(get_service)):
    return service.classify(body.extraction, body.explicit_kind)


@router.post("", response_model=SaveResult, status_code=status.HTTP_201_CREATED, dependencies=protected)
async def save_statement(body: SaveStatementRequest, service: StatementService = Depends(get_service)):
    """Reconcile an extraction payload into per-month records."""
    try:
        period = service.parse_period(body.period_text) if body.period_text else None
        return await service.save_record(
            bank_id=body.bank_id,
            extraction=body.extraction,
            kind=body.kind,
            period=period,
        )
    except StatementError as e:
        raise http_error(e)


@router.get("", response_model=list[StatementRecord], dependencies=protected)
async def list_statements(
    bank_id: Optional[str] = Query(None),
    company_id: Optional[str] = Query(None),
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None),
    kind: Optional[StatementKind] = Query(None),
    service: StatementService = Depends(get_service),
):
    return await service.list_records(bank_id=bank_id, company_id=company_id, month=month, year=year, kind=kind)


@router.get("/{record_id}", response_model=StatementRecord, dependencies=protected)
async def get_statement(record_id: str, service: StatementService = Depends(get_service)):
    try:
        return await service.get_record(record_id)
    except StatementError as e:
        raise http_error(e)


@router.get("/{record_id}/document-url", response_model=SignedUrlResponse, dependencies=protected)
async def document_url(
    record_id: str,
    expires_in: Optional[int] = Query(None, ge=1, le=86400),
    service: StatementService = Depends(get_service),
):
    ttl = expires_in or settings.SIGNED_URL_TTL_SECONDS
    try:
        url = await service.document_url(record_id, ttl)
    except StatementError as e:
        raise http_error(e)
    return SignedUrlResponse(url=url, expires_in=ttl)


@router.post("/{record_id}/balances/{year}/{month}/verify", response_model=StatementRecord, dependencies=protected)
async def verify_balance(
    record_id: str,
    year: int,
    month: int,
    body: VerifyBalanceRequest,
    service: StatementService = Depends(get_service),
):
    try:
        return await service.verify_balance(record_id, month, year, body.verifier, verified=body.verified)
    except StatementError as e:
        raise http_error(e)


@router.post("/{record_id}/validate", response_model=StatementRecord, dependencies=protected)
async def validate_statement(
    record_id: str,
    body: ValidateRequest,
    service: StatementService = Depends(get_service),
):
    try:
        return await service.validate_record(record_id, body.validator)
    except StatementError as e:
        raise http_error(e)


@router.delete("/{bank_id}/{year}/{month}/{kind}", response_model=StatementRecord, dependencies=protected)
async def delete_statement(
    bank_id: str,
    year: int,
    month: int,
    kind: StatementKind,
    service: StatementService = Depends(get_service),
):
    """Delete one record; a record of the other kind for the same month is untouched."""
    try:
        return await service.delete_record(bank_id, month, year, kind)
    except StatementError as e:
        raise http_error(e)
