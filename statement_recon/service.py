"""
Statement service: the engine API consumed by HTTP routes and workers.
Every operation takes explicit values and returns pydantic results; there is
no process-level state besides the injected stores.
"""

from decimal import Decimal
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

import structlog
from pydantic import BaseModel

from statement_recon.errors import (
    BankReferenceInvalid,
    InvalidTransition,
    RecordNotFound,
    SourceFileMissing,
)
from statement_recon.models.enums import StatementKind, UploadStatus
from statement_recon.pipeline import orchestrator
from statement_recon.pipeline.orchestrator import ExtractionPipeline, SequentialWorker, transition
from statement_recon.pipeline.period_parser import parse_statement_period
from statement_recon.pipeline.reconciliation import (
    ReconciliationEngine,
    ReconciliationResult,
    resolve_period,
)
from statement_recon.pipeline.statement_classifier import ClassificationResult, classify_statement
from statement_recon.pipeline.validation import (
    build_validation_status,
    validate_extraction,
    workflow_for,
)
from statement_recon.schemas.batches import BatchSummary, Job, UploadItem
from statement_recon.schemas.statements import (
    BankAccount,
    StatementDocument,
    StatementExtraction,
    StatementKey,
    StatementPeriod,
    StatementRecord,
    utcnow,
)
from statement_recon.storage.artifact_store import ObjectStore
from statement_recon.storage.bank_directory import BankDirectory
from statement_recon.storage.cycle_store import CycleService
from statement_recon.storage.paths import statement_document_path
from statement_recon.storage.record_store import RecordStore

logger = structlog.get_logger(__name__)


class SaveResult(BaseModel):
    classification: ClassificationResult
    reconciliation: ReconciliationResult
    storage_path: Optional[str] = None


class StatementService:

    def __init__(
        self,
        store: RecordStore,
        cycles: CycleService,
        objects: ObjectStore,
        banks: BankDirectory,
        pipeline: Optional[ExtractionPipeline] = None,
    ):
        self.store = store
        self.objects = objects
        self.banks = banks
        self.reconciler = ReconciliationEngine(store, cycles)
        self.worker = SequentialWorker(pipeline) if pipeline is not None else None

    # ── Pure helpers ─────────────────────────────────────────
    @staticmethod
    def parse_period(text: str) -> StatementPeriod:
        return parse_statement_period(text)

    @staticmethod
    def classify(
        extraction: StatementExtraction,
        explicit_kind: Optional[StatementKind] = None,
    ) -> ClassificationResult:
        return classify_statement(extraction, explicit_kind)

    async def _bank(self, bank_id: str) -> BankAccount:
        bank = await self.banks.get(bank_id)
        if bank is None:
            raise BankReferenceInvalid(f"Unknown bank: {bank_id}", context={"bank_id": bank_id})
        return bank

    async def _record(self, record_id: str) -> StatementRecord:
        record = await self.store.get(record_id)
        if record is None:
            raise RecordNotFound(f"Statement not found: {record_id}", context={"record_id": record_id})
        return record

    # ── Batches ──────────────────────────────────────────────
    async def submit_batch(
        self,
        items: Sequence[UploadItem],
        job: Optional[Job] = None,
        company_id: Optional[str] = None,
        stop_signal: Optional[Callable[[], bool]] = None,
        on_progress: Optional[Callable[[BatchSummary], None]] = None,
    ) -> BatchSummary:
        """Run extraction over a batch, one document at a time."""
        if self.worker is None:
            raise RuntimeError("StatementService was built without an extraction pipeline")
        banks = await self.banks.list_banks(company_id)
        return await self.worker.run(
            items, banks, job=job, company_id=company_id, stop_signal=stop_signal, on_progress=on_progress,
        )

    async def assign_bank(self, item: UploadItem, bank_id: str) -> UploadItem:
        return orchestrator.assign_bank(item, await self._bank(bank_id))

    async def enter_period(
        self,
        item: UploadItem,
        period: Union[StatementPeriod, str],
        bank_id: Optional[str] = None,
        closing_balance: Optional[Decimal] = None,
    ) -> UploadItem:
        if isinstance(period, str):
            period = parse_statement_period(period)
        bank = await self._bank(bank_id) if bank_id else None
        return orchestrator.enter_period(item, period, bank=bank, closing_balance=closing_balance)

    @staticmethod
    def provide_password(item: UploadItem, password: str) -> UploadItem:
        return orchestrator.provide_password(item, password)

    async def upload_item(self, item: UploadItem, kind: Optional[StatementKind] = None) -> SaveResult:
        """Store a matched item's document and reconcile its payload; the item becomes uploaded."""
        if item.matched_bank is None:
            raise BankReferenceInvalid(
                f"Upload item {item.index} has no bank", context={"item_index": item.index}
            )
        if item.status != UploadStatus.MATCHED or item.extracted is None:
            raise InvalidTransition(
                f"Upload item {item.index} is {item.status.value}; only matched items can be uploaded",
                context={"item_index": item.index, "from": item.status.value},
            )
        path = Path(item.document.path)
        if not path.is_file():
            raise SourceFileMissing(
                f"Source file not found: {item.document.path}",
                context={"item_index": item.index, "path": item.document.path},
            )

        result = await self.save_record(
            bank_id=item.matched_bank.id,
            extraction=item.extracted,
            kind=kind,
            document_bytes=path.read_bytes(),
            file_name=item.file_name,
            period=item.manual_period,
            password=item.password,
        )
        item.record_ids = result.reconciliation.record_ids
        if result.reconciliation.ok:
            transition(item, UploadStatus.UPLOADED)
        else:
            item.error = f"{len(result.reconciliation.failed)} month writes failed"
            item.error_code = "ERR_PARTIAL_BATCH"
        return result

    @staticmethod
    def vouch(item: UploadItem) -> UploadItem:
        return transition(item, UploadStatus.VOUCHED)

    # ── Records ──────────────────────────────────────────────
    async def save_record(
        self,
        bank_id: str,
        extraction: StatementExtraction,
        kind: Optional[StatementKind] = None,
        document_bytes: Optional[bytes] = None,
        file_name: Optional[str] = None,
        period: Optional[StatementPeriod] = None,
        password: Optional[str] = None,
    ) -> SaveResult:
        """
        Classify, store the document and reconcile.

        A multi-month payload is first saved as one combined record so the upload
        survives a crash mid-decomposition; reconciliation then splits it by month.
        The combined record only takes a free start-month key. A single-month
        record already there is merged into like every other month, keeping its
        id, validation and assignee.
        """
        bank = await self._bank(bank_id)
        classification = classify_statement(extraction, kind)
        span = resolve_period(extraction, period)

        storage_path = None
        document = StatementDocument(file_name=file_name, password=password, upload_date=utcnow())
        if document_bytes is not None:
            storage_path = statement_document_path(
                span.start_year, span.start_month, bank.company_name or bank.company_id, bank.bank_name,
                kind=classification.kind.value,
            )
            self.objects.put(storage_path, document_bytes)
            document.storage_path = storage_path
            document.document_size = len(document_bytes)

        aggregate = None
        if not span.is_single_month:
            start_key = StatementKey(
                bank_id=bank.id,
                statement_month=span.start_month,
                statement_year=span.start_year,
                statement_kind=classification.kind,
            )
            aggregate = await self._free_start_key(start_key, document, extraction, bank)

        reconciliation = await self.reconciler.reconcile(
            extraction, bank, classification.kind, document=document, period=span, aggregate=aggregate,
        )
        logger.info(
            "statement_saved",
            bank_id=bank.id,
            kind=classification.kind.value,
            label_conflict=classification.label_conflict,
            records=len(reconciliation.record_ids),
            failed=len(reconciliation.failed),
        )
        return SaveResult(classification=classification, reconciliation=reconciliation, storage_path=storage_path)

    async def _free_start_key(
        self,
        key: StatementKey,
        document: StatementDocument,
        extraction: StatementExtraction,
        bank: BankAccount,
    ) -> Optional[StatementRecord]:
        """Combined record to split, or None when the start month is already its own record."""
        existing = await self.store.find_by_key(key)
        if existing is None:
            return await self.store.insert(StatementRecord(
                bank_id=bank.id,
                company_id=bank.company_id,
                statement_month=key.statement_month,
                statement_year=key.statement_year,
                statement_kind=key.statement_kind,
                statement_document=document,
                statement_extractions=extraction,
            ))
        if len(existing.statement_extractions.monthly_balances) > 1:
            # Left behind by an earlier partial run; refresh it and split again
            return await self.store.update(existing.model_copy(update={
                "statement_document": document,
                "statement_extractions": extraction,
                "updated_at": utcnow(),
            }))
        return None

    async def get_record(self, record_id: str) -> StatementRecord:
        return await self._record(record_id)

    async def list_records(
        self,
        bank_id: Optional[str] = None,
        company_id: Optional[str] = None,
        month: Optional[int] = None,
        year: Optional[int] = None,
        kind: Optional[StatementKind] = None,
    ) -> list[StatementRecord]:
        return await self.store.filter(
            bank_id=bank_id,
            company_id=company_id,
            statement_month=month,
            statement_year=year,
            statement_kind=kind,
        )

    async def verify_balance(
        self,
        record_id: str,
        month: int,
        year: int,
        verifier: str,
        verified: bool = True,
    ) -> StatementRecord:
        """Mark exactly one MonthlyBalance as verified (or clear it)."""
        record = await self._record(record_id)
        balance = record.statement_extractions.balance_for(month, year)
        if balance is None:
            raise RecordNotFound(
                f"No balance for {month:02d}/{year} on statement {record_id}",
                context={"record_id": record_id, "month": month, "year": year},
            )
        balance.is_verified = verified
        balance.verified_by = verifier if verified else None
        balance.verified_at = utcnow() if verified else None
        record.updated_at = utcnow()
        stored = await self.store.update(record)
        logger.info("balance_verified", record_id=record_id, month=month, year=year, verified=verified)
        return stored

    async def validate_record(self, record_id: str, validator: Optional[str]) -> StatementRecord:
        record = await self._record(record_id)
        bank = await self._bank(record.bank_id)
        outcome = validate_extraction(record.statement_extractions, bank)
        record.validation_status = build_validation_status(outcome, validator)
        record.status = workflow_for(outcome, record.status)
        record.updated_at = utcnow()
        stored = await self.store.update(record)
        logger.info(
            "statement_validated",
            record_id=record_id,
            is_validated=outcome.is_validated,
            mismatches=len(outcome.mismatches),
        )
        return stored

    async def delete_record(self, bank_id: str, month: int, year: int, kind: StatementKind) -> StatementRecord:
        """Delete one record of one kind. The stored document goes too when nothing else uses it."""
        key = StatementKey(bank_id=bank_id, statement_month=month, statement_year=year, statement_kind=kind)
        record = await self.store.find_by_key(key)
        if record is None:
            raise RecordNotFound(f"Statement not found for {key}", context={"key": str(key)})

        await self.store.delete_where(key)
        path = record.statement_document.storage_path
        if path and not await self.store.references_document(path, exclude_id=record.id):
            self.objects.delete(path)
        logger.info("statement_deleted", key=str(key), storage_path=path)
        return record

    async def document_url(self, record_id: str, expires_in: Optional[int] = None) -> str:
        record = await self._record(record_id)
        path = record.statement_document.storage_path
        if not path:
            raise RecordNotFound(
                f"Statement {record_id} has no stored document", context={"record_id": record_id}
            )
        return self.objects.signed_url(path, expires_in)
