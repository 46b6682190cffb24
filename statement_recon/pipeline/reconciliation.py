"""
Reconciliation engine: writes a classified extraction into the per-month record store.

Single-month path: upsert one record keyed by (bank, month, year, kind).
Multi-month path: one record per month in the span, each holding only its own
balance, merged into any existing record of the same kind; the combined record
that was decomposed is deleted once every month is written.

Months are independent round-trips with no enclosing transaction. A failed
month is reported in the result and never rolls back months already written.
"""

from typing import Optional

import structlog
from pydantic import BaseModel

from statement_recon.errors import ParseError, PartialBatchFailure
from statement_recon.models.enums import ReconcileOutcome, StatementKind
from statement_recon.observability.metrics import reconciliation_writes_total
from statement_recon.pipeline.month_range import MonthRef, check_span_limit, generate_month_range
from statement_recon.pipeline.period_parser import try_parse_statement_period
from statement_recon.schemas.statements import (
    BankAccount,
    MonthlyBalance,
    StatementDocument,
    StatementExtraction,
    StatementKey,
    StatementPeriod,
    StatementRecord,
    ValidationStatus,
    WorkflowStatus,
    utcnow,
)
from statement_recon.storage.cycle_store import CycleService
from statement_recon.storage.record_store import RecordStore

logger = structlog.get_logger(__name__)


class MonthWrite(BaseModel):
    month: int
    year: int
    outcome: ReconcileOutcome
    record_id: Optional[str] = None
    error_code: Optional[str] = None
    error: Optional[str] = None


class ReconciliationResult(BaseModel):
    bank_id: str
    kind: StatementKind
    period: StatementPeriod
    writes: list[MonthWrite] = []
    aggregate_deleted: bool = False

    @property
    def created(self) -> list[MonthWrite]:
        return [w for w in self.writes if w.outcome == ReconcileOutcome.CREATED]

    @property
    def updated(self) -> list[MonthWrite]:
        return [w for w in self.writes if w.outcome == ReconcileOutcome.UPDATED]

    @property
    def failed(self) -> list[MonthWrite]:
        return [w for w in self.writes if w.outcome == ReconcileOutcome.FAILED]

    @property
    def record_ids(self) -> list[str]:
        return [w.record_id for w in self.writes if w.record_id]

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> None:
        if not self.failed:
            return
        failures = [
            {
                "month": w.month,
                "year": w.year,
                "key": str(StatementKey(
                    bank_id=self.bank_id,
                    statement_month=w.month,
                    statement_year=w.year,
                    statement_kind=self.kind,
                )),
                "error_code": w.error_code,
                "message": w.error,
            }
            for w in self.failed
        ]
        raise PartialBatchFailure(
            f"{len(failures)} of {len(self.writes)} month writes failed for bank {self.bank_id}",
            failures=failures,
        )


def resolve_period(extraction: StatementExtraction, period: Optional[StatementPeriod] = None) -> StatementPeriod:
    """
    Explicit period, else the parsed period text, else the span of the extracted balances.
    Raises ParseError when none applies or the span is past the month ceiling.
    """
    if period is not None:
        return check_span_limit(period)
    parsed = try_parse_statement_period(extraction.statement_period)
    if parsed is not None:
        return parsed
    if extraction.monthly_balances:
        months = sorted((b.year, b.month) for b in extraction.monthly_balances)
        return check_span_limit(StatementPeriod(
            start_month=months[0][1], start_year=months[0][0],
            end_month=months[-1][1], end_year=months[-1][0],
        ))
    raise ParseError(extraction.statement_period or "")


def month_slice(extraction: StatementExtraction, ref: MonthRef, parent_id: Optional[str]) -> StatementExtraction:
    """Shared metadata plus this month's balance only. Missing months get an empty placeholder."""
    balance = extraction.balance_for(ref.month, ref.year)
    if balance is None:
        balance = MonthlyBalance(month=ref.month, year=ref.year)
    return extraction.model_copy(update={
        "monthly_balances": [balance.model_copy()],
        "parent_statement_id": parent_id,
    })


def merge_balance(existing: StatementExtraction, balance: MonthlyBalance) -> StatementExtraction:
    """Replace the same-month entry or append; entries for other months are kept."""
    merged = []
    replaced = False
    for current in existing.monthly_balances:
        if current.matches(balance.month, balance.year):
            merged.append(balance)
            replaced = True
        else:
            merged.append(current)
    if not replaced:
        merged.append(balance)
    return existing.model_copy(update={"monthly_balances": merged})


class ReconciliationEngine:
    """Writes extractions into a RecordStore, resolving statement cycles as it goes."""

    def __init__(self, store: RecordStore, cycles: CycleService):
        self.store = store
        self.cycles = cycles

    async def reconcile(
        self,
        extraction: StatementExtraction,
        bank: BankAccount,
        kind: StatementKind,
        document: Optional[StatementDocument] = None,
        period: Optional[StatementPeriod] = None,
        aggregate: Optional[StatementRecord] = None,
    ) -> ReconciliationResult:
        """
        Persist an extraction for one bank and statement kind.

        `aggregate` is an already-stored combined record for the same upload;
        it is removed once its months have been written separately.
        Raises ParseError when no period can be determined.
        """
        span = resolve_period(extraction, period)
        months = generate_month_range(span)
        document = document or StatementDocument()
        result = ReconciliationResult(bank_id=bank.id, kind=kind, period=span)

        log = logger.bind(bank_id=bank.id, kind=kind.value, months=len(months))

        if len(months) == 1:
            result.writes.append(await self._write_single(extraction, bank, kind, document, months[0]))
            log.info("reconciliation_complete", failed=len(result.failed))
            return result

        aggregate_id = aggregate.id if aggregate is not None and aggregate.statement_kind == kind else None
        deferred: Optional[MonthRef] = None

        for ref in months:
            if aggregate is not None and aggregate_id and (ref.month, ref.year) == (
                aggregate.statement_month, aggregate.statement_year
            ):
                # The combined record holds this month's key; write it after the others exist
                deferred = ref
                continue
            result.writes.append(
                await self._write_month(extraction, bank, kind, document, ref, aggregate_id)
            )

        if aggregate_id:
            if result.failed:
                log.warning("aggregate_kept", aggregate_id=aggregate_id, failed=len(result.failed))
                if deferred is not None:
                    result.writes.append(MonthWrite(
                        month=deferred.month, year=deferred.year,
                        outcome=ReconcileOutcome.FAILED,
                        record_id=aggregate_id,
                        error_code="ERR_AGGREGATE_KEPT",
                        error="Combined record kept because other months failed",
                    ))
            else:
                result.aggregate_deleted = await self.store.delete(aggregate_id)
                log.info("aggregate_deleted", aggregate_id=aggregate_id)
                if deferred is not None:
                    result.writes.append(
                        await self._write_month(extraction, bank, kind, document, deferred, aggregate_id)
                    )

        result.writes.sort(key=lambda w: (w.year, w.month))
        log.info(
            "reconciliation_complete",
            created=len(result.created),
            updated=len(result.updated),
            failed=len(result.failed),
            aggregate_deleted=result.aggregate_deleted,
        )
        return result

    async def _write_single(
        self,
        extraction: StatementExtraction,
        bank: BankAccount,
        kind: StatementKind,
        document: StatementDocument,
        ref: MonthRef,
    ) -> MonthWrite:
        try:
            cycle = await self.cycles.resolve_cycle(ref.year, ref.month, kind)
            key = StatementKey(
                bank_id=bank.id, statement_month=ref.month, statement_year=ref.year, statement_kind=kind,
            )
            previous = await self.store.find_by_key(key)
            record = StatementRecord(
                bank_id=bank.id,
                company_id=bank.company_id,
                statement_cycle_id=cycle.id,
                statement_month=ref.month,
                statement_year=ref.year,
                statement_kind=kind,
                statement_document=document,
                statement_extractions=extraction,
                validation_status=ValidationStatus(),
                status=WorkflowStatus(assigned_to=previous.status.assigned_to if previous else None),
            )
            stored, created = await self.store.upsert(record)
        except Exception as e:
            return self._failed(ref, kind, bank, e)

        outcome = ReconcileOutcome.CREATED if created else ReconcileOutcome.UPDATED
        reconciliation_writes_total.labels(kind=kind.value, outcome=outcome.value).inc()
        return MonthWrite(month=ref.month, year=ref.year, outcome=outcome, record_id=stored.id)

    async def _write_month(
        self,
        extraction: StatementExtraction,
        bank: BankAccount,
        kind: StatementKind,
        document: StatementDocument,
        ref: MonthRef,
        parent_id: Optional[str],
    ) -> MonthWrite:
        sliced = month_slice(extraction, ref, parent_id)
        try:
            cycle = await self.cycles.resolve_cycle(ref.year, ref.month, kind)
            key = StatementKey(
                bank_id=bank.id, statement_month=ref.month, statement_year=ref.year, statement_kind=kind,
            )
            existing = await self.store.find_by_key(key)

            if existing is None:
                stored = await self.store.insert(StatementRecord(
                    bank_id=bank.id,
                    company_id=bank.company_id,
                    statement_cycle_id=cycle.id,
                    statement_month=ref.month,
                    statement_year=ref.year,
                    statement_kind=kind,
                    statement_document=document,
                    statement_extractions=sliced,
                ))
                outcome = ReconcileOutcome.CREATED
            else:
                merged = merge_balance(existing.statement_extractions, sliced.monthly_balances[0])
                stored = await self.store.update(existing.model_copy(update={
                    "statement_cycle_id": existing.statement_cycle_id or cycle.id,
                    "statement_document": (
                        existing.statement_document if existing.statement_document.storage_path else document
                    ),
                    "statement_extractions": merged,
                    "updated_at": utcnow(),
                }))
                outcome = ReconcileOutcome.UPDATED
        except Exception as e:
            return self._failed(ref, kind, bank, e)

        reconciliation_writes_total.labels(kind=kind.value, outcome=outcome.value).inc()
        return MonthWrite(month=ref.month, year=ref.year, outcome=outcome, record_id=stored.id)

    def _failed(self, ref: MonthRef, kind: StatementKind, bank: BankAccount, error: Exception) -> MonthWrite:
        reconciliation_writes_total.labels(kind=kind.value, outcome=ReconcileOutcome.FAILED.value).inc()
        logger.error(
            "reconciliation_month_failed",
            bank_id=bank.id,
            month=ref.month,
            year=ref.year,
            kind=kind.value,
            error=str(error),
        )
        return MonthWrite(
            month=ref.month,
            year=ref.year,
            outcome=ReconcileOutcome.FAILED,
            error_code=getattr(error, "error_code", "ERR_PERSISTENCE"),
            error=str(error),
        )
