"""
Tests for writing classified extractions into per-month statement records.
"""

from decimal import Decimal

import pytest

from statement_recon.errors import ParseError, PartialBatchFailure, PersistenceConflict
from statement_recon.models.enums import ReconcileOutcome, StatementKind
from statement_recon.pipeline.reconciliation import (
    ReconciliationEngine,
    merge_balance,
    month_slice,
    resolve_period,
)
from statement_recon.pipeline.month_range import MonthRef
from statement_recon.schemas.statements import (
    MonthlyBalance,
    StatementDocument,
    StatementExtraction,
    StatementPeriod,
    StatementRecord,
    ValidationStatus,
    WorkflowStatus,
)
from statement_recon.storage.record_store import InMemoryRecordStore


class FlakyRecordStore(InMemoryRecordStore):
    """Rejects inserts for the listed months."""

    def __init__(self, failing_months):
        super().__init__()
        self.failing_months = set(failing_months)

    async def insert(self, record):
        if record.statement_month in self.failing_months:
            raise PersistenceConflict(f"write refused for month {record.statement_month}")
        return await super().insert(record)


@pytest.fixture
def reconciler(record_store, cycles):
    return ReconciliationEngine(record_store, cycles)


def _closings(records):
    return [(r.statement_month, [b.closing_balance for b in r.statement_extractions.monthly_balances]) for r in records]


class TestResolvePeriod:

    def test_explicit_period_wins(self, range_extraction):
        period = StatementPeriod.single(2, 2024)
        assert resolve_period(range_extraction, period) is period

    def test_from_period_text(self, range_extraction):
        period = resolve_period(range_extraction)
        assert (period.start_month, period.end_month) == (1, 3)

    def test_from_balances_when_text_missing(self, range_extraction):
        extraction = range_extraction.model_copy(update={"statement_period": None})
        period = resolve_period(extraction)
        assert (period.start_month, period.start_year, period.end_month, period.end_year) == (1, 2024, 3, 2024)

    def test_nothing_to_go_on(self):
        with pytest.raises(ParseError):
            resolve_period(StatementExtraction(statement_period="sometime"))


class TestSlicing:

    def test_slice_keeps_metadata_and_one_balance(self, range_extraction):
        sliced = month_slice(range_extraction, MonthRef(2, 2024), "parent-1")
        assert sliced.bank_name == range_extraction.bank_name
        assert sliced.parent_statement_id == "parent-1"
        assert [b.month for b in sliced.monthly_balances] == [2]
        assert len(range_extraction.monthly_balances) == 3

    def test_missing_month_gets_placeholder(self, range_extraction):
        sliced = month_slice(range_extraction, MonthRef(4, 2024), None)
        balance = sliced.monthly_balances[0]
        assert (balance.month, balance.year) == (4, 2024)
        assert balance.closing_balance is None

    def test_merge_replaces_same_month_only(self):
        existing = StatementExtraction(monthly_balances=[
            MonthlyBalance(month=12, year=2023, closing_balance=Decimal("1.00")),
            MonthlyBalance(month=1, year=2024, closing_balance=Decimal("2.00")),
        ])
        merged = merge_balance(existing, MonthlyBalance(month=1, year=2024, closing_balance=Decimal("3.00")))
        assert [(b.month, b.closing_balance) for b in merged.monthly_balances] == [
            (12, Decimal("1.00")), (1, Decimal("3.00")),
        ]


class TestRangeDecomposition:

    async def test_one_record_per_month(self, reconciler, record_store, range_extraction, kcb_bank):
        result = await reconciler.reconcile(range_extraction, kcb_bank, StatementKind.RANGE)

        records = await record_store.filter(bank_id=kcb_bank.id)
        assert len(records) == 3
        assert all(r.statement_kind == StatementKind.RANGE for r in records)
        assert _closings(records) == [
            (1, [Decimal("1500.00")]),
            (2, [Decimal("1750.50")]),
            (3, [Decimal("900.25")]),
        ]
        assert [w.outcome for w in result.writes] == [ReconcileOutcome.CREATED] * 3
        assert result.ok
        assert not result.aggregate_deleted

    async def test_aggregate_record_is_replaced(self, reconciler, record_store, range_extraction, kcb_bank):
        aggregate = await record_store.insert(StatementRecord(
            bank_id=kcb_bank.id,
            statement_month=1,
            statement_year=2024,
            statement_kind=StatementKind.RANGE,
            statement_extractions=range_extraction,
        ))

        result = await reconciler.reconcile(range_extraction, kcb_bank, StatementKind.RANGE, aggregate=aggregate)

        assert result.aggregate_deleted
        assert await record_store.get(aggregate.id) is None
        records = await record_store.filter(bank_id=kcb_bank.id)
        assert len(records) == 3
        assert all(len(r.statement_extractions.monthly_balances) == 1 for r in records)
        assert records[0].statement_extractions.parent_statement_id == aggregate.id
        assert [w.month for w in result.writes] == [1, 2, 3]

    async def test_aggregate_of_other_kind_untouched(self, reconciler, record_store, range_extraction, kcb_bank):
        monthly = await record_store.insert(StatementRecord(
            bank_id=kcb_bank.id,
            statement_month=1,
            statement_year=2024,
            statement_kind=StatementKind.MONTHLY,
        ))

        result = await reconciler.reconcile(range_extraction, kcb_bank, StatementKind.RANGE, aggregate=monthly)

        assert not result.aggregate_deleted
        assert await record_store.get(monthly.id) is not None
        assert len(await record_store.filter(bank_id=kcb_bank.id)) == 4

    async def test_idempotent(self, reconciler, record_store, range_extraction, kcb_bank):
        await reconciler.reconcile(range_extraction, kcb_bank, StatementKind.RANGE)
        before = _closings(await record_store.filter(bank_id=kcb_bank.id))

        result = await reconciler.reconcile(range_extraction, kcb_bank, StatementKind.RANGE)

        assert [w.outcome for w in result.writes] == [ReconcileOutcome.UPDATED] * 3
        assert _closings(await record_store.filter(bank_id=kcb_bank.id)) == before

    async def test_existing_record_keeps_other_months(self, reconciler, record_store, range_extraction, kcb_bank):
        existing = await record_store.insert(StatementRecord(
            bank_id=kcb_bank.id,
            statement_month=2,
            statement_year=2024,
            statement_kind=StatementKind.RANGE,
            statement_document=StatementDocument(storage_path="statement_documents/old.pdf"),
            statement_extractions=StatementExtraction(monthly_balances=[
                MonthlyBalance(month=2, year=2024, closing_balance=Decimal("1.00")),
                MonthlyBalance(month=12, year=2023, closing_balance=Decimal("99.00")),
            ]),
        ))

        await reconciler.reconcile(
            range_extraction, kcb_bank, StatementKind.RANGE,
            document=StatementDocument(storage_path="statement_documents/new.pdf"),
        )

        record = await record_store.get(existing.id)
        assert record.statement_extractions.balance_for(2, 2024).closing_balance == Decimal("1750.50")
        assert record.statement_extractions.balance_for(12, 2023).closing_balance == Decimal("99.00")
        assert record.statement_document.storage_path == "statement_documents/old.pdf"

    async def test_months_without_balance_get_placeholders(self, reconciler, record_store, range_extraction, kcb_bank):
        extraction = range_extraction.model_copy(update={
            "monthly_balances": [range_extraction.monthly_balances[0], range_extraction.monthly_balances[2]],
        })

        await reconciler.reconcile(extraction, kcb_bank, StatementKind.RANGE)

        records = await record_store.filter(bank_id=kcb_bank.id)
        assert _closings(records) == [
            (1, [Decimal("1500.00")]),
            (2, [None]),
            (3, [Decimal("900.25")]),
        ]

    async def test_cycle_shared_across_kinds(self, reconciler, record_store, range_extraction, february_extraction, kcb_bank):
        await reconciler.reconcile(range_extraction, kcb_bank, StatementKind.RANGE)
        await reconciler.reconcile(february_extraction, kcb_bank, StatementKind.MONTHLY)

        february = await record_store.filter(bank_id=kcb_bank.id, statement_month=2)
        assert len(february) == 2
        assert february[0].statement_cycle_id == february[1].statement_cycle_id


class TestSingleMonth:

    async def test_upsert_replaces_payload_and_resets_validation(
        self, reconciler, record_store, february_extraction, kcb_bank,
    ):
        first = await reconciler.reconcile(february_extraction, kcb_bank, StatementKind.MONTHLY)
        record_id = first.writes[0].record_id

        stored = await record_store.get(record_id)
        stored.validation_status = ValidationStatus(is_validated=True, mismatches=["old"])
        stored.status = WorkflowStatus(assigned_to="alice")
        await record_store.update(stored)

        changed = february_extraction.model_copy(update={
            "monthly_balances": [MonthlyBalance(month=2, year=2024, closing_balance=Decimal("1800.00"))],
        })
        second = await reconciler.reconcile(changed, kcb_bank, StatementKind.MONTHLY)

        assert second.writes[0].outcome == ReconcileOutcome.UPDATED
        assert second.writes[0].record_id == record_id
        record = await record_store.get(record_id)
        assert record.statement_extractions.monthly_balances[0].closing_balance == Decimal("1800.00")
        assert not record.validation_status.is_validated
        assert record.validation_status.mismatches == []
        assert record.status.assigned_to == "alice"
        assert record.created_at == stored.created_at

    async def test_record_carries_bank_company(self, reconciler, record_store, february_extraction, kcb_bank):
        result = await reconciler.reconcile(february_extraction, kcb_bank, StatementKind.MONTHLY)
        record = await record_store.get(result.record_ids[0])
        assert record.company_id == "co-1"
        assert record.statement_cycle_id is not None


class TestPartialFailure:

    async def test_failed_month_does_not_roll_back_others(self, cycles, range_extraction, kcb_bank):
        store = FlakyRecordStore(failing_months={2})
        result = await ReconciliationEngine(store, cycles).reconcile(range_extraction, kcb_bank, StatementKind.RANGE)

        assert [w.outcome for w in result.writes] == [
            ReconcileOutcome.CREATED, ReconcileOutcome.FAILED, ReconcileOutcome.CREATED,
        ]
        assert result.failed[0].error_code == "ERR_PERSISTENCE_CONFLICT"
        assert len(await store.filter()) == 2

        with pytest.raises(PartialBatchFailure) as exc_info:
            result.raise_for_failures()
        failures = exc_info.value.failures
        assert [(f["month"], f["year"]) for f in failures] == [(2, 2024)]
        assert failures[0]["key"] == "bank-kcb:2024-02:range"

    async def test_aggregate_kept_when_a_month_fails(self, cycles, range_extraction, kcb_bank):
        store = FlakyRecordStore(failing_months={3})
        aggregate = await store.insert(StatementRecord(
            bank_id=kcb_bank.id,
            statement_month=1,
            statement_year=2024,
            statement_kind=StatementKind.RANGE,
            statement_extractions=range_extraction,
        ))

        result = await ReconciliationEngine(store, cycles).reconcile(
            range_extraction, kcb_bank, StatementKind.RANGE, aggregate=aggregate,
        )

        assert not result.aggregate_deleted
        assert await store.get(aggregate.id) is not None
        outcomes = {w.month: (w.outcome, w.error_code) for w in result.writes}
        assert outcomes[1] == (ReconcileOutcome.FAILED, "ERR_AGGREGATE_KEPT")
        assert outcomes[2] == (ReconcileOutcome.CREATED, None)
        assert outcomes[3][0] == ReconcileOutcome.FAILED

    def test_clean_result_does_not_raise(self):
        from statement_recon.pipeline.reconciliation import ReconciliationResult

        ReconciliationResult(
            bank_id="bank-kcb", kind=StatementKind.MONTHLY, period=StatementPeriod.single(1, 2024),
        ).raise_for_failures()
