"""
Tests for the in-memory and SQLAlchemy record stores.
Both must enforce one record per (bank, month, year, kind).
"""

from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from statement_recon.errors import PersistenceConflict, RecordNotFound
from statement_recon.models.database import Base
from statement_recon.models.enums import StatementKind
from statement_recon.schemas.statements import (
    MonthlyBalance,
    StatementDocument,
    StatementExtraction,
    StatementKey,
    StatementRecord,
)
from statement_recon.storage.cycle_store import SqlCycleService
from statement_recon.storage.record_store import InMemoryRecordStore
from statement_recon.storage.sql_record_store import SqlRecordStore


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'statements.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture(params=["memory", "sql"])
async def store(request, session_factory):
    if request.param == "memory":
        return InMemoryRecordStore()
    return SqlRecordStore(session_factory)


def _record(month=2, kind=StatementKind.MONTHLY, closing="1760.00", path=None) -> StatementRecord:
    return StatementRecord(
        bank_id="bank-kcb",
        company_id="co-1",
        statement_month=month,
        statement_year=2024,
        statement_kind=kind,
        statement_document=StatementDocument(storage_path=path),
        statement_extractions=StatementExtraction(
            bank_name="KCB",
            monthly_balances=[MonthlyBalance(month=month, year=2024, closing_balance=Decimal(closing))],
        ),
    )


def _key(month=2, kind=StatementKind.MONTHLY) -> StatementKey:
    return StatementKey(bank_id="bank-kcb", statement_month=month, statement_year=2024, statement_kind=kind)


class TestRecordStore:

    async def test_insert_and_find(self, store):
        record = await store.insert(_record())

        found = await store.find_by_key(_key())
        assert found.id == record.id
        assert found.statement_extractions.monthly_balances[0].closing_balance == Decimal("1760.00")
        assert (await store.get(record.id)).bank_id == "bank-kcb"

    async def test_duplicate_key_conflicts(self, store):
        await store.insert(_record())
        with pytest.raises(PersistenceConflict):
            await store.insert(_record())

    async def test_kinds_coexist(self, store):
        await store.insert(_record(kind=StatementKind.MONTHLY))
        await store.insert(_record(kind=StatementKind.RANGE))

        records = await store.filter(bank_id="bank-kcb", statement_month=2)
        assert [r.statement_kind for r in records] == [StatementKind.MONTHLY, StatementKind.RANGE]
        assert len(await store.filter(statement_kind=StatementKind.RANGE)) == 1

    async def test_upsert_keeps_identity(self, store):
        original, created = await store.upsert(_record())
        assert created

        replaced, created = await store.upsert(_record(closing="1800.00"))
        assert not created
        assert replaced.id == original.id

        stored = await store.find_by_key(_key())
        assert stored.id == original.id
        assert stored.statement_extractions.monthly_balances[0].closing_balance == Decimal("1800.00")

    async def test_update_missing(self, store):
        with pytest.raises(RecordNotFound):
            await store.update(_record())

    async def test_delete_where_is_kind_scoped(self, store):
        await store.insert(_record(kind=StatementKind.MONTHLY))
        await store.insert(_record(kind=StatementKind.RANGE))

        assert await store.delete_where(_key(kind=StatementKind.MONTHLY)) == 1
        assert await store.delete_where(_key(kind=StatementKind.MONTHLY)) == 0
        assert await store.find_by_key(_key(kind=StatementKind.RANGE)) is not None

    async def test_delete_by_id(self, store):
        record = await store.insert(_record())
        assert await store.delete(record.id)
        assert not await store.delete(record.id)
        assert await store.get(record.id) is None

    async def test_document_references(self, store):
        first = await store.insert(_record(month=1, path="docs/q1.pdf"))
        await store.insert(_record(month=2, path="docs/q1.pdf"))

        assert await store.references_document("docs/q1.pdf", exclude_id=first.id)
        assert not await store.references_document("docs/other.pdf")


class TestInMemoryIsolation:

    async def test_returned_records_are_copies(self):
        store = InMemoryRecordStore()
        record = await store.insert(_record())

        fetched = await store.get(record.id)
        fetched.statement_extractions.monthly_balances[0].is_verified = True

        again = await store.get(record.id)
        assert not again.statement_extractions.monthly_balances[0].is_verified


class TestSqlCycleService:

    async def test_resolve_is_stable(self, session_factory):
        cycles = SqlCycleService(session_factory)

        first = await cycles.resolve_cycle(2024, 2, StatementKind.MONTHLY)
        second = await cycles.resolve_cycle(2024, 2, StatementKind.RANGE)

        assert first.id == second.id
        assert first.month_year == "2024-02"
        assert (await cycles.resolve_cycle(2024, 3, StatementKind.MONTHLY)).id != first.id
