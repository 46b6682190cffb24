"""
SQLAlchemy-backed RecordStore.
Uniqueness of (bank, month, year, kind) is enforced by the database constraint;
IntegrityError on insert surfaces as PersistenceConflict.
"""

from typing import Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from statement_recon.errors import PersistenceConflict, RecordNotFound
from statement_recon.models.enums import StatementKind
from statement_recon.models.tables import BankStatementRow
from statement_recon.schemas.statements import (
    StatementDocument,
    StatementExtraction,
    StatementKey,
    StatementRecord,
    ValidationStatus,
    WorkflowStatus,
)
from statement_recon.storage.record_store import RecordStore

logger = structlog.get_logger(__name__)


def _row_values(record: StatementRecord) -> dict:
    return {
        "id": record.id,
        "bank_id": record.bank_id,
        "company_id": record.company_id,
        "statement_cycle_id": record.statement_cycle_id,
        "statement_month": record.statement_month,
        "statement_year": record.statement_year,
        "statement_kind": record.statement_kind.value,
        "statement_document": record.statement_document.model_dump(mode="json"),
        "statement_extractions": record.statement_extractions.model_dump(mode="json"),
        "validation_status": record.validation_status.model_dump(mode="json"),
        "status": record.status.model_dump(mode="json"),
        "has_soft_copy": record.has_soft_copy,
        "has_hard_copy": record.has_hard_copy,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


def _to_record(row: BankStatementRow) -> StatementRecord:
    return StatementRecord(
        id=row.id,
        bank_id=row.bank_id,
        company_id=row.company_id,
        statement_cycle_id=row.statement_cycle_id,
        statement_month=row.statement_month,
        statement_year=row.statement_year,
        statement_kind=StatementKind(row.statement_kind),
        statement_document=StatementDocument.model_validate(row.statement_document or {}),
        statement_extractions=StatementExtraction.model_validate(row.statement_extractions or {}),
        validation_status=ValidationStatus.model_validate(row.validation_status or {}),
        status=WorkflowStatus.model_validate(row.status or {}),
        has_soft_copy=row.has_soft_copy,
        has_hard_copy=row.has_hard_copy,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _key_clause(key: StatementKey):
    return (
        (BankStatementRow.bank_id == key.bank_id)
        & (BankStatementRow.statement_month == key.statement_month)
        & (BankStatementRow.statement_year == key.statement_year)
        & (BankStatementRow.statement_kind == key.statement_kind.value)
    )


class SqlRecordStore(RecordStore):
    """One short session per call; reconciliation never spans a transaction across records."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, record_id: str) -> Optional[StatementRecord]:
        async with self._session_factory() as session:
            row = await session.get(BankStatementRow, record_id)
            return _to_record(row) if row else None

    async def find_by_key(self, key: StatementKey) -> Optional[StatementRecord]:
        async with self._session_factory() as session:
            result = await session.execute(select(BankStatementRow).where(_key_clause(key)))
            row = result.scalar_one_or_none()
            return _to_record(row) if row else None

    async def filter(
        self,
        bank_id: Optional[str] = None,
        company_id: Optional[str] = None,
        statement_month: Optional[int] = None,
        statement_year: Optional[int] = None,
        statement_kind: Optional[StatementKind] = None,
    ) -> list[StatementRecord]:
        query = select(BankStatementRow)
        if bank_id is not None:
            query = query.where(BankStatementRow.bank_id == bank_id)
        if company_id is not None:
            query = query.where(BankStatementRow.company_id == company_id)
        if statement_month is not None:
            query = query.where(BankStatementRow.statement_month == statement_month)
        if statement_year is not None:
            query = query.where(BankStatementRow.statement_year == statement_year)
        if statement_kind is not None:
            query = query.where(BankStatementRow.statement_kind == statement_kind.value)
        query = query.order_by(
            BankStatementRow.statement_year,
            BankStatementRow.statement_month,
            BankStatementRow.statement_kind,
        )

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_to_record(row) for row in result.scalars().all()]

    async def references_document(self, storage_path: str, exclude_id: Optional[str] = None) -> bool:
        # JSON path operators differ per dialect; scan the id/document columns only
        async with self._session_factory() as session:
            result = await session.execute(
                select(BankStatementRow.id, BankStatementRow.statement_document)
            )
            for record_id, document in result.all():
                if record_id != exclude_id and (document or {}).get("storage_path") == storage_path:
                    return True
        return False

    async def insert(self, record: StatementRecord) -> StatementRecord:
        async with self._session_factory() as session:
            session.add(BankStatementRow(**_row_values(record)))
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise PersistenceConflict(
                    f"Statement already exists for {record.key}",
                    context={"key": str(record.key)},
                ) from e
        return record

    async def update(self, record: StatementRecord) -> StatementRecord:
        async with self._session_factory() as session:
            row = await session.get(BankStatementRow, record.id)
            if row is None:
                raise RecordNotFound(f"Statement not found: {record.id}", context={"record_id": record.id})
            for column, value in _row_values(record).items():
                if column != "id":
                    setattr(row, column, value)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise PersistenceConflict(
                    f"Statement already exists for {record.key}",
                    context={"key": str(record.key)},
                ) from e
        return record

    async def delete(self, record_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(BankStatementRow).where(BankStatementRow.id == record_id)
            )
            await session.commit()
            return result.rowcount > 0

    async def delete_where(self, key: StatementKey) -> int:
        async with self._session_factory() as session:
            result = await session.execute(delete(BankStatementRow).where(_key_clause(key)))
            await session.commit()
        logger.debug("statement_deleted", key=str(key), count=result.rowcount)
        return result.rowcount
