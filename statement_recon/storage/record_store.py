"""
Statement record persistence port.
RecordStore is the only way reconciliation and the service layer touch stored
records; implementations enforce one record per (bank, month, year, kind).
"""

from abc import ABC, abstractmethod
from typing import Optional

import structlog

from statement_recon.errors import PersistenceConflict, RecordNotFound
from statement_recon.models.enums import StatementKind
from statement_recon.schemas.statements import StatementKey, StatementRecord, utcnow

logger = structlog.get_logger(__name__)


class RecordStore(ABC):

    @abstractmethod
    async def get(self, record_id: str) -> Optional[StatementRecord]:
        ...

    @abstractmethod
    async def find_by_key(self, key: StatementKey) -> Optional[StatementRecord]:
        ...

    @abstractmethod
    async def filter(
        self,
        bank_id: Optional[str] = None,
        company_id: Optional[str] = None,
        statement_month: Optional[int] = None,
        statement_year: Optional[int] = None,
        statement_kind: Optional[StatementKind] = None,
    ) -> list[StatementRecord]:
        ...

    @abstractmethod
    async def insert(self, record: StatementRecord) -> StatementRecord:
        """Insert a new record. Raises PersistenceConflict if its key is taken."""
        ...

    @abstractmethod
    async def update(self, record: StatementRecord) -> StatementRecord:
        """Replace a stored record by id. Raises RecordNotFound if absent."""
        ...

    @abstractmethod
    async def delete(self, record_id: str) -> bool:
        ...

    @abstractmethod
    async def delete_where(self, key: StatementKey) -> int:
        """Delete the record with exactly this key. Other kinds are untouched."""
        ...

    async def upsert(self, record: StatementRecord) -> tuple[StatementRecord, bool]:
        """
        Insert, or replace the record already holding this key.
        The stored id and created_at survive a replace. Returns (record, created).
        """
        existing = await self.find_by_key(record.key)
        if existing is None:
            try:
                return await self.insert(record), True
            except PersistenceConflict:
                # Lost a race to another writer; fall through to replace
                existing = await self.find_by_key(record.key)
                if existing is None:
                    raise
        replacement = record.model_copy(update={
            "id": existing.id,
            "created_at": existing.created_at,
            "updated_at": utcnow(),
        })
        return await self.update(replacement), False

    async def references_document(self, storage_path: str, exclude_id: Optional[str] = None) -> bool:
        """Whether any record other than exclude_id points at this stored document."""
        for record in await self.filter():
            if record.id != exclude_id and record.statement_document.storage_path == storage_path:
                return True
        return False


class InMemoryRecordStore(RecordStore):
    """Dict-backed store for tests and inline batch runs."""

    def __init__(self):
        self._records: dict[str, StatementRecord] = {}
        self._keys: dict[StatementKey, str] = {}

    async def get(self, record_id: str) -> Optional[StatementRecord]:
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record else None

    async def find_by_key(self, key: StatementKey) -> Optional[StatementRecord]:
        record_id = self._keys.get(key)
        return await self.get(record_id) if record_id else None

    async def filter(
        self,
        bank_id: Optional[str] = None,
        company_id: Optional[str] = None,
        statement_month: Optional[int] = None,
        statement_year: Optional[int] = None,
        statement_kind: Optional[StatementKind] = None,
    ) -> list[StatementRecord]:
        results = []
        for record in self._records.values():
            if bank_id is not None and record.bank_id != bank_id:
                continue
            if company_id is not None and record.company_id != company_id:
                continue
            if statement_month is not None and record.statement_month != statement_month:
                continue
            if statement_year is not None and record.statement_year != statement_year:
                continue
            if statement_kind is not None and record.statement_kind != statement_kind:
                continue
            results.append(record.model_copy(deep=True))
        return sorted(results, key=lambda r: (r.statement_year, r.statement_month, r.statement_kind.value))

    async def insert(self, record: StatementRecord) -> StatementRecord:
        if record.key in self._keys:
            raise PersistenceConflict(
                f"Statement already exists for {record.key}",
                context={"key": str(record.key)},
            )
        if record.id in self._records:
            raise PersistenceConflict(
                f"Statement id already exists: {record.id}",
                context={"record_id": record.id},
            )
        self._records[record.id] = record.model_copy(deep=True)
        self._keys[record.key] = record.id
        return record.model_copy(deep=True)

    async def update(self, record: StatementRecord) -> StatementRecord:
        current = self._records.get(record.id)
        if current is None:
            raise RecordNotFound(f"Statement not found: {record.id}", context={"record_id": record.id})
        holder = self._keys.get(record.key)
        if holder is not None and holder != record.id:
            raise PersistenceConflict(
                f"Statement already exists for {record.key}",
                context={"key": str(record.key)},
            )
        del self._keys[current.key]
        self._records[record.id] = record.model_copy(deep=True)
        self._keys[record.key] = record.id
        return record.model_copy(deep=True)

    async def delete(self, record_id: str) -> bool:
        record = self._records.pop(record_id, None)
        if record is None:
            return False
        self._keys.pop(record.key, None)
        return True

    async def delete_where(self, key: StatementKey) -> int:
        record_id = self._keys.get(key)
        if record_id is None:
            return 0
        await self.delete(record_id)
        logger.debug("statement_deleted", key=str(key))
        return 1
