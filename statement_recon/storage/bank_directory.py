"""
Read-only access to bank account reference data.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from statement_recon.models.tables import Bank
from statement_recon.schemas.statements import BankAccount


class BankDirectory(ABC):

    @abstractmethod
    async def list_banks(self, company_id: Optional[str] = None) -> list[BankAccount]:
        ...

    @abstractmethod
    async def get(self, bank_id: str) -> Optional[BankAccount]:
        ...


class InMemoryBankDirectory(BankDirectory):

    def __init__(self, banks: Iterable[BankAccount] = ()):
        self._banks = {bank.id: bank for bank in banks}

    async def list_banks(self, company_id: Optional[str] = None) -> list[BankAccount]:
        return [b for b in self._banks.values() if company_id is None or b.company_id == company_id]

    async def get(self, bank_id: str) -> Optional[BankAccount]:
        return self._banks.get(bank_id)


def _to_bank(row: Bank) -> BankAccount:
    return BankAccount(
        id=row.id,
        bank_name=row.bank_name,
        account_number=row.account_number,
        currency=row.currency,
        company_id=row.company_id,
        company_name=row.company_name,
        password=row.password,
    )


class SqlBankDirectory(BankDirectory):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def list_banks(self, company_id: Optional[str] = None) -> list[BankAccount]:
        query = select(Bank).order_by(Bank.bank_name)
        if company_id is not None:
            query = query.where(Bank.company_id == company_id)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_to_bank(row) for row in result.scalars().all()]

    async def get(self, bank_id: str) -> Optional[BankAccount]:
        async with self._session_factory() as session:
            row = await session.get(Bank, bank_id)
            return _to_bank(row) if row else None
