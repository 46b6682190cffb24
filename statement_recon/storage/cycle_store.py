"""
Statement cycle resolution.
A cycle groups every record of one calendar month regardless of statement kind;
resolve_cycle finds it or creates it on first use.
"""

from abc import ABC, abstractmethod

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from statement_recon.models.enums import CycleStatus, StatementKind
from statement_recon.models.tables import StatementCycleRow
from statement_recon.schemas.statements import StatementCycle

logger = structlog.get_logger(__name__)


class CycleService(ABC):

    @abstractmethod
    async def resolve_cycle(self, year: int, month: int, kind: StatementKind) -> StatementCycle:
        ...


class InMemoryCycleService(CycleService):

    def __init__(self):
        self._cycles: dict[str, StatementCycle] = {}

    async def resolve_cycle(self, year: int, month: int, kind: StatementKind) -> StatementCycle:
        label = StatementCycle.label(year, month)
        cycle = self._cycles.get(label)
        if cycle is None:
            cycle = StatementCycle(cycle_month=month, cycle_year=year, month_year=label)
            self._cycles[label] = cycle
            logger.info("statement_cycle_created", month_year=label, kind=kind.value)
        return cycle


def _to_cycle(row: StatementCycleRow) -> StatementCycle:
    return StatementCycle(
        id=row.id,
        cycle_month=row.cycle_month,
        cycle_year=row.cycle_year,
        month_year=row.month_year,
        status=row.status,
    )


class SqlCycleService(CycleService):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _find(self, label: str):
        async with self._session_factory() as session:
            result = await session.execute(
                select(StatementCycleRow).where(StatementCycleRow.month_year == label)
            )
            return result.scalar_one_or_none()

    async def resolve_cycle(self, year: int, month: int, kind: StatementKind) -> StatementCycle:
        label = StatementCycle.label(year, month)
        row = await self._find(label)
        if row is not None:
            return _to_cycle(row)

        cycle = StatementCycle(cycle_month=month, cycle_year=year, month_year=label)
        async with self._session_factory() as session:
            session.add(StatementCycleRow(
                id=cycle.id,
                cycle_month=month,
                cycle_year=year,
                month_year=label,
                status=CycleStatus.ACTIVE.value,
            ))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                row = await self._find(label)
                if row is None:
                    raise
                return _to_cycle(row)

        logger.info("statement_cycle_created", month_year=label, kind=kind.value)
        return cycle
