"""
SQLAlchemy ORM models.
Nested statement structures (document, extractions, validation, workflow) are
stored as JSONB on PostgreSQL and plain JSON elsewhere.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from statement_recon.models.database import Base

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def _uuid_str() -> str:
    return str(uuid.uuid4())


# ────────────────────────────────────────────────────────────
# BANK ACCOUNTS (reference data)
# ────────────────────────────────────────────────────────────
class Bank(Base):
    __tablename__ = "banks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    bank_name: Mapped[str] = mapped_column(Text, nullable=False)
    account_number: Mapped[str] = mapped_column(Text, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="KES", server_default="KES")
    company_id: Mapped[str] = mapped_column(String(36), nullable=False)
    company_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    password: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_banks_company", "company_id"),
    )


# ────────────────────────────────────────────────────────────
# STATEMENT CYCLES
# ────────────────────────────────────────────────────────────
class StatementCycleRow(Base):
    __tablename__ = "statement_cycles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    cycle_month: Mapped[int] = mapped_column(Integer, nullable=False)
    cycle_year: Mapped[int] = mapped_column(Integer, nullable=False)
    month_year: Mapped[str] = mapped_column(String(7), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", server_default="active")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("month_year", name="uq_cycle_month_year"),
    )


# ────────────────────────────────────────────────────────────
# BANK STATEMENTS
# ────────────────────────────────────────────────────────────
class BankStatementRow(Base):
    __tablename__ = "bank_statements"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    bank_id: Mapped[str] = mapped_column(String(36), nullable=False)
    company_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    statement_cycle_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    statement_month: Mapped[int] = mapped_column(Integer, nullable=False)
    statement_year: Mapped[int] = mapped_column(Integer, nullable=False)
    statement_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    statement_document: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    statement_extractions: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    validation_status: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    status: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    has_soft_copy: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    has_hard_copy: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "bank_id", "statement_month", "statement_year", "statement_kind",
            name="uq_statement_bank_period_kind",
        ),
        Index("idx_statements_bank", "bank_id"),
        Index("idx_statements_period", "statement_year", "statement_month"),
        Index("idx_statements_cycle", "statement_cycle_id"),
    )
