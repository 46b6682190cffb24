"""
Core statement data model.
StatementRecord is keyed by (bank_id, statement_month, statement_year, statement_kind);
every reconciliation step reads and writes these shapes, never store-specific rows.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from statement_recon.models.enums import StatementKind, WorkflowState


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BankAccount(BaseModel):
    """Ground-truth bank account reference data. Supplied externally, never mutated."""
    id: str
    bank_name: str
    account_number: str
    currency: str
    company_id: str
    company_name: Optional[str] = None
    password: Optional[str] = None  # stored document password, tried first on protected PDFs

    model_config = {"frozen": True}


class StatementPeriod(BaseModel):
    """An inclusive month span. End never precedes start."""
    start_month: int = Field(ge=1, le=12)
    start_year: int = Field(ge=1900, le=2999)
    end_month: int = Field(ge=1, le=12)
    end_year: int = Field(ge=1900, le=2999)
    swapped: bool = False  # parser reversed an end-before-start input

    @model_validator(mode="after")
    def _check_order(self):
        if (self.end_year, self.end_month) < (self.start_year, self.start_month):
            raise ValueError(
                f"Period end {self.end_month}/{self.end_year} precedes "
                f"start {self.start_month}/{self.start_year}"
            )
        return self

    @property
    def is_single_month(self) -> bool:
        return self.start_month == self.end_month and self.start_year == self.end_year

    @classmethod
    def single(cls, month: int, year: int) -> "StatementPeriod":
        return cls(start_month=month, start_year=year, end_month=month, end_year=year)


class HighlightRegion(BaseModel):
    """Region on a statement page where a balance was found, normalised to 0-1."""
    page: int = Field(ge=1)
    x0: float = Field(ge=0.0, le=1.0)
    y0: float = Field(ge=0.0, le=1.0)
    x1: float = Field(ge=0.0, le=1.0)
    y1: float = Field(ge=0.0, le=1.0)


class MonthlyBalance(BaseModel):
    month: int = Field(ge=1, le=12)
    year: int
    opening_balance: Optional[Decimal] = None
    closing_balance: Optional[Decimal] = None
    statement_page: int = 1
    opening_date: Optional[date] = None
    closing_date: Optional[date] = None
    is_verified: bool = False
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    highlight_coordinates: Optional[HighlightRegion] = None

    def matches(self, month: int, year: int) -> bool:
        return self.month == month and self.year == year


class StatementDocument(BaseModel):
    """Reference to the stored source document."""
    storage_path: Optional[str] = None
    file_name: Optional[str] = None
    document_size: int = 0
    password: Optional[str] = None
    upload_date: Optional[datetime] = None


class StatementExtraction(BaseModel):
    """Structured fields returned by an extraction engine."""
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    currency: Optional[str] = None
    company_name: Optional[str] = None
    statement_period: Optional[str] = None
    opening_balance: Optional[Decimal] = None
    closing_balance: Optional[Decimal] = None
    monthly_balances: list[MonthlyBalance] = []
    total_pages: Optional[int] = None
    parent_statement_id: Optional[str] = None

    def balance_for(self, month: int, year: int) -> Optional[MonthlyBalance]:
        for balance in self.monthly_balances:
            if balance.matches(month, year):
                return balance
        return None


class ValidationStatus(BaseModel):
    """Result of the last validation run. Always replaced wholesale."""
    is_validated: bool = False
    validation_date: Optional[datetime] = None
    validated_by: Optional[str] = None
    mismatches: list[str] = []


class WorkflowStatus(BaseModel):
    status: WorkflowState = WorkflowState.PENDING_VALIDATION
    assigned_to: Optional[str] = None
    verification_date: Optional[datetime] = None


class StatementKey(BaseModel):
    """Natural key of a StatementRecord."""
    bank_id: str
    statement_month: int = Field(ge=1, le=12)
    statement_year: int
    statement_kind: StatementKind

    model_config = {"frozen": True}

    def __str__(self) -> str:
        return (
            f"{self.bank_id}:{self.statement_year}-{self.statement_month:02d}"
            f":{self.statement_kind.value}"
        )


class StatementRecord(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    bank_id: str
    company_id: Optional[str] = None
    statement_cycle_id: Optional[str] = None
    statement_month: int = Field(ge=1, le=12)
    statement_year: int
    statement_kind: StatementKind = StatementKind.MONTHLY
    statement_document: StatementDocument = Field(default_factory=StatementDocument)
    statement_extractions: StatementExtraction = Field(default_factory=StatementExtraction)
    validation_status: ValidationStatus = Field(default_factory=ValidationStatus)
    status: WorkflowStatus = Field(default_factory=WorkflowStatus)
    has_soft_copy: bool = True
    has_hard_copy: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> StatementKey:
        return StatementKey(
            bank_id=self.bank_id,
            statement_month=self.statement_month,
            statement_year=self.statement_year,
            statement_kind=self.statement_kind,
        )


class StatementCycle(BaseModel):
    """Grouping identifier tying records to their processing period."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    cycle_month: int = Field(ge=1, le=12)
    cycle_year: int
    month_year: str
    status: str = "active"

    @staticmethod
    def label(year: int, month: int) -> str:
        return f"{year}-{month:02d}"
