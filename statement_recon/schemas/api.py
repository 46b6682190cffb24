"""
Request/response schemas for the HTTP layer.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from statement_recon.models.enums import JobStatus, StatementKind
from statement_recon.schemas.statements import StatementExtraction


class ParsePeriodRequest(BaseModel):
    text: str


class ClassifyRequest(BaseModel):
    extraction: StatementExtraction
    explicit_kind: Optional[StatementKind] = None


class SaveStatementRequest(BaseModel):
    bank_id: str
    extraction: StatementExtraction
    kind: Optional[StatementKind] = None
    period_text: Optional[str] = Field(None, description="Overrides the period printed on the statement")


class VerifyBalanceRequest(BaseModel):
    verifier: str
    verified: bool = True


class ValidateRequest(BaseModel):
    validator: Optional[str] = None


class SignedUrlResponse(BaseModel):
    url: str
    expires_in: int


class BatchAccepted(BaseModel):
    job_id: str
    status: JobStatus
    total: int
    queued: bool = False
    rq_job_id: Optional[str] = None


class AssignBankRequest(BaseModel):
    bank_id: str


class EnterPeriodRequest(BaseModel):
    period_text: str
    bank_id: Optional[str] = None
    closing_balance: Optional[Decimal] = None


class PasswordRequest(BaseModel):
    password: str


class UploadItemRequest(BaseModel):
    kind: Optional[StatementKind] = None
