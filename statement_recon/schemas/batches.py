"""
Batch-scoped schemas: upload items, the Job progress value and end-of-batch summaries.
None of these are persisted; they live for one pipeline run.
"""

import uuid
from typing import Optional

from pydantic import BaseModel, Field

from statement_recon.models.enums import (
    JobStatus,
    MatchSource,
    PasswordState,
    StatementKind,
    UploadStatus,
)
from statement_recon.schemas.extraction import DocumentHandle
from statement_recon.schemas.statements import (
    BankAccount,
    StatementExtraction,
    StatementPeriod,
)


class DetectedInfo(BaseModel):
    """Hints pulled out of a file name before any engine sees the document."""
    password: Optional[str] = None
    account_number: Optional[str] = None
    bank_name: Optional[str] = None


class UploadItem(BaseModel):
    index: int
    document: DocumentHandle
    status: UploadStatus = UploadStatus.PENDING
    detected: DetectedInfo = Field(default_factory=DetectedInfo)
    matched_bank: Optional[BankAccount] = None
    match_confidence: float = 0.0
    match_source: MatchSource = MatchSource.NONE
    password_state: PasswordState = PasswordState.UNKNOWN
    password: Optional[str] = None
    extracted: Optional[StatementExtraction] = None
    guessed_kind: Optional[StatementKind] = None
    retry_count: int = 0
    error: Optional[str] = None
    error_code: Optional[str] = None
    manual_period: Optional[StatementPeriod] = None
    record_ids: list[str] = []

    @property
    def file_name(self) -> str:
        return self.document.file_name

    @property
    def is_terminal(self) -> bool:
        return self.status in (UploadStatus.UPLOADED, UploadStatus.VOUCHED)


class Job(BaseModel):
    """Progress of one batch run, threaded through calls instead of module state."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.QUEUED
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    current_item: Optional[int] = None
    stop_requested: bool = False

    @property
    def progress(self) -> float:
        return self.processed / self.total if self.total else 1.0

    def request_stop(self) -> None:
        """Cooperative stop: the current item finishes, the next one never starts."""
        self.stop_requested = True


class ItemFailure(BaseModel):
    item_index: int
    file_name: str
    error_code: str
    message: str
    retryable: bool = False


class BatchSummary(BaseModel):
    job: Job
    succeeded: int
    failed: int
    skipped: int = 0
    failures: list[ItemFailure] = []
    items: list[UploadItem] = []
