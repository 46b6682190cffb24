"""
Python enums matching PostgreSQL enum types.
Names and values MUST match the DB DDL exactly.
"""

from enum import Enum


class StatementKind(str, Enum):
    MONTHLY = "monthly"
    RANGE = "range"


class UploadStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    FAILED = "failed"
    UPLOADED = "uploaded"
    VOUCHED = "vouched"


class WorkflowState(str, Enum):
    PENDING_VALIDATION = "pending_validation"
    VALIDATED = "validated"


class PasswordState(str, Enum):
    """Password detection state of an upload item's document."""
    UNKNOWN = "unknown"
    NOT_PROTECTED = "not_protected"
    UNLOCKED = "unlocked"
    NEEDS_PASSWORD = "needs_password"


class MatchSource(str, Enum):
    ACCOUNT_NUMBER = "account_number"
    BANK_NAME = "bank_name"
    MANUAL = "manual"
    NONE = "none"


class CycleStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    STOPPED = "stopped"
    COMPLETED = "completed"


class ReconcileOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    FAILED = "failed"
