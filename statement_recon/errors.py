"""
Error taxonomy shared by the pipeline, reconciliation and service layers.
Every error carries an error_code and enough context to drive manual correction.
"""

from typing import Optional


class StatementError(Exception):
    """Base class for all reconciliation-core errors."""

    error_code = "ERR_STATEMENT"

    def __init__(self, message: str, error_code: Optional[str] = None, context: Optional[dict] = None):
        self.message = message
        if error_code:
            self.error_code = error_code
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error_code": self.error_code, "message": self.message, **self.context}


class ParseError(StatementError):
    """Statement period text could not be parsed."""

    error_code = "ERR_PERIOD_PARSE"

    def __init__(self, raw_text: str, message: Optional[str] = None):
        self.raw_text = raw_text
        super().__init__(
            message or f"Could not parse statement period: {raw_text!r}",
            context={"period_text": raw_text},
        )


class ClassificationAmbiguous(StatementError):
    """Not enough signal to classify a statement. Callers default to monthly."""

    error_code = "ERR_CLASSIFICATION_AMBIGUOUS"


class PersistenceConflict(StatementError):
    """A record existed (or was missing) where a reconciliation step did not expect it."""

    error_code = "ERR_PERSISTENCE_CONFLICT"


class PartialBatchFailure(StatementError):
    """A subset of a multi-month write failed; committed months are not rolled back."""

    error_code = "ERR_PARTIAL_BATCH"

    def __init__(self, message: str, failures: list[dict]):
        self.failures = failures
        super().__init__(message, context={"failure_count": len(failures), "failures": failures})


class SourceFileMissing(StatementError):
    """The document behind an upload item does not exist. Fatal, never retried."""

    error_code = "ERR_FILE_NOT_FOUND"


class BankReferenceInvalid(StatementError):
    """An upload item or record refers to no known bank account. Fatal, never retried."""

    error_code = "ERR_BANK_REFERENCE"


class RecordNotFound(StatementError):
    """A statement record addressed by id or natural key does not exist."""

    error_code = "ERR_RECORD_NOT_FOUND"


class InvalidTransition(StatementError):
    """An upload item was asked to move to a status its current status does not allow."""

    error_code = "ERR_INVALID_TRANSITION"
