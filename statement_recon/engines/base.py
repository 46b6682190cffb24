"""
Abstract base classes for extraction engines and password unlockers.
Every engine must produce a StatementExtraction for the fixed field schema.
"""

from abc import ABC, abstractmethod
from typing import Optional

from statement_recon.schemas.extraction import DocumentHandle, FieldSpec
from statement_recon.schemas.statements import StatementExtraction


class ExtractionEngine(ABC):
    """
    Abstract base class for all extraction engines.

    Every engine must:
    1. Accept a document handle, the field schema and an optional password
    2. Return StatementExtraction
    3. Report its name and version
    4. Signal failure by raising EngineError, flagging whether a retry can help
    """

    @property
    @abstractmethod
    def engine_name(self) -> str:
        """Unique identifier: 'pdfplumber', 'stub'"""
        ...

    @property
    @abstractmethod
    def engine_version(self) -> str:
        """Semver or API version string."""
        ...

    @abstractmethod
    async def extract_statement(
        self,
        document: DocumentHandle,
        schema: list[FieldSpec],
        password: Optional[str] = None,
    ) -> StatementExtraction:
        """
        Extract statement fields from a whole document.

        Must raise EngineError on failure (never return partial/corrupt data).
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify engine is available and responding."""
        ...


class PasswordUnlocker(ABC):
    """Detects password protection and tests candidate passwords."""

    @abstractmethod
    async def is_password_protected(self, document: DocumentHandle) -> bool:
        ...

    @abstractmethod
    async def try_password(self, document: DocumentHandle, password: str) -> bool:
        """True when the password opens the document."""
        ...


class EngineError(Exception):
    """Raised when an extraction engine fails."""

    def __init__(self, engine_name: str, error_code: str, message: str, retryable: bool = True):
        self.engine_name = engine_name
        self.error_code = error_code
        self.message = message
        self.retryable = retryable
        super().__init__(f"[{engine_name}] {error_code}: {message}")
