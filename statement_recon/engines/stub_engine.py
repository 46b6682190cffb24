"""
Stub extraction engine and unlocker for testing pipeline plumbing.
Replays scripted outcomes per file name so retry, timeout and password
paths can be exercised without real PDF processing.
"""

import asyncio
from typing import Optional, Union

from statement_recon.engines.base import EngineError, ExtractionEngine, PasswordUnlocker
from statement_recon.schemas.extraction import DocumentHandle, FieldSpec
from statement_recon.schemas.statements import StatementExtraction

# A scripted step is either a payload to return or an EngineError to raise
ScriptStep = Union[StatementExtraction, EngineError]


class StubEngine(ExtractionEngine):
    """Fake adapter returning scripted extractions keyed by file name."""

    def __init__(
        self,
        scripts: Optional[dict[str, list[ScriptStep]]] = None,
        default: Optional[StatementExtraction] = None,
        delay_seconds: float = 0.0,
    ):
        self._scripts = {name: list(steps) for name, steps in (scripts or {}).items()}
        self._default = default
        self._delay_seconds = delay_seconds
        self.calls: list[tuple[str, Optional[str]]] = []

    @property
    def engine_name(self) -> str:
        return "stub"

    @property
    def engine_version(self) -> str:
        return "0.1.0"

    async def extract_statement(
        self,
        document: DocumentHandle,
        schema: list[FieldSpec],
        password: Optional[str] = None,
    ) -> StatementExtraction:
        self.calls.append((document.file_name, password))
        if self._delay_seconds:
            await asyncio.sleep(self._delay_seconds)

        steps = self._scripts.get(document.file_name)
        if steps:
            step = steps.pop(0) if len(steps) > 1 else steps[0]
            if isinstance(step, EngineError):
                raise step
            return step

        if self._default is not None:
            return self._default
        return StatementExtraction()

    async def health_check(self) -> bool:
        """Stub is always healthy."""
        return True


class StubUnlocker(PasswordUnlocker):
    """Treats documents listed in `passwords` as protected by the given password."""

    def __init__(self, passwords: Optional[dict[str, str]] = None):
        self._passwords = passwords or {}
        self.tried: list[tuple[str, str]] = []

    async def is_password_protected(self, document: DocumentHandle) -> bool:
        return document.file_name in self._passwords

    async def try_password(self, document: DocumentHandle, password: str) -> bool:
        self.tried.append((document.file_name, password))
        return self._passwords.get(document.file_name) == password
