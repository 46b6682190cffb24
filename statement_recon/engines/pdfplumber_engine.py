"""
pdfplumber extraction engine.
Primary path for statements with embedded text layers: header fields are
read from labelled lines, balances from "Opening/Closing Balance" lines.
"""

import asyncio
import re
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Optional

import pdfplumber
import structlog
from pdfminer.pdfdocument import PDFPasswordIncorrect
from pdfplumber.utils.exceptions import PdfminerException

from statement_recon.engines.base import EngineError, ExtractionEngine, PasswordUnlocker
from statement_recon.pipeline.amount_parser import parse_amount
from statement_recon.pipeline.date_parser import parse_statement_date
from statement_recon.pipeline.month_range import generate_month_range
from statement_recon.pipeline.period_parser import format_period, try_parse_statement_period
from statement_recon.schemas.extraction import DocumentHandle, FieldSpec
from statement_recon.schemas.statements import (
    HighlightRegion,
    MonthlyBalance,
    StatementExtraction,
)

logger = structlog.get_logger(__name__)

# One PDF open at a time. A timed-out extraction keeps its thread until the
# document closes, and the next open queues behind it.
_PDF_EXECUTOR = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pdfplumber")


_ACCOUNT_LINE = re.compile(r"(?:account|a/c)\s*(?:no\.?|number|#)?\s*[:.]?\s*([\d][\d\s\-]{4,}\d)", re.IGNORECASE)
_CURRENCY_LINE = re.compile(r"currency\s*[:.]?\s*([A-Za-z][A-Za-z .]{1,24})", re.IGNORECASE)
_PERIOD_LINE = re.compile(r"(?:statement\s+)?period\s*[:.]?\s*(.+)", re.IGNORECASE)
_FROM_TO_LINE = re.compile(r"from\s*[:.]?\s*(.+?)\s+to\s*[:.]?\s*(.+)", re.IGNORECASE)
_CUSTOMER_LINE = re.compile(r"(?:customer|account)\s+name\s*[:.]?\s*(.+)", re.IGNORECASE)
_BANK_LINE = re.compile(r"([A-Z][A-Za-z&.\- ]*\bBank\b[A-Za-z&.\- ]*)")
_BALANCE_LINE = re.compile(r"(opening|closing)\s+balance\b(.*)", re.IGNORECASE)
_AMOUNT_TOKEN = re.compile(r"\(?-?[\d,]+\.\d{2}\)?(?:\s*(?:DR|CR))?", re.IGNORECASE)


def _page_lines(page) -> list[str]:
    text = page.extract_text(x_tolerance=3, y_tolerance=3) or ""
    return [line.strip() for line in text.splitlines() if line.strip()]


def _last_amount(text: str):
    tokens = _AMOUNT_TOKEN.findall(text)
    if not tokens:
        return None
    return parse_amount(tokens[-1]).amount


def _locate(page, needle: str, page_number: int) -> Optional[HighlightRegion]:
    """Normalised bounding box of the first word starting with needle."""
    width = float(page.width)
    height = float(page.height)
    for w in page.extract_words(x_tolerance=3, y_tolerance=3):
        if w.get("text", "").lower().startswith(needle):
            return HighlightRegion(
                page=page_number,
                x0=round(w["x0"] / width, 6),
                y0=round(w["top"] / height, 6),
                x1=min(1.0, round(w["x1"] / width, 6)),
                y1=min(1.0, round(w["bottom"] / height, 6)),
            )
    return None


def _parse_text_statement(pdf) -> StatementExtraction:
    fields: dict = {}
    dated_balances: dict[tuple[int, int], MonthlyBalance] = {}
    opening = None
    closing = None
    closing_page = 1
    closing_region = None

    for page_number, page in enumerate(pdf.pages, start=1):
        for line in _page_lines(page):
            if "bank_name" not in fields:
                m = _BANK_LINE.search(line)
                if m:
                    fields["bank_name"] = m.group(1).strip()
            if "account_number" not in fields:
                m = _ACCOUNT_LINE.search(line)
                if m:
                    fields["account_number"] = m.group(1).strip()
            if "currency" not in fields:
                m = _CURRENCY_LINE.search(line)
                if m:
                    fields["currency"] = m.group(1).strip()
            if "company_name" not in fields:
                m = _CUSTOMER_LINE.search(line)
                if m:
                    fields["company_name"] = m.group(1).strip()
            if "statement_period" not in fields:
                m = _FROM_TO_LINE.search(line)
                if m:
                    fields["statement_period"] = f"{m.group(1).strip()} - {m.group(2).strip()}"
                else:
                    m = _PERIOD_LINE.search(line)
                    if m:
                        fields["statement_period"] = m.group(1).strip()

            m = _BALANCE_LINE.search(line)
            if not m:
                continue
            which = m.group(1).lower()
            amount = _last_amount(m.group(2))
            if amount is None:
                continue
            balance_date = parse_statement_date(m.group(2))
            if which == "opening" and opening is None:
                opening = amount
            if which == "closing":
                closing = amount
                closing_page = page_number
                closing_region = _locate(page, "closing", page_number)
            if balance_date is not None:
                key = (balance_date.year, balance_date.month)
                entry = dated_balances.setdefault(
                    key,
                    MonthlyBalance(month=balance_date.month, year=balance_date.year, statement_page=page_number),
                )
                if which == "opening":
                    entry.opening_balance = amount
                    entry.opening_date = balance_date
                else:
                    entry.closing_balance = amount
                    entry.closing_date = balance_date
                    entry.statement_page = page_number

    period = try_parse_statement_period(fields.get("statement_period", ""))
    if period is not None:
        fields["statement_period"] = format_period(period)

    if dated_balances:
        monthly = [dated_balances[k] for k in sorted(dated_balances)]
    elif period is not None and (opening is not None or closing is not None):
        # Undated balances belong to the last month of the stated period
        last = generate_month_range(period)[-1]
        monthly = [MonthlyBalance(
            month=last.month,
            year=last.year,
            opening_balance=opening,
            closing_balance=closing,
            statement_page=closing_page,
            highlight_coordinates=closing_region,
        )]
    else:
        monthly = []

    return StatementExtraction(
        opening_balance=opening,
        closing_balance=closing,
        monthly_balances=monthly,
        total_pages=len(pdf.pages),
        **fields,
    )


def _is_password_error(exc: Exception) -> bool:
    if isinstance(exc, PDFPasswordIncorrect):
        return True
    if isinstance(exc, PdfminerException):
        return any(isinstance(arg, PDFPasswordIncorrect) for arg in exc.args) or isinstance(
            exc.__cause__, PDFPasswordIncorrect
        )
    return False


class PdfPlumberEngine(ExtractionEngine):
    """
    Extraction engine using pdfplumber for statements with embedded text.
    Scanned statements without a text layer fail non-retryably.
    """

    engine_name = "pdfplumber"
    engine_version = "0.11"

    def __init__(self, executor: Optional[Executor] = None):
        self._executor = executor or _PDF_EXECUTOR

    def _extract_sync(self, document: DocumentHandle, password: Optional[str]) -> StatementExtraction:
        try:
            with pdfplumber.open(document.path, password=password or "") as pdf:
                if not pdf.pages:
                    raise EngineError(self.engine_name, "ERR_EMPTY_DOCUMENT", "PDF has no pages", retryable=False)
                if not any(_page_lines(p) for p in pdf.pages[:3]):
                    raise EngineError(
                        self.engine_name, "ERR_NO_TEXT_LAYER",
                        "No embedded text layer; statement needs manual entry", retryable=False,
                    )
                return _parse_text_statement(pdf)
        except EngineError:
            raise
        except FileNotFoundError as e:
            raise EngineError(self.engine_name, "ERR_FILE_NOT_FOUND", str(e), retryable=False) from e
        except Exception as e:
            if _is_password_error(e):
                raise EngineError(self.engine_name, "ERR_PASSWORD", "Document password rejected", retryable=False) from e
            raise EngineError(self.engine_name, "ERR_PDF_READ", f"pdfplumber failed: {e}") from e

    async def extract_statement(
        self,
        document: DocumentHandle,
        schema: list[FieldSpec],
        password: Optional[str] = None,
    ) -> StatementExtraction:
        """Extract statement fields from every page of a PDF using pdfplumber."""
        loop = asyncio.get_running_loop()
        extraction = await loop.run_in_executor(self._executor, self._extract_sync, document, password)
        logger.debug(
            "pdfplumber_extraction_complete",
            file_name=document.file_name,
            total_pages=extraction.total_pages,
            balance_count=len(extraction.monthly_balances),
            fields_requested=len(schema),
        )
        return extraction

    async def health_check(self) -> bool:
        """pdfplumber is always available (pure Python)."""
        return True


class PdfPlumberUnlocker(PasswordUnlocker):
    """Password checks by opening the PDF through pdfplumber/pdfminer."""

    def __init__(self, executor: Optional[Executor] = None):
        self._executor = executor or _PDF_EXECUTOR

    @staticmethod
    def _opens(path: str, password: str) -> bool:
        try:
            with pdfplumber.open(path, password=password) as pdf:
                len(pdf.pages)
            return True
        except Exception as e:
            if _is_password_error(e):
                return False
            raise

    async def is_password_protected(self, document: DocumentHandle) -> bool:
        loop = asyncio.get_running_loop()
        return not await loop.run_in_executor(self._executor, self._opens, document.path, "")

    async def try_password(self, document: DocumentHandle, password: str) -> bool:
        loop = asyncio.get_running_loop()
        ok = await loop.run_in_executor(self._executor, self._opens, document.path, password)
        logger.debug("pdf_password_attempt", file_name=document.file_name, success=ok)
        return ok
