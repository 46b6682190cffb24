"""
Statement period parser.

Turns free-text period strings into a StatementPeriod month span.

Strategy:
1. Canonical day-first date range (DD/MM/YYYY - DD/MM/YYYY) first
2. Other explicit ranges (ISO, named months, MM/YYYY, quarters)
3. Single-month forms last
4. End-before-start spans are swapped and flagged, never rejected
5. Spans past the month ceiling are rejected
"""

import calendar
import re
from datetime import date
from typing import Optional

import structlog
from dateutil import parser as dateutil_parser

from statement_recon.errors import ParseError
from statement_recon.pipeline.month_range import check_span_limit
from statement_recon.schemas.statements import StatementPeriod

logger = structlog.get_logger(__name__)


MONTH_ABBREVIATIONS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_MONTH = r"\b([A-Za-z]{3,9})\.?"
_DASH = r"\s*(?:-|–|—|\bto\b|\buntil\b)\s*"
_DMY = r"(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{4})"
_ISO = r"(\d{4})-(\d{2})-(\d{2})"
_DAY_MON_YEAR = r"(\d{1,2}(?:st|nd|rd|th)?\s+[A-Za-z]{3,9}\.?,?\s+\d{4})"

# Ordered by specificity (try most specific first)
PERIOD_FORMATS = [
    (_ISO + _DASH + _ISO, "ISO_RANGE"),
    (_DMY + _DASH + _DMY, "DD/MM/YYYY_RANGE"),
    (_DAY_MON_YEAR + _DASH + _DAY_MON_YEAR, "DD_MON_YYYY_RANGE"),
    (_MONTH + r",?\s+(\d{4})" + _DASH + _MONTH + r",?\s+(\d{4})", "MONTH_YYYY_RANGE"),
    (_MONTH + _DASH + _MONTH + r",?\s+(\d{4})", "MONTH_MONTH_YYYY"),
    (r"\b(\d{1,2})[/.\-](\d{4})" + _DASH + r"(\d{1,2})[/.\-](\d{4})\b", "MM/YYYY_RANGE"),
    (r"\b(?:q|quarter)\s*([1-4])\b[\s,]*(\d{4})", "QUARTER"),
    (_ISO, "ISO_DATE"),
    (_DMY, "DD/MM/YYYY"),
    (r"\b(\d{1,2})[/.\-](\d{4})\b", "MM/YYYY"),
    (_MONTH + r",?\s+(\d{4})", "MONTH_YYYY"),
]


def month_from_name(token: str) -> Optional[int]:
    """Map 'Jan', 'January', 'Sept' to 1-12. Rejects words that merely start like a month."""
    word = token.lower().rstrip(".")
    month = MONTH_ABBREVIATIONS.get(word[:3])
    if month is None:
        return None
    full_name = calendar.month_name[month].lower()
    if word == word[:3] or word == full_name or (month == 9 and word == "sept"):
        return month
    return None


def parse_statement_period(raw: str) -> StatementPeriod:
    """
    Parse a statement period string into a month span.
    Raises ParseError when no known format applies.
    """
    if raw is None or not raw.strip():
        raise ParseError(raw or "", "Statement period is empty")

    text = " ".join(raw.split())

    for pattern, format_name in PERIOD_FORMATS:
        for m in re.finditer(pattern, text, re.IGNORECASE):
            try:
                span = _span_from_match(m, format_name)
            except (ValueError, OverflowError):
                continue
            if span is None:
                continue

            start_month, start_year, end_month, end_year = span
            swapped = False
            if (end_year, end_month) < (start_year, start_month):
                logger.warning(
                    "period_end_before_start_swapped",
                    period_text=raw,
                    start=f"{start_month}/{start_year}",
                    end=f"{end_month}/{end_year}",
                )
                start_month, start_year, end_month, end_year = end_month, end_year, start_month, start_year
                swapped = True

            try:
                period = StatementPeriod(
                    start_month=start_month,
                    start_year=start_year,
                    end_month=end_month,
                    end_year=end_year,
                    swapped=swapped,
                )
            except ValueError:
                continue

            logger.debug("period_parsed", period_text=raw, format_detected=format_name)
            return check_span_limit(period)

    raise ParseError(raw)


def try_parse_statement_period(raw: Optional[str]) -> Optional[StatementPeriod]:
    """Parse without raising; None means the caller falls back to heuristics."""
    if not raw:
        return None
    try:
        return parse_statement_period(raw)
    except ParseError:
        logger.info("period_unparseable", period_text=raw)
        return None


def _span_from_match(m, format_name: str) -> Optional[tuple[int, int, int, int]]:
    """Return (start_month, start_year, end_month, end_year) for a regex match."""
    g = m.groups()

    if format_name == "ISO_RANGE":
        start = date(int(g[0]), int(g[1]), int(g[2]))
        end = date(int(g[3]), int(g[4]), int(g[5]))
        return start.month, start.year, end.month, end.year

    if format_name == "DD/MM/YYYY_RANGE":
        start = date(int(g[2]), int(g[1]), int(g[0]))
        end = date(int(g[5]), int(g[4]), int(g[3]))
        return start.month, start.year, end.month, end.year

    if format_name == "DD_MON_YYYY_RANGE":
        start = dateutil_parser.parse(g[0], dayfirst=True).date()
        end = dateutil_parser.parse(g[1], dayfirst=True).date()
        return start.month, start.year, end.month, end.year

    if format_name == "MONTH_YYYY_RANGE":
        start_month = month_from_name(g[0])
        end_month = month_from_name(g[2])
        if start_month is None or end_month is None:
            return None
        return start_month, int(g[1]), end_month, int(g[3])

    if format_name == "MONTH_MONTH_YYYY":
        start_month = month_from_name(g[0])
        end_month = month_from_name(g[1])
        if start_month is None or end_month is None:
            return None
        year = int(g[2])
        return start_month, year, end_month, year

    if format_name == "MM/YYYY_RANGE":
        start_month, end_month = int(g[0]), int(g[2])
        if not (1 <= start_month <= 12 and 1 <= end_month <= 12):
            return None
        return start_month, int(g[1]), end_month, int(g[3])

    if format_name == "QUARTER":
        quarter = int(g[0])
        year = int(g[1])
        return (quarter - 1) * 3 + 1, year, quarter * 3, year

    if format_name == "ISO_DATE":
        single = date(int(g[0]), int(g[1]), int(g[2]))
        return single.month, single.year, single.month, single.year

    if format_name == "DD/MM/YYYY":
        single = date(int(g[2]), int(g[1]), int(g[0]))
        return single.month, single.year, single.month, single.year

    if format_name == "MM/YYYY":
        month = int(g[0])
        if not 1 <= month <= 12:
            return None
        return month, int(g[1]), month, int(g[1])

    if format_name == "MONTH_YYYY":
        month = month_from_name(g[0])
        if month is None:
            return None
        return month, int(g[1]), month, int(g[1])

    return None


def format_period(period: StatementPeriod) -> str:
    """Render a span in the canonical DD/MM/YYYY - DD/MM/YYYY form."""
    last_day = calendar.monthrange(period.end_year, period.end_month)[1]
    return (
        f"01/{period.start_month:02d}/{period.start_year} - "
        f"{last_day:02d}/{period.end_month:02d}/{period.end_year}"
    )
