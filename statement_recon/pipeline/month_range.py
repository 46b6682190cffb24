"""
Month range expansion.
Turns a StatementPeriod into the ascending (month, year) pairs it covers, inclusive.
"""

from typing import Iterator, NamedTuple, Optional

from statement_recon.config import settings
from statement_recon.errors import ParseError
from statement_recon.schemas.statements import StatementPeriod


class MonthRef(NamedTuple):
    month: int
    year: int

    def label(self) -> str:
        return f"{self.year}-{self.month:02d}"


def month_span_length(period: StatementPeriod) -> int:
    """Number of calendar months covered, inclusive of both ends."""
    return (period.end_year - period.start_year) * 12 + (period.end_month - period.start_month) + 1


def check_span_limit(period: StatementPeriod, max_months: Optional[int] = None) -> StatementPeriod:
    """Raise ParseError for spans longer than the month ceiling; never truncate."""
    limit = max_months if max_months is not None else settings.MAX_RANGE_MONTHS
    span = month_span_length(period)
    if span > limit:
        text = f"{period.start_month:02d}/{period.start_year} - {period.end_month:02d}/{period.end_year}"
        raise ParseError(text, f"Statement period {text} covers {span} months; at most {limit} are supported")
    return period


def iter_month_range(period: StatementPeriod, max_months: Optional[int] = None) -> Iterator[MonthRef]:
    """Yield every month from start to end inclusive. Each call starts afresh."""
    check_span_limit(period, max_months)
    month, year = period.start_month, period.start_year

    while (year, month) <= (period.end_year, period.end_month):
        yield MonthRef(month, year)
        month += 1
        if month > 12:
            month = 1
            year += 1


def generate_month_range(period: StatementPeriod, max_months: Optional[int] = None) -> list[MonthRef]:
    return list(iter_month_range(period, max_months))
