"""
Day-first statement date parser.
Used for balance closing/opening dates returned by engines as free text.
"""

import re
from datetime import date, datetime
from typing import Optional, Union

from dateutil import parser as dateutil_parser


# Ordered by specificity (try most specific first)
DATE_FORMATS = [
    (r"(\d{4})-(\d{2})-(\d{2})", "YYYY-MM-DD"),
    (r"(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{4})", "DD/MM/YYYY"),
    (r"(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{2})\b", "DD/MM/YY"),
    (r"\d{1,2}(?:st|nd|rd|th)?[\s\-]+[A-Za-z]{3,9}\.?,?[\s\-]+\d{2,4}", "DD_MON_YYYY"),
]


def parse_statement_date(raw: Union[str, date, None]) -> Optional[date]:
    """Parse a statement date, assuming day-first for numeric forms. None when unparseable."""
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw

    text = raw.strip()
    for pattern, format_name in DATE_FORMATS:
        m = re.search(pattern, text)
        if not m:
            continue
        try:
            if format_name == "YYYY-MM-DD":
                return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
            if format_name == "DD/MM/YYYY":
                return date(int(m.group(3)), int(m.group(2)), int(m.group(1)))
            if format_name == "DD/MM/YY":
                return date(2000 + int(m.group(3)), int(m.group(2)), int(m.group(1)))
            return dateutil_parser.parse(m.group(0), dayfirst=True).date()
        except (ValueError, OverflowError):
            continue
    return None


def is_date_like(text: str) -> bool:
    """Quick check if text looks like it could be a date."""
    return bool(text) and parse_statement_date(text) is not None
