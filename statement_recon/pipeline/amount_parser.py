"""
Balance amount parser.

Handles the conventions seen on East African and international statements:
- KES 1,234.56 / KSh1,234.56 / USD 1,234.56 / 1234.56
- (1,234.56)        -> negative (parentheses)
- 1,234.56 DR       -> negative (DR/CR suffix)
- 1,234.56 CR       -> positive
- -1,234.56         -> negative (leading minus)
- 1,234.56-         -> negative (trailing minus)
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from pydantic import BaseModel


class AmountParseResult(BaseModel):
    amount: Optional[Decimal] = None
    raw_text: str
    is_negative: bool = False
    sign_convention: Optional[str] = None  # PARENTHESES, DR_CR, MINUS, NONE


_CURRENCY_TOKENS = re.compile(
    r"K\.?\s?SHS?\.?|KES|USD|US\$|EUR|GBP|TZS|UGX|[$€£]",
    re.IGNORECASE,
)


def parse_amount(raw: str) -> AmountParseResult:
    """Parse a monetary amount, stripping currency markers and resolving sign conventions."""
    s = _CURRENCY_TOKENS.sub("", raw or "").strip()

    if not s or s in ("-", "--", "---"):
        return AmountParseResult(amount=None, raw_text=raw or "")

    is_negative = False
    sign_convention = "NONE"

    if s.startswith("(") and s.endswith(")"):
        s = s[1:-1].strip()
        is_negative = True
        sign_convention = "PARENTHESES"

    m = re.match(r"^(.+?)\s*(DR|CR)$", s, re.IGNORECASE)
    if m:
        s = m.group(1).strip()
        is_negative = m.group(2).upper() == "DR"
        sign_convention = "DR_CR"

    if not is_negative and s.endswith("-"):
        s = s[:-1].strip()
        is_negative = True
        sign_convention = "MINUS"

    if not is_negative and (s.startswith("-") or s.startswith(chr(8722))):
        s = s[1:].strip()
        is_negative = True
        sign_convention = "MINUS"

    s = s.replace(",", "").replace(" ", "")

    try:
        amount = Decimal(s)
    except (InvalidOperation, ValueError):
        return AmountParseResult(amount=None, raw_text=raw)

    if is_negative:
        amount = -amount

    return AmountParseResult(
        amount=amount,
        raw_text=raw,
        is_negative=is_negative,
        sign_convention=sign_convention,
    )


def coerce_amount(value: Union[str, int, float, Decimal, None]) -> Optional[Decimal]:
    """Normalise whatever an engine returned for a balance into a Decimal or None."""
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    return parse_amount(str(value)).amount


def is_amount_like(text: str) -> bool:
    """Quick check if text looks like it could be a monetary amount."""
    if not text or not text.strip():
        return False
    return parse_amount(text).amount is not None
