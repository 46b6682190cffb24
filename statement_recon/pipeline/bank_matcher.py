"""
Bank matching - map an upload item's filename hints to a known BankAccount.

Account-number containment is tried first (high confidence), bank-name
containment second (lower confidence). The first match wins; no match leaves
the item unmatched and blocks extraction.
"""

import re
from typing import Optional, Sequence

import structlog
from pydantic import BaseModel

from statement_recon.models.enums import MatchSource
from statement_recon.observability.metrics import bank_matches_total
from statement_recon.schemas.batches import DetectedInfo
from statement_recon.schemas.statements import BankAccount

logger = structlog.get_logger(__name__)

ACCOUNT_NUMBER_CONFIDENCE = 0.9
BANK_NAME_CONFIDENCE = 0.7


class BankMatchResult(BaseModel):
    bank: Optional[BankAccount] = None
    confidence: float = 0.0
    source: MatchSource = MatchSource.NONE


def _digits(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def _account_matches(detected: str, bank: BankAccount) -> bool:
    detected_digits = _digits(detected)
    bank_digits = _digits(bank.account_number)
    if not detected_digits or not bank_digits:
        return False
    return detected_digits in bank_digits or bank_digits in detected_digits


def _name_matches(detected: str, bank: BankAccount) -> bool:
    detected_lower = detected.lower().strip()
    bank_lower = (bank.bank_name or "").lower().strip()
    if not detected_lower or not bank_lower:
        return False
    return detected_lower in bank_lower or bank_lower in detected_lower


def match_bank(
    hints: DetectedInfo,
    banks: Sequence[BankAccount],
    company_id: Optional[str] = None,
) -> BankMatchResult:
    """Find the bank an upload belongs to. Scoped to one company when company_id is given."""
    candidates = [b for b in banks if company_id is None or b.company_id == company_id]

    if hints.account_number:
        for bank in candidates:
            if _account_matches(hints.account_number, bank):
                bank_matches_total.labels(source=MatchSource.ACCOUNT_NUMBER.value).inc()
                return BankMatchResult(
                    bank=bank,
                    confidence=ACCOUNT_NUMBER_CONFIDENCE,
                    source=MatchSource.ACCOUNT_NUMBER,
                )

    if hints.bank_name:
        for bank in candidates:
            if _name_matches(hints.bank_name, bank):
                bank_matches_total.labels(source=MatchSource.BANK_NAME.value).inc()
                return BankMatchResult(
                    bank=bank,
                    confidence=BANK_NAME_CONFIDENCE,
                    source=MatchSource.BANK_NAME,
                )

    bank_matches_total.labels(source=MatchSource.NONE.value).inc()
    logger.info(
        "bank_unmatched",
        account_hint=hints.account_number,
        bank_hint=hints.bank_name,
        candidates=len(candidates),
    )
    return BankMatchResult()
