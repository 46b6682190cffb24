"""
Field-level validation of extracted statements against bank ground truth.

Checks, in order (each failure appends one mismatch):
1. Bank name present and contains the ground-truth bank name (case-insensitive)
2. Account number present and contains the ground-truth account number
3. Normalised currency equals the ground-truth currency
4. At least one monthly balance
"""

import re
from datetime import datetime
from typing import Optional

import structlog
from pydantic import BaseModel

from statement_recon.models.enums import WorkflowState
from statement_recon.observability.metrics import validations_total
from statement_recon.schemas.statements import (
    BankAccount,
    StatementExtraction,
    ValidationStatus,
    WorkflowStatus,
    utcnow,
)

logger = structlog.get_logger(__name__)


CURRENCY_ALIASES = {
    # Kenya shilling
    "KSH": "KES",
    "KSHS": "KES",
    "K.SH": "KES",
    "K.SHS": "KES",
    "KSH.": "KES",
    "SH": "KES",
    "SHS": "KES",
    "SHILLING": "KES",
    "SHILLINGS": "KES",
    "KENYA SHILLING": "KES",
    "KENYA SHILLINGS": "KES",
    "KENYAN SHILLING": "KES",
    "KENYAN SHILLINGS": "KES",
    # Euro
    "EURO": "EUR",
    "EUROS": "EUR",
    "EUROPEAN UNION EURO": "EUR",
    # Pound sterling
    "POUND": "GBP",
    "POUNDS": "GBP",
    "STERLING": "GBP",
    "POUND STERLING": "GBP",
    "BRITISH POUND": "GBP",
    "BRITISH POUNDS": "GBP",
    # US dollar
    "US DOLLAR": "USD",
    "US DOLLARS": "USD",
    "USDOLLAR": "USD",
    "US$": "USD",
    "U.S. DOLLAR": "USD",
    "U.S. DOLLARS": "USD",
    "DOLLAR": "USD",
    "DOLLARS": "USD",
    "UNITED STATES DOLLAR": "USD",
    "UNITED STATES DOLLARS": "USD",
}

_ACCOUNT_SEPARATORS = re.compile(r"[\s\-.]")


class ValidationOutcome(BaseModel):
    is_validated: bool
    mismatches: list[str] = []


def normalize_currency_code(code: Optional[str]) -> str:
    """Map verbal or abbreviated currency names to ISO codes. Unknown codes pass through uppercased."""
    if not code:
        return ""
    upper = code.strip().upper()
    return CURRENCY_ALIASES.get(upper, upper)


def _clean_account_number(value: str) -> str:
    return _ACCOUNT_SEPARATORS.sub("", value)


def validate_extraction(
    extraction: Optional[StatementExtraction],
    bank: BankAccount,
) -> ValidationOutcome:
    """Compare an extraction payload against its owning bank account."""
    if extraction is None:
        return ValidationOutcome(is_validated=False, mismatches=["No data extracted from statement"])

    mismatches: list[str] = []

    if not extraction.bank_name:
        mismatches.append("Bank name not found in statement")
    elif bank.bank_name.lower() not in extraction.bank_name.lower():
        mismatches.append(
            f'Bank name mismatch: expected "{bank.bank_name}", found "{extraction.bank_name}"'
        )

    if not extraction.account_number:
        mismatches.append("Account number not found in statement")
    elif _clean_account_number(bank.account_number) not in _clean_account_number(extraction.account_number):
        mismatches.append(
            f'Account number mismatch: expected "{bank.account_number}", '
            f'found "{extraction.account_number}"'
        )

    if not extraction.currency:
        mismatches.append("Currency not found in statement")
    elif normalize_currency_code(extraction.currency) != normalize_currency_code(bank.currency):
        mismatches.append(
            f'Currency mismatch: expected "{bank.currency}", found "{extraction.currency}"'
        )

    if not extraction.monthly_balances:
        mismatches.append("No monthly balances found in statement")

    return ValidationOutcome(is_validated=not mismatches, mismatches=mismatches)


def build_validation_status(
    outcome: ValidationOutcome,
    validator_id: Optional[str],
    now: Optional[datetime] = None,
) -> ValidationStatus:
    """A fresh ValidationStatus; previous mismatches are discarded, never merged."""
    validations_total.labels(result="pass" if outcome.is_validated else "fail").inc()
    return ValidationStatus(
        is_validated=outcome.is_validated,
        validation_date=now or utcnow(),
        validated_by=validator_id,
        mismatches=list(outcome.mismatches),
    )


def workflow_for(outcome: ValidationOutcome, previous: Optional[WorkflowStatus] = None) -> WorkflowStatus:
    """Workflow status after validation; only the assignee carries forward."""
    return WorkflowStatus(
        status=WorkflowState.VALIDATED if outcome.is_validated else WorkflowState.PENDING_VALIDATION,
        assigned_to=previous.assigned_to if previous else None,
        verification_date=utcnow() if outcome.is_validated else None,
    )
