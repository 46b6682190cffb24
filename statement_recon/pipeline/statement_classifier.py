"""
Statement kind classification - monthly vs range.

Decision order (each check short-circuits):
1. Explicit kind on the input
2. More than one monthly balance in the payload
3. Parsed period spanning more than one calendar month
4. Quarter keywords in the period text
5. Monthly
"""

import re
from typing import Optional

import structlog
from pydantic import BaseModel

from statement_recon.errors import ClassificationAmbiguous
from statement_recon.models.enums import StatementKind
from statement_recon.pipeline.month_range import month_span_length
from statement_recon.pipeline.period_parser import try_parse_statement_period
from statement_recon.schemas.statements import StatementExtraction

logger = structlog.get_logger(__name__)


class ClassificationResult(BaseModel):
    kind: StatementKind = StatementKind.MONTHLY
    reason: str
    span_months: Optional[int] = None
    ambiguous: bool = False
    label_conflict: bool = False

    def raise_if_ambiguous(self) -> None:
        """For callers that cannot accept the monthly default."""
        if self.ambiguous:
            raise ClassificationAmbiguous(
                f"Not enough signal to classify statement ({self.reason}); defaulted to monthly",
                context={"reason": self.reason},
            )


RANGE_KEYWORDS = re.compile(r"quarter|\bq[1-4]\b", re.IGNORECASE)


def classify_statement(
    extraction: Optional[StatementExtraction],
    explicit_kind: Optional[StatementKind] = None,
) -> ClassificationResult:
    """Decide whether an extraction describes a monthly or a range statement."""
    balance_count = len(extraction.monthly_balances) if extraction else 0
    period_text = extraction.statement_period if extraction else None

    if explicit_kind is not None:
        kind = StatementKind(explicit_kind)
        inferred = _infer_kind(balance_count, period_text)
        conflict = inferred.kind != kind and not inferred.ambiguous
        if conflict:
            # The label still wins; flagged so mislabelled uploads can be audited.
            logger.warning(
                "statement_kind_label_conflict",
                label=kind.value,
                inferred=inferred.kind.value,
                inferred_reason=inferred.reason,
                balance_count=balance_count,
                period_text=period_text,
            )
        return ClassificationResult(
            kind=kind,
            reason="EXPLICIT_LABEL",
            span_months=inferred.span_months,
            label_conflict=conflict,
        )

    return _infer_kind(balance_count, period_text)


def _infer_kind(balance_count: int, period_text: Optional[str]) -> ClassificationResult:
    if balance_count > 1:
        return ClassificationResult(
            kind=StatementKind.RANGE,
            reason="MULTIPLE_BALANCES",
        )

    if period_text:
        period = try_parse_statement_period(period_text)
        span = month_span_length(period) if period is not None else None
        if span is not None and span > 1:
            return ClassificationResult(kind=StatementKind.RANGE, reason="PERIOD_SPAN", span_months=span)

        if RANGE_KEYWORDS.search(period_text):
            return ClassificationResult(kind=StatementKind.RANGE, reason="QUARTER_KEYWORD", span_months=span)

        if span is not None:
            return ClassificationResult(kind=StatementKind.MONTHLY, reason="SINGLE_MONTH_PERIOD", span_months=1)
        return ClassificationResult(
            kind=StatementKind.MONTHLY,
            reason="UNPARSEABLE_PERIOD",
            ambiguous=balance_count == 0,
        )

    return ClassificationResult(
        kind=StatementKind.MONTHLY,
        reason="SINGLE_BALANCE" if balance_count == 1 else "NO_SIGNAL",
        ambiguous=balance_count == 0,
    )
