"""
Tests for month range expansion.
"""

import pytest

from statement_recon.errors import ParseError
from statement_recon.pipeline.month_range import (
    MonthRef,
    generate_month_range,
    iter_month_range,
    month_span_length,
)
from statement_recon.schemas.statements import StatementPeriod


def _period(start_month, start_year, end_month, end_year) -> StatementPeriod:
    return StatementPeriod(
        start_month=start_month, start_year=start_year, end_month=end_month, end_year=end_year,
    )


class TestGenerateMonthRange:

    def test_quarter(self):
        assert generate_month_range(_period(1, 2024, 3, 2024)) == [
            MonthRef(1, 2024), MonthRef(2, 2024), MonthRef(3, 2024),
        ]

    def test_single_month(self):
        assert generate_month_range(StatementPeriod.single(7, 2024)) == [MonthRef(7, 2024)]

    def test_crosses_year_boundary(self):
        months = generate_month_range(_period(11, 2023, 2, 2024))
        assert [m.label() for m in months] == ["2023-11", "2023-12", "2024-01", "2024-02"]

    def test_span_at_default_limit(self):
        months = generate_month_range(_period(1, 2000, 12, 2009))
        assert len(months) == 120
        assert months[-1] == MonthRef(12, 2009)

    def test_span_past_default_limit_rejected(self):
        with pytest.raises(ParseError) as exc_info:
            generate_month_range(_period(1, 2010, 12, 2020))
        assert "132 months" in exc_info.value.message

    def test_explicit_limit(self):
        assert len(generate_month_range(_period(1, 2024, 4, 2024), max_months=4)) == 4
        with pytest.raises(ParseError):
            generate_month_range(_period(1, 2024, 12, 2024), max_months=4)

    def test_iterator_restarts_per_call(self):
        period = _period(1, 2024, 3, 2024)
        first = list(iter_month_range(period))
        second = list(iter_month_range(period))
        assert first == second


class TestPeriodBounds:

    def test_end_before_start_rejected(self):
        with pytest.raises(ValueError):
            _period(3, 2024, 1, 2024)

    def test_span_length(self):
        assert month_span_length(_period(1, 2024, 3, 2024)) == 3
        assert month_span_length(_period(12, 2023, 1, 2024)) == 2
        assert month_span_length(StatementPeriod.single(5, 2024)) == 1
