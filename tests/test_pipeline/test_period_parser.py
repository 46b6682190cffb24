"""
Tests for statement period parsing.
"""

import pytest

from statement_recon.errors import ParseError
from statement_recon.pipeline.period_parser import (
    format_period,
    month_from_name,
    parse_statement_period,
    try_parse_statement_period,
)
from statement_recon.schemas.statements import StatementPeriod


def _span(period: StatementPeriod) -> tuple[int, int, int, int]:
    return period.start_month, period.start_year, period.end_month, period.end_year


class TestRanges:

    def test_canonical_day_first_range(self):
        assert _span(parse_statement_period("01/01/2024 - 31/03/2024")) == (1, 2024, 3, 2024)

    def test_dotted_range_inside_text(self):
        period = parse_statement_period("Statement period: 01.02.2024 - 29.02.2024")
        assert _span(period) == (2, 2024, 2, 2024)
        assert period.is_single_month

    def test_iso_range_with_to(self):
        assert _span(parse_statement_period("2024-01-01 to 2024-03-31")) == (1, 2024, 3, 2024)

    def test_day_month_name_range(self):
        assert _span(parse_statement_period("1 Jan 2024 - 31 Mar 2024")) == (1, 2024, 3, 2024)

    def test_month_year_range(self):
        assert _span(parse_statement_period("January 2024 - March 2024")) == (1, 2024, 3, 2024)

    def test_month_month_year(self):
        assert _span(parse_statement_period("January - March 2024")) == (1, 2024, 3, 2024)

    def test_cross_year(self):
        assert _span(parse_statement_period("01/11/2023 - 31/01/2024")) == (11, 2023, 1, 2024)

    def test_quarter(self):
        assert _span(parse_statement_period("Q1 2024")) == (1, 2024, 3, 2024)
        assert _span(parse_statement_period("Quarter 2 2024")) == (4, 2024, 6, 2024)


class TestSingleMonth:

    def test_single_date(self):
        assert _span(parse_statement_period("31/01/2024")) == (1, 2024, 1, 2024)

    def test_month_slash_year(self):
        assert _span(parse_statement_period("03/2024")) == (3, 2024, 3, 2024)

    def test_month_name_year(self):
        assert _span(parse_statement_period("March 2024")) == (3, 2024, 3, 2024)


class TestReversedAndInvalid:

    def test_end_before_start_is_swapped_and_flagged(self):
        period = parse_statement_period("31/03/2024 - 01/01/2024")
        assert _span(period) == (1, 2024, 3, 2024)
        assert period.swapped

    def test_forward_period_not_flagged(self):
        assert not parse_statement_period("01/01/2024 - 31/03/2024").swapped

    def test_unparseable_raises(self):
        with pytest.raises(ParseError) as exc_info:
            parse_statement_period("not a period")
        assert exc_info.value.error_code == "ERR_PERIOD_PARSE"
        assert exc_info.value.raw_text == "not a period"

    def test_empty_raises(self):
        with pytest.raises(ParseError):
            parse_statement_period("   ")

    def test_try_parse_returns_none(self):
        assert try_parse_statement_period("not a period") is None
        assert try_parse_statement_period(None) is None

    def test_span_past_month_ceiling_raises(self):
        with pytest.raises(ParseError):
            parse_statement_period("01/01/2010 - 31/12/2020")
        assert try_parse_statement_period("01/01/2010 - 31/12/2020") is None


class TestHelpers:

    def test_month_from_name(self):
        assert month_from_name("Jan") == 1
        assert month_from_name("January") == 1
        assert month_from_name("Sept") == 9
        assert month_from_name("Dec.") == 12

    def test_month_from_name_rejects_lookalikes(self):
        assert month_from_name("Marching") is None
        assert month_from_name("Period") is None

    def test_format_period_uses_last_day_of_end_month(self):
        period = StatementPeriod(start_month=1, start_year=2024, end_month=2, end_year=2024)
        assert format_period(period) == "01/01/2024 - 29/02/2024"

    def test_formatted_period_parses_back(self):
        period = StatementPeriod(start_month=11, start_year=2023, end_month=4, end_year=2024)
        assert _span(parse_statement_period(format_period(period))) == (11, 2023, 4, 2024)
