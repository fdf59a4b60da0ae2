"""Tests for the quarter calendar."""

from datetime import date

import pytest

from valuewatch.services.quarters import (
    MalformedPeriodError,
    Period,
    current_period,
    expected_announcement_date,
    next_period,
    period_end_date,
    period_for_date,
    previous_period,
    upcoming_periods,
)


class TestPeriodParse:
    """Tests for Period.parse and token formatting."""

    def test_parses_token(self):
        assert Period.parse("Q3-2025") == Period(2025, 3)

    def test_lowercase_and_whitespace(self):
        assert Period.parse("  q1-2024 ") == Period(2024, 1)

    def test_str_round_trip(self):
        assert str(Period.parse("Q4-2023")) == "Q4-2023"

    def test_period_passes_through(self):
        p = Period(2025, 2)
        assert Period.parse(p) is p

    @pytest.mark.parametrize("token", ["Q5-2025", "Q0-2025", "Q1-0000", "2025-Q1", "Q1-25", "Q1 2025", "", None, 3])
    def test_malformed_tokens_raise(self, token):
        with pytest.raises(MalformedPeriodError):
            Period.parse(token)

    def test_malformed_is_value_error(self):
        with pytest.raises(ValueError):
            Period.parse("garbage")

    def test_chronological_ordering(self):
        """Q1-2025 is after Q4-2024 even though it sorts lower as a string."""
        assert Period.parse("Q1-2025") > Period.parse("Q4-2024")
        assert max(Period.parse(t) for t in ["Q4-2024", "Q1-2025", "Q2-2024"]) == Period(2025, 1)


class TestCalendar:
    """Tests for quarter arithmetic."""

    @pytest.mark.parametrize("day,expected", [
        (date(2025, 1, 1), Period(2025, 1)),
        (date(2025, 3, 31), Period(2025, 1)),
        (date(2025, 4, 1), Period(2025, 2)),
        (date(2025, 9, 30), Period(2025, 3)),
        (date(2025, 12, 31), Period(2025, 4)),
    ])
    def test_period_for_date(self, day, expected):
        assert period_for_date(day) == expected

    def test_current_period_uses_given_date(self):
        assert current_period(date(2025, 8, 15)) == Period(2025, 3)

    def test_previous_wraps_year(self):
        assert previous_period("Q1-2025") == Period(2024, 4)
        assert previous_period("Q3-2025") == Period(2025, 2)

    def test_next_wraps_year(self):
        assert next_period("Q4-2024") == Period(2025, 1)
        assert next_period("Q2-2025") == Period(2025, 3)

    def test_previous_and_next_are_inverse(self):
        for q in range(1, 5):
            p = Period(2025, q)
            assert previous_period(next_period(p)) == p

    @pytest.mark.parametrize("token,expected", [
        ("Q1-2025", date(2025, 3, 31)),
        ("Q2-2025", date(2025, 6, 30)),
        ("Q3-2025", date(2025, 9, 30)),
        ("Q4-2025", date(2025, 12, 31)),
    ])
    def test_period_end_date(self, token, expected):
        assert period_end_date(token) == expected

    def test_expected_announcement_is_45_days_after(self):
        assert expected_announcement_date(date(2025, 9, 30)) == date(2025, 11, 14)
        assert expected_announcement_date(date(2024, 12, 31)) == date(2025, 2, 14)

    def test_upcoming_periods(self):
        assert upcoming_periods(2, date(2025, 11, 2)) == [Period(2025, 4), Period(2026, 1)]

    def test_end_date_rejects_malformed(self):
        with pytest.raises(MalformedPeriodError):
            period_end_date("Q9-2025")
