"""Tests for quarterly result scheduling."""

from datetime import date

import pytest

from valuewatch.services.quarters import MalformedPeriodError
from valuewatch.services.scheduler import ResultNotFoundError, ResultScheduler

TODAY = date(2025, 8, 15)


@pytest.fixture
def scheduler(data_service, synthetic_normalizer):
    return ResultScheduler(data_service, synthetic_normalizer, today=lambda: TODAY)


@pytest.fixture
def tracked(add_stock):
    return [add_stock("INFY", tracked=True), add_stock("TCS", tracked=True)]


class TestGenerate:
    """Tests for ResultScheduler.generate."""

    def test_creates_current_and_next_quarter(self, scheduler, tracked, data_service):
        results = scheduler.generate(tracked)
        assert [(r["identifier"], r["period"]) for r in results] == [
            ("INFY", "Q3-2025"), ("INFY", "Q4-2025"), ("TCS", "Q3-2025"), ("TCS", "Q4-2025"),
        ]
        assert all(r["success"] for r in results)

        row = data_service.get_quarter_result(tracked[0].id, "Q3-2025")
        assert row.quarter_end_date == date(2025, 9, 30)
        assert row.expected_date == date(2025, 11, 14)
        assert row.is_announced is False

        q4 = data_service.get_quarter_result(tracked[0].id, "Q4-2025")
        assert q4.expected_date == date(2026, 2, 14)

    def test_rerun_skips_existing_rows(self, scheduler, tracked):
        scheduler.generate(tracked)
        assert scheduler.generate(tracked) == []

    def test_regenerate_never_unannounces(self, scheduler, tracked, data_service):
        scheduler.generate(tracked)
        scheduler.mark_announced("INFY", "Q3-2025", actual_date=date(2025, 8, 10))
        # A later run after the quarter has ended rewrites the dates only
        later = ResultScheduler(data_service, today=lambda: date(2025, 10, 2))
        later.generate(tracked, periods_ahead=1)
        data_service.upsert_quarter_result(tracked[0], "Q3-2025")

        row = data_service.get_quarter_result(tracked[0].id, "Q3-2025")
        assert row.is_announced is True
        assert row.actual_date == date(2025, 8, 10)

    def test_rejects_non_positive_periods(self, scheduler, tracked):
        with pytest.raises(ValueError):
            scheduler.generate(tracked, periods_ahead=0)


class TestMarkAnnounced:
    """Tests for ResultScheduler.mark_announced."""

    def test_transition(self, scheduler, tracked):
        scheduler.generate(tracked)
        row = scheduler.mark_announced("infy", "Q3-2025", revenue=41000.0, eps=16.4)
        assert row.is_announced is True
        assert row.actual_date == TODAY
        assert (row.revenue, row.profit, row.eps) == (41000.0, None, 16.4)

    def test_idempotent(self, scheduler, tracked):
        scheduler.generate(tracked)
        first = scheduler.mark_announced("INFY", "Q3-2025", actual_date=date(2025, 8, 1))
        again = scheduler.mark_announced("INFY", "Q3-2025", actual_date=date(2025, 8, 9), eps=99.0)
        assert again.id == first.id
        assert again.actual_date == date(2025, 8, 1)
        assert again.eps is None

    def test_missing_row(self, scheduler, tracked):
        with pytest.raises(ResultNotFoundError):
            scheduler.mark_announced("INFY", "Q1-2020")

    def test_unknown_symbol(self, scheduler):
        with pytest.raises(ResultNotFoundError):
            scheduler.mark_announced("NOPE", "Q3-2025")

    def test_malformed_quarter(self, scheduler, tracked):
        with pytest.raises(MalformedPeriodError):
            scheduler.mark_announced("INFY", "third quarter")


class TestUpcoming:
    """Tests for upcoming and grouped queries."""

    def test_window_and_overdue(self, data_service, tracked):
        # Q2-2025 rows were expected on 2025-08-14, a day before TODAY
        past = ResultScheduler(data_service, today=lambda: date(2025, 5, 20))
        past.generate(tracked, periods_ahead=1)
        scheduler = ResultScheduler(data_service, today=lambda: TODAY)
        scheduler.generate(tracked)

        entries = scheduler.upcoming(days_ahead=60)
        assert [(e["result"].stock.symbol, e["result"].quarter) for e in entries] == [
            ("INFY", "Q2-2025"), ("TCS", "Q2-2025"),
        ]
        assert all(e["is_overdue"] for e in entries)
        assert entries[0]["days_until"] == -1

        wider = scheduler.upcoming(days_ahead=100)
        assert [e["result"].quarter for e in wider] == ["Q2-2025", "Q2-2025", "Q3-2025", "Q3-2025"]
        assert [e["is_overdue"] for e in wider] == [True, True, False, False]

    def test_announced_hidden_by_default(self, data_service, tracked):
        scheduler = ResultScheduler(data_service, today=lambda: TODAY)
        scheduler.generate(tracked)
        scheduler.mark_announced("TCS", "Q3-2025")
        symbols = [e["result"].stock.symbol for e in scheduler.upcoming(days_ahead=100)]
        assert symbols == ["INFY"]
        assert len(scheduler.upcoming(days_ahead=100, include_announced=True)) == 2
        assert len(scheduler.upcoming(days_ahead=100, limit=1)) == 1

    def test_grouped_by_date(self, data_service, tracked):
        scheduler = ResultScheduler(data_service, today=lambda: TODAY)
        scheduler.generate(tracked)
        scheduler.mark_announced("TCS", "Q3-2025", actual_date=date(2025, 8, 12))

        grouped = scheduler.grouped_by_date(days_ahead=100)
        assert list(grouped["announced"]) == ["2025-08-12"]
        assert list(grouped["upcoming"]) == ["2025-11-14"]
        assert grouped["upcoming"]["2025-11-14"][0]["result"].stock.symbol == "INFY"


class TestSyncAnnouncements:
    """Tests for ResultScheduler.sync_announcements."""

    def test_synthetic_mode_is_noop(self, scheduler, tracked):
        scheduler.generate(tracked)
        assert scheduler.sync_announcements(["INFY", "TCS"]) == []

    def test_live_filing_marks_previous_quarter(self, data_service, live_normalizer, fake_source, tracked):
        fake_source.announcements["INFY"] = {"data": [
            {"subject": "Outcome of Board Meeting - Quarterly Results", "date": "2025-07-17", "revenue": "42279"},
        ]}
        scheduler = ResultScheduler(data_service, live_normalizer, today=lambda: TODAY)

        updated = scheduler.sync_announcements(["INFY", "TCS"])
        assert [(r.stock.symbol, r.quarter) for r in updated] == [("INFY", "Q2-2025")]
        assert updated[0].actual_date == date(2025, 7, 17)
        assert updated[0].revenue == 42279.0
        assert updated[0].expected_date == date(2025, 8, 14)

        # Already announced; nothing new
        assert scheduler.sync_announcements(["INFY"]) == []
