"""Tests for the analytics engine operations."""

import pytest

from valuewatch.services.classifier import EXTREME, VERY_HIGH
from valuewatch.services.engine import AnalyticsEngine
from valuewatch.services.normalizer import DataNormalizer
from valuewatch.services.quarters import MalformedPeriodError, Period
from valuewatch.services.records import NormalizedHoldings, Provenance


class TestRefreshSnapshots:
    """Tests for AnalyticsEngine.refresh_snapshots."""

    def test_creates_synthetic_snapshots(self, engine, data_service):
        results = engine.refresh_snapshots(["tcs", "NEWCO", " tcs "])
        assert [r["identifier"] for r in results] == ["TCS", "NEWCO"]
        assert all(r["success"] for r in results)
        stock = data_service.get_stock("NEWCO")
        assert stock.source == "synthetic"
        assert stock.name == "NEWCO Ltd."
        assert data_service.count_stocks() == 2

    def test_rerun_updates_in_place(self, engine, data_service):
        engine.refresh_snapshots(["TCS"])
        engine.refresh_snapshots(["TCS"])
        assert data_service.count_stocks() == 1

    def test_refresh_keeps_tracking(self, engine, data_service):
        engine.refresh_snapshots(["TCS"])
        data_service.set_tracked("TCS", True)
        engine.refresh_snapshots(["TCS"])
        assert data_service.get_stock("TCS").is_tracked is True

    def test_live_failure_isolated(self, live_engine, fake_source, data_service):
        fake_source.quotes["TCS"] = {"lastPrice": 3450.0, "weekHigh52": 4000.0, "weekLow52": 3000.0}
        fake_source.quotes["INFY"] = ConnectionError("reset by peer")
        results = live_engine.refresh_snapshots(["TCS", "INFY"])
        assert all(r["success"] for r in results)
        assert data_service.get_stock("TCS").source == "live"
        assert data_service.get_stock("INFY").source == "synthetic"

    def test_persistence_failure_recorded(self, engine, monkeypatch):
        original = engine.data.upsert_stock

        def flaky(snapshot):
            if snapshot.symbol == "BAD":
                raise RuntimeError("disk full")
            return original(snapshot)

        monkeypatch.setattr(engine.data, "upsert_stock", flaky)
        results = engine.refresh_snapshots(["A", "BAD", "C"], batch_size=2)
        assert [r["success"] for r in results] == [True, False, True]
        assert results[1]["error"] == "disk full"

    def test_seed_tracks_reference_stocks(self, engine, data_service):
        results = engine.seed_reference_stocks()
        assert len(results) == 16
        assert "RELIANCE" in data_service.get_tracked_symbols()

    def test_default_normalizer_is_synthetic(self, db_session, monkeypatch):
        # Even with live data switched on by default, no source means synthetic
        defaults = list(DataNormalizer.__init__.__defaults__)
        defaults[1] = True
        monkeypatch.setattr(DataNormalizer.__init__, "__defaults__", tuple(defaults))

        engine = AnalyticsEngine(db_session, sleep=lambda s: None)
        assert engine.normalizer.use_live_source is False
        assert engine.refresh_snapshots(["TCS"])[0]["success"] is True
        assert engine.data.get_stock("TCS").source == "synthetic"


class TestScoreUndervalued:
    """Tests for AnalyticsEngine.score_undervalued."""

    def test_flags_overwritten_every_run(self, engine, add_stock, data_service):
        add_stock("CHEAP", price=100, pe_ratio=12, week_high=200, week_low=80)
        add_stock("PRICEY", price=150, pe_ratio=None, week_high=150, week_low=150)

        ranked = engine.score_undervalued()
        assert [(s.stock.symbol, s.score) for s in ranked] == [("CHEAP", 90)]
        assert data_service.get_stock("CHEAP").is_undervalued is True
        assert data_service.get_stock("PRICEY").is_undervalued is False

        # CHEAP rallies to its high; the old flag must not linger
        add_stock("CHEAP", price=200, pe_ratio=40, week_high=200, week_low=190)
        assert engine.score_undervalued() == []
        assert data_service.get_stock("CHEAP").is_undervalued is False

    def test_orders_by_score(self, engine, add_stock):
        add_stock("A", price=100, pe_ratio=12)
        add_stock("B", price=100, pe_ratio=12, week_high=200)
        add_stock("C", price=100, pe_ratio=12, market_cap=1e9)
        assert [s.stock.symbol for s in engine.score_undervalued()] == ["B", "C", "A"]


class TestRefreshHoldings:
    """Tests for AnalyticsEngine.refresh_holdings."""

    def test_malformed_period_before_work(self, engine, add_stock):
        add_stock("TCS")
        with pytest.raises(MalformedPeriodError):
            engine.refresh_holdings(["TCS"], target_period="Q5-2025")
        assert engine.data.get_holdings() == []

    def test_unknown_symbol_fails_alone(self, engine, add_stock):
        add_stock("TCS")
        results = engine.refresh_holdings(["NOPE", "TCS"])
        assert [r["success"] for r in results] == [False, True]
        assert "NOPE" in results[0]["error"]

    def test_changes_against_previous_quarter(self, engine, add_stock, monkeypatch):
        stock = add_stock("TCS")
        values = {
            Period(2025, 2): (20.0, 10.0),
            Period(2025, 3): (23.0, 10.0),
        }

        def holdings(symbol, period=None):
            fii, dii = values[period]
            return NormalizedHoldings(symbol, period, fii, dii, fii + dii, Provenance.SYNTHETIC)

        monkeypatch.setattr(engine.normalizer, "holdings", holdings)
        engine.refresh_holdings(["TCS"], target_period="Q2-2025")
        first = engine.data.get_holding(stock.id, "Q2-2025")
        assert first.fii_change is None
        assert first.is_significant is False

        results = engine.refresh_holdings(["TCS"], target_period="Q3-2025")
        record = results[0]["record"]
        assert record.quarter == "Q3-2025"
        assert record.previous_quarter == "Q2-2025"
        assert record.fii_change == 15.0
        assert record.dii_change == 0.0
        assert record.total_change == 10.0
        assert record.is_significant is True

    def test_rerun_is_idempotent(self, engine, add_stock, monkeypatch):
        stock = add_stock("TCS")
        monkeypatch.setattr(
            engine.normalizer, "holdings",
            lambda symbol, period=None: NormalizedHoldings(symbol, period, 20.0, 10.0, 30.0, Provenance.SYNTHETIC),
        )
        engine.refresh_holdings(["TCS"], target_period="Q3-2025")
        engine.refresh_holdings(["TCS"], target_period="Q3-2025")
        assert len(engine.data.get_holdings(symbol="TCS")) == 1
        assert engine.data.get_holding(stock.id, "Q3-2025").fii_holding == 20.0

    def test_stores_reported_period(self, live_engine, add_stock, fake_source):
        stock = add_stock("TCS")
        fake_source.shareholding["TCS"] = {"data": {"30-Sep-2024": [{"FII": "12.5"}, {"DII": "9.0"}]}}
        results = live_engine.refresh_holdings(["TCS"], target_period="Q1-2025")
        assert results[0]["record"].quarter == "Q3-2024"
        assert results[0]["record"].source == "live"
        assert live_engine.data.get_holding(stock.id, "Q1-2025") is None


class TestSignificantActivity:
    """Tests for AnalyticsEngine.significant_activity."""

    @pytest.fixture
    def history(self, engine, add_stock, monkeypatch):
        for symbol in ("AAA", "BBB", "CCC", "DDD"):
            add_stock(symbol)
        values = {
            ("AAA", Period(2025, 2)): 10.0, ("AAA", Period(2025, 3)): 16.0,   # +60%
            ("BBB", Period(2025, 2)): 20.0, ("BBB", Period(2025, 3)): 23.0,   # +15%
            ("CCC", Period(2025, 2)): 20.0, ("CCC", Period(2025, 3)): 20.5,   # +2.5%
            ("DDD", Period(2025, 2)): 20.0, ("DDD", Period(2025, 3)): 17.0,   # -15%
        }
        monkeypatch.setattr(
            engine.normalizer, "holdings",
            lambda symbol, period=None: NormalizedHoldings(
                symbol, period, values[(symbol, period)], None, None, Provenance.SYNTHETIC
            ),
        )
        symbols = ["AAA", "BBB", "CCC", "DDD"]
        engine.refresh_holdings(symbols, target_period="Q2-2025")
        engine.refresh_holdings(symbols, target_period="Q3-2025")
        return engine

    def test_increases_only_largest_first(self, history):
        activity = history.significant_activity()
        assert [a["snapshot"].symbol for a in activity] == ["AAA", "BBB"]
        assert activity[0]["activity_tier"] is EXTREME
        assert activity[1]["activity_tier"] is VERY_HIGH
        assert activity[0]["holding_record"].quarter == "Q3-2025"

    def test_min_change_filter(self, history):
        assert [a["snapshot"].symbol for a in history.significant_activity(20)] == ["AAA"]

    def test_latest_record_per_stock(self, history, monkeypatch):
        # A newer significant quarter replaces the older one
        monkeypatch.setattr(
            history.normalizer, "holdings",
            lambda symbol, period=None: NormalizedHoldings(symbol, period, 30.0, None, None, Provenance.SYNTHETIC),
        )
        history.refresh_holdings(["BBB"], target_period="Q4-2025")
        activity = history.significant_activity()
        bbb = [a for a in activity if a["snapshot"].symbol == "BBB"][0]
        assert bbb["holding_record"].quarter == "Q4-2025"


class TestGenerateUpcomingResults:
    """Tests for AnalyticsEngine.generate_upcoming_results."""

    def test_tracked_stocks_only(self, engine, add_stock):
        add_stock("TCS", tracked=True)
        add_stock("IDLE")
        results = engine.generate_upcoming_results()
        assert {(r["identifier"], r["period"]) for r in results} == {("TCS", "Q3-2025"), ("TCS", "Q4-2025")}

    def test_all_stocks(self, engine, add_stock):
        add_stock("TCS", tracked=True)
        add_stock("IDLE")
        assert len(engine.generate_upcoming_results(tracked_only=False)) == 4

    def test_idempotent(self, engine, add_stock):
        add_stock("TCS", tracked=True)
        engine.generate_upcoming_results()
        assert engine.generate_upcoming_results() == []


class TestRequestStop:
    """Tests for cooperative cancellation."""

    def test_stop_after_current_security(self, engine, monkeypatch):
        original = engine.data.upsert_stock
        seen = []

        def upsert(snapshot):
            seen.append(snapshot.symbol)
            if snapshot.symbol == "B":
                engine.request_stop()
            return original(snapshot)

        monkeypatch.setattr(engine.data, "upsert_stock", upsert)
        results = engine.refresh_snapshots(["A", "B", "C"])
        assert seen == ["A", "B"]
        assert [r["identifier"] for r in results] == ["A", "B"]

    def test_stop_without_run_is_harmless(self, engine):
        engine.request_stop()
        assert len(engine.refresh_snapshots(["A"])) == 1
