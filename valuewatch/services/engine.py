"""
Analytics engine facade.

Ties the normalizer, scorer, classifier and scheduler to the storage layer.
Every operation works from persisted state, so any of them can be re-run at
any time; batch operations report one entry per identifier.
"""
import logging
import time
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from valuewatch.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_INTER_BATCH_DELAY_MS,
    DEFAULT_INTER_REQUEST_DELAY_MS,
    DEFAULT_PERIODS_AHEAD,
    REFERENCE_STOCKS,
    SIGNIFICANT_CHANGE_PCT,
)
from valuewatch.db.models import InstitutionalHolding, Stock
from valuewatch.services.batch import SchedulingPolicy, SequentialExecutor
from valuewatch.services.classifier import activity_tier, compute_changes, max_abs_change
from valuewatch.services.data_service import DataService
from valuewatch.services.normalizer import DataNormalizer
from valuewatch.services.quarters import Period, PeriodLike, previous_period
from valuewatch.services.scheduler import ResultScheduler
from valuewatch.services.valuation import ScoredSnapshot, ValuationScorer

logger = logging.getLogger(__name__)


def _clean_identifiers(identifiers: Iterable[str]) -> List[str]:
    """Uppercase, drop blanks and repeats, keep first-seen order."""
    seen: Dict[str, None] = {}
    for identifier in identifiers:
        symbol = str(identifier).strip().upper()
        if symbol:
            seen.setdefault(symbol, None)
    return list(seen)


class AnalyticsEngine:
    """
    Entry point for the batch operations.

    One engine wraps one database session. The normalizer (and through it
    the market-data source) is passed in, never looked up globally.
    """

    def __init__(
        self,
        db: Session,
        normalizer: Optional[DataNormalizer] = None,
        today: Callable[[], date] = date.today,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.data = DataService(db)
        self.normalizer = normalizer or DataNormalizer(use_live_source=False, today=today)
        self.scheduler = ResultScheduler(self.data, self.normalizer, today=today)
        self._sleep = sleep
        self._executor: Optional[SequentialExecutor] = None

    def request_stop(self) -> None:
        """Finish the security in progress, then stop the running batch."""
        if self._executor is not None:
            self._executor.request_stop()

    def _run(self, identifiers: List[str], work: Callable[[str], Any], policy: SchedulingPolicy) -> List[Dict[str, Any]]:
        self._executor = SequentialExecutor(policy, sleep=self._sleep)

        def guarded(identifier: str) -> Any:
            try:
                return work(identifier)
            except Exception:
                # Leave the session usable for the next identifier
                self.data.db.rollback()
                raise

        try:
            return [r.to_dict() for r in self._executor.run(identifiers, guarded)]
        finally:
            self._executor = None

    # === Snapshots ===

    def refresh_snapshots(
        self,
        identifiers: Iterable[str],
        batch_size: int = DEFAULT_BATCH_SIZE,
        inter_batch_delay_ms: int = DEFAULT_INTER_BATCH_DELAY_MS,
        inter_request_delay_ms: int = DEFAULT_INTER_REQUEST_DELAY_MS,
    ) -> List[Dict[str, Any]]:
        """
        Fetch (or synthesize) and upsert a snapshot per identifier.

        Returns [{identifier, success, record | error}] in processing order.
        """
        policy = SchedulingPolicy(
            batch_size=batch_size,
            inter_request_delay_ms=inter_request_delay_ms,
            inter_batch_delay_ms=inter_batch_delay_ms,
        )
        symbols = _clean_identifiers(identifiers)
        logger.info("Refreshing %d snapshots", len(symbols))

        def work(symbol: str) -> Stock:
            return self.data.upsert_stock(self.normalizer.snapshot(symbol))

        results = self._run(symbols, work, policy)
        logger.info("Snapshot refresh done: %d/%d succeeded",
                    sum(1 for r in results if r["success"]), len(symbols))
        return results

    def seed_reference_stocks(self, track: bool = True) -> List[Dict[str, Any]]:
        """Refresh every reference security and mark them tracked."""
        symbols = [row[0] for row in REFERENCE_STOCKS]
        results = self.refresh_snapshots(symbols)
        if track:
            for result in results:
                if result["success"]:
                    self.data.set_tracked(result["identifier"], True)
        return results

    def score_undervalued(self) -> List[ScoredSnapshot]:
        """
        Score every priced snapshot and overwrite the undervalued flags.

        Returns the undervalued subset, highest score first.
        """
        scored = ValuationScorer.score(self.data.get_priced_stocks())
        ranked = ValuationScorer.rank(scored)
        self.data.overwrite_undervalued_flags([s.stock.id for s in ranked])
        logger.info("Scored %d snapshots, %d undervalued", len(scored), len(ranked))
        return ranked

    # === Institutional holdings ===

    def refresh_holdings(
        self,
        identifiers: Iterable[str],
        target_period: Optional[PeriodLike] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch and upsert FII/DII holdings, recomputing changes.

        Changes are measured against the quarter before the one the data
        actually covers. A malformed `target_period` raises before any
        identifier is processed.
        """
        period = Period.parse(target_period) if target_period is not None else None
        symbols = _clean_identifiers(identifiers)
        logger.info("Refreshing holdings for %d stocks (target %s)", len(symbols), period or "current")

        def work(symbol: str) -> InstitutionalHolding:
            stock = self.data.get_stock(symbol)
            if stock is None:
                raise LookupError(f"Symbol '{symbol}' has no snapshot; refresh it first")
            holdings = self.normalizer.holdings(symbol, period)
            prior = self.data.get_holding(stock.id, previous_period(holdings.period))
            changes = compute_changes(holdings, prior)
            return self.data.upsert_holding(stock, holdings, changes)

        return self._run(symbols, work, SchedulingPolicy())

    def significant_activity(self, min_change_pct: float = SIGNIFICANT_CHANGE_PCT) -> List[Dict[str, Any]]:
        """
        Latest significant holding record per stock, largest change first.

        Only records with an FII, DII or total increase of at least
        `min_change_pct` are considered.
        """
        latest: Dict[int, InstitutionalHolding] = {}
        for record in self.data.get_significant_holdings(min_change_pct):
            # Rows arrive newest quarter first
            latest.setdefault(record.stock_id, record)

        def largest(record: InstitutionalHolding) -> float:
            return max_abs_change(record.fii_change, record.dii_change, record.total_change)

        return [
            {
                "snapshot": record.stock,
                "holding_record": record,
                "activity_tier": activity_tier(record.fii_change, record.dii_change, record.total_change),
            }
            for record in sorted(latest.values(), key=largest, reverse=True)
        ]

    # === Quarter results ===

    def generate_upcoming_results(
        self,
        periods_ahead: int = DEFAULT_PERIODS_AHEAD,
        tracked_only: bool = True,
    ) -> List[Dict[str, Any]]:
        """Materialize result schedule rows for the current and following quarters."""
        stocks = self.data.get_all_stocks(tracked=True if tracked_only else None)
        return self.scheduler.generate(stocks, periods_ahead)
