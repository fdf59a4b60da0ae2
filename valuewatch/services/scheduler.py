"""
Quarterly result announcement scheduling.

A QuarterResult row is materialized ahead of time for every tracked stock and
each upcoming quarter, with expected_date derived from the quarter calendar.
Rows flip from unannounced to announced exactly once; "overdue" is computed
when queried and never stored.
"""
import logging
from collections import OrderedDict
from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from valuewatch.config import DEFAULT_PERIODS_AHEAD, DEFAULT_RESULTS_DAYS_AHEAD
from valuewatch.db.models import QuarterResult, Stock
from valuewatch.services.data_service import DataService
from valuewatch.services.quarters import (
    Period,
    PeriodLike,
    current_period,
    period_end_date,
    previous_period,
    upcoming_periods,
)

logger = logging.getLogger(__name__)


class ResultNotFoundError(LookupError):
    """No schedule row exists for the requested stock and quarter."""


class ResultScheduler:

    def __init__(
        self,
        data: DataService,
        normalizer: Any = None,
        today: Callable[[], date] = date.today,
    ):
        self.data = data
        self.normalizer = normalizer
        self._today = today

    def generate(
        self,
        stocks: Iterable[Stock],
        periods_ahead: int = DEFAULT_PERIODS_AHEAD,
    ) -> List[Dict[str, Any]]:
        """
        Materialize schedule rows for each stock and upcoming quarter.

        A row is written when none exists yet, or when its quarter has already
        ended (so the dates are re-derived). Rows that exist for a quarter
        still in progress are left alone and not reported.
        """
        if periods_ahead < 1:
            raise ValueError("periods_ahead must be at least 1")

        today = self._today()
        periods = upcoming_periods(periods_ahead, today)
        results: List[Dict[str, Any]] = []

        for stock in stocks:
            for period in periods:
                existing = self.data.get_quarter_result(stock.id, period)
                if existing is not None and today <= period_end_date(period):
                    continue
                entry: Dict[str, Any] = {"identifier": stock.symbol, "period": str(period)}
                try:
                    entry["record"] = self.data.upsert_quarter_result(stock, period)
                    entry["success"] = True
                except Exception as e:
                    self.data.db.rollback()
                    logger.error("Failed to schedule %s %s: %s", stock.symbol, period, e)
                    entry["success"] = False
                    entry["error"] = str(e)
                results.append(entry)

        logger.info("Scheduled %d quarter result rows for %s",
                    sum(1 for r in results if r["success"]), ", ".join(str(p) for p in periods))
        return results

    def mark_announced(
        self,
        symbol: str,
        quarter: PeriodLike,
        actual_date: Optional[date] = None,
        revenue: Optional[float] = None,
        profit: Optional[float] = None,
        eps: Optional[float] = None,
    ) -> QuarterResult:
        """
        Flip a schedule row to announced.

        Marking an already-announced row again changes nothing and returns it
        as is.
        """
        period = Period.parse(quarter)
        stock = self.data.get_stock(symbol)
        if stock is None:
            raise ResultNotFoundError(f"Symbol '{symbol}' not found")
        result = self.data.get_quarter_result(stock.id, period)
        if result is None:
            raise ResultNotFoundError(f"No {period} result scheduled for '{stock.symbol}'")
        if result.is_announced:
            logger.debug("%s %s already announced on %s", stock.symbol, period, result.actual_date)
            return result
        return self.data.mark_announced(
            result, actual_date or self._today(), revenue=revenue, profit=profit, eps=eps
        )

    def upcoming(
        self,
        days_ahead: int = DEFAULT_RESULTS_DAYS_AHEAD,
        include_announced: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Rows expected within `days_ahead` days, soonest first.

        Covers the current quarter and the one before it, whose results fall
        due during the current quarter and can be overdue.
        """
        today = self._today()
        period = current_period(today)
        rows = self.data.find_quarter_results(
            [previous_period(period), period],
            expected_on_or_before=today + timedelta(days=days_ahead),
            include_announced=include_announced,
            limit=limit,
        )
        return [
            {
                "result": row,
                "is_overdue": row.is_overdue(today),
                "days_until": (row.expected_date - today).days,
            }
            for row in rows
        ]

    def grouped_by_date(
        self,
        days_ahead: int = DEFAULT_RESULTS_DAYS_AHEAD,
        limit: Optional[int] = None,
    ) -> Dict[str, Dict[str, List[Dict[str, Any]]]]:
        """
        Announced rows keyed by actual date (latest first) and pending rows
        keyed by expected date (earliest first).
        """
        announced: Dict[str, List[Dict[str, Any]]] = OrderedDict()
        upcoming: Dict[str, List[Dict[str, Any]]] = OrderedDict()

        entries = self.upcoming(days_ahead=days_ahead, include_announced=True, limit=limit)
        done = sorted(
            (e for e in entries if e["result"].is_announced),
            key=lambda e: e["result"].actual_date or e["result"].expected_date,
            reverse=True,
        )
        for entry in done:
            key = (entry["result"].actual_date or entry["result"].expected_date).isoformat()
            announced.setdefault(key, []).append(entry)
        for entry in entries:
            if not entry["result"].is_announced:
                upcoming.setdefault(entry["result"].expected_date.isoformat(), []).append(entry)

        return {"announced": announced, "upcoming": upcoming}

    def sync_announcements(self, symbols: Iterable[str]) -> List[QuarterResult]:
        """
        Mark rows announced from the source's corporate filings.

        Needs a normalizer in live mode; otherwise nothing is found and
        nothing changes.
        """
        if self.normalizer is None:
            return []

        updated: List[QuarterResult] = []
        for symbol in symbols:
            found = self.normalizer.announcement(symbol)
            if found is None:
                continue
            stock = self.data.get_stock(found.symbol)
            if stock is None:
                logger.debug("Announcement for unknown symbol %s ignored", found.symbol)
                continue
            result = self.data.get_quarter_result(stock.id, found.period)
            if result is None:
                result = self.data.upsert_quarter_result(stock, found.period)
            if result.is_announced:
                continue
            updated.append(self.data.mark_announced(
                result, found.announced_on, revenue=found.revenue, profit=found.profit, eps=found.eps
            ))
            logger.info("%s %s results announced on %s", stock.symbol, found.period, found.announced_on)
        return updated
