"""
Data service layer for database operations.

All database queries are centralized here.
Engine and API code should only call service methods, never raw queries.

Every write is a single-record upsert keyed by a natural key and committed on
its own, so a batch that dies halfway leaves earlier records durable.
"""
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from valuewatch.db.models import Base, InstitutionalHolding, QuarterResult, Stock
from valuewatch.services.classifier import HoldingChange
from valuewatch.services.quarters import (
    Period,
    PeriodLike,
    expected_announcement_date,
    period_end_date,
    previous_period,
)
from valuewatch.services.records import NormalizedHoldings, NormalizedSnapshot

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=Base)


class DataService:
    """
    Database query service.

    Provides type-safe methods for all database operations.
    """

    def __init__(self, db: Session):
        self.db = db

    def _upsert(self, model: Type[M], key: Dict[str, Any], values: Dict[str, Any]) -> M:
        """
        Insert or update the row identified by `key`.

        A concurrent insert of the same key surfaces as IntegrityError; it is
        rolled back and the write retried as an update (last write wins).
        """
        retried = False
        while True:
            row = self.db.query(model).filter_by(**key).first()
            if row is None:
                row = model(**key, **values)
                self.db.add(row)
            else:
                for name, value in values.items():
                    setattr(row, name, value)
            try:
                self.db.commit()
                return row
            except IntegrityError:
                self.db.rollback()
                if retried:
                    raise
                retried = True
                logger.info("Concurrent insert on %s %s; retrying as update", model.__tablename__, key)

    # === Stock Operations ===

    def get_all_stocks(
        self,
        tracked: Optional[bool] = None,
        undervalued: Optional[bool] = None,
    ) -> List[Stock]:
        query = self.db.query(Stock)
        if tracked is not None:
            query = query.filter(Stock.is_tracked == tracked)
        if undervalued is not None:
            query = query.filter(Stock.is_undervalued == undervalued)
        return query.order_by(Stock.symbol).all()

    def get_stock(self, symbol: str) -> Optional[Stock]:
        """Get stock by symbol (case-insensitive)."""
        return self.db.query(Stock).filter(Stock.symbol == symbol.strip().upper()).first()

    def get_priced_stocks(self) -> List[Stock]:
        """Stocks eligible for scoring, most recently updated first."""
        return (
            self.db.query(Stock)
            .filter(Stock.current_price > 0)
            .order_by(Stock.updated_at.desc(), Stock.id)
            .all()
        )

    def get_tracked_symbols(self) -> List[str]:
        return [s.symbol for s in self.get_all_stocks(tracked=True)]

    def upsert_stock(self, snapshot: NormalizedSnapshot) -> Stock:
        """
        Write a snapshot. All market fields are overwritten together so a row
        never mixes live and synthetic values; is_tracked is left alone.
        """
        return self._upsert(
            Stock,
            {"symbol": snapshot.symbol.upper()},
            {
                "name": snapshot.name,
                "current_price": snapshot.price,
                "pe_ratio": snapshot.pe_ratio,
                "week_high": snapshot.week_high,
                "week_low": snapshot.week_low,
                "market_cap": snapshot.market_cap,
                "source": snapshot.provenance.value,
            },
        )

    def set_tracked(self, symbol: str, is_tracked: bool) -> Optional[Stock]:
        stock = self.get_stock(symbol)
        if stock is None:
            return None
        stock.is_tracked = is_tracked
        self.db.commit()
        return stock

    def overwrite_undervalued_flags(self, undervalued_ids: Sequence[int]) -> None:
        """Set the flag on exactly `undervalued_ids` and clear it everywhere else."""
        ids = list(undervalued_ids)
        if ids:
            self.db.execute(update(Stock).where(Stock.id.in_(ids)).values(is_undervalued=True))
            self.db.execute(update(Stock).where(Stock.id.notin_(ids)).values(is_undervalued=False))
        else:
            self.db.execute(update(Stock).values(is_undervalued=False))
        self.db.commit()

    # === Institutional Holding Operations ===

    def get_holding(self, stock_id: int, period: PeriodLike) -> Optional[InstitutionalHolding]:
        return (
            self.db.query(InstitutionalHolding)
            .filter(
                InstitutionalHolding.stock_id == stock_id,
                InstitutionalHolding.quarter == str(Period.parse(period)),
            )
            .first()
        )

    def get_latest_holding(self, stock_id: int) -> Optional[InstitutionalHolding]:
        """Most recent quarter by quarter-end date, not insertion order."""
        return (
            self.db.query(InstitutionalHolding)
            .filter(InstitutionalHolding.stock_id == stock_id)
            .order_by(InstitutionalHolding.quarter_end_date.desc())
            .first()
        )

    def get_holdings(
        self,
        symbol: Optional[str] = None,
        quarter: Optional[PeriodLike] = None,
        significant: Optional[bool] = None,
    ) -> List[InstitutionalHolding]:
        query = self.db.query(InstitutionalHolding).options(joinedload(InstitutionalHolding.stock))
        if symbol:
            query = query.join(Stock).filter(Stock.symbol == symbol.strip().upper())
        if quarter is not None:
            query = query.filter(InstitutionalHolding.quarter == str(Period.parse(quarter)))
        if significant is not None:
            query = query.filter(InstitutionalHolding.is_significant == significant)
        return query.order_by(
            InstitutionalHolding.quarter_end_date.desc(), InstitutionalHolding.stock_id
        ).all()

    def upsert_holding(
        self,
        stock: Stock,
        holdings: NormalizedHoldings,
        changes: HoldingChange,
    ) -> InstitutionalHolding:
        period = holdings.period
        return self._upsert(
            InstitutionalHolding,
            {"stock_id": stock.id, "quarter": str(period)},
            {
                "quarter_end_date": period_end_date(period),
                "fii_holding": holdings.fii_holding,
                "dii_holding": holdings.dii_holding,
                "total_institutional": holdings.total_institutional,
                "previous_quarter": str(previous_period(period)),
                "fii_change": changes.fii_change,
                "dii_change": changes.dii_change,
                "total_change": changes.total_change,
                "is_significant": changes.is_significant,
                "source": holdings.provenance.value,
            },
        )

    def get_significant_holdings(self, min_change: float) -> List[InstitutionalHolding]:
        """Significant records where any change is an increase of at least `min_change`."""
        return (
            self.db.query(InstitutionalHolding)
            .options(joinedload(InstitutionalHolding.stock))
            .filter(
                InstitutionalHolding.is_significant.is_(True),
                or_(
                    InstitutionalHolding.fii_change >= min_change,
                    InstitutionalHolding.dii_change >= min_change,
                    InstitutionalHolding.total_change >= min_change,
                ),
            )
            .order_by(InstitutionalHolding.quarter_end_date.desc(), InstitutionalHolding.id)
            .all()
        )

    # === Quarter Result Operations ===

    def get_quarter_result(self, stock_id: int, period: PeriodLike) -> Optional[QuarterResult]:
        return (
            self.db.query(QuarterResult)
            .filter(
                QuarterResult.stock_id == stock_id,
                QuarterResult.quarter == str(Period.parse(period)),
            )
            .first()
        )

    def upsert_quarter_result(self, stock: Stock, period: PeriodLike) -> QuarterResult:
        """
        Create or refresh the schedule row for a quarter.

        Dates always come from the quarter calendar. Announcement state and
        financials are never touched here, so an announced row stays announced.
        """
        period = Period.parse(period)
        quarter_end = period_end_date(period)
        return self._upsert(
            QuarterResult,
            {"stock_id": stock.id, "quarter": str(period)},
            {
                "quarter_end_date": quarter_end,
                "expected_date": expected_announcement_date(quarter_end),
            },
        )

    def mark_announced(
        self,
        result: QuarterResult,
        actual_date: date,
        revenue: Optional[float] = None,
        profit: Optional[float] = None,
        eps: Optional[float] = None,
    ) -> QuarterResult:
        result.is_announced = True
        result.actual_date = actual_date
        for name, value in (("revenue", revenue), ("profit", profit), ("eps", eps)):
            if value is not None:
                setattr(result, name, value)
        self.db.commit()
        return result

    def find_quarter_results(
        self,
        quarters: Sequence[PeriodLike],
        expected_on_or_before: date,
        include_announced: bool = False,
        limit: Optional[int] = None,
    ) -> List[QuarterResult]:
        query = (
            self.db.query(QuarterResult)
            .join(Stock)
            .options(joinedload(QuarterResult.stock))
            .filter(
                QuarterResult.quarter.in_([str(Period.parse(q)) for q in quarters]),
                QuarterResult.expected_date <= expected_on_or_before,
            )
        )
        if not include_announced:
            query = query.filter(QuarterResult.is_announced.is_(False))
        query = query.order_by(QuarterResult.expected_date, Stock.symbol)
        if limit:
            query = query.limit(limit)
        return query.all()

    def count_stocks(self) -> int:
        return self.db.query(Stock).count()
