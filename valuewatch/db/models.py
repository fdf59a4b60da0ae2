"""
SQLAlchemy ORM models for valuation and institutional-activity data.

Database Schema:
- stocks: one snapshot row per tracked security
- institutional_holdings: FII/DII holdings per (stock, quarter)
- quarter_results: expected/actual result announcements per (stock, quarter)

Design Decisions:
1. Quarter tokens ("Q3-2025") are stored alongside their quarter-end date;
   chronological ordering always uses the date, never the token string.
2. Derived values (is_undervalued, holding deltas, expected_date) are written by
   the engine only and recomputed on every run.
3. No cascade deletes - the engine never deletes snapshots.
"""
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean, Column, Date, DateTime, Float, ForeignKey, Index, Integer, String,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite stores naive datetimes)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Stock(Base):
    """
    Current market snapshot of one security.

    Each stock is identified by its uppercase exchange symbol (e.g., RELIANCE).
    `source` records whether the last refresh came from the live source or
    the synthetic generator.
    """
    __tablename__ = "stocks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String(20), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)

    current_price = Column(Float, nullable=False)
    pe_ratio = Column(Float, nullable=True)
    week_high = Column(Float, nullable=False)
    week_low = Column(Float, nullable=False)
    market_cap = Column(Float, nullable=True)

    is_tracked = Column(Boolean, nullable=False, default=False)
    is_undervalued = Column(Boolean, nullable=False, default=False)
    source = Column(String(20), nullable=False, default="synthetic")

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    holdings = relationship("InstitutionalHolding", back_populates="stock")
    quarter_results = relationship("QuarterResult", back_populates="stock")

    def __repr__(self) -> str:
        return f"<Stock(symbol='{self.symbol}', price={self.current_price})>"


class InstitutionalHolding(Base):
    """
    FII/DII holding percentages for one stock in one quarter.

    Changes are percentage changes versus the calendar-previous quarter
    (null until that quarter has a record).
    """
    __tablename__ = "institutional_holdings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    stock_id = Column(Integer, ForeignKey("stocks.id"), nullable=False, index=True)
    quarter = Column(String(10), nullable=False)
    quarter_end_date = Column(Date, nullable=False)

    fii_holding = Column(Float, nullable=True)
    dii_holding = Column(Float, nullable=True)
    total_institutional = Column(Float, nullable=True)

    previous_quarter = Column(String(10), nullable=True)
    fii_change = Column(Float, nullable=True)
    dii_change = Column(Float, nullable=True)
    total_change = Column(Float, nullable=True)
    is_significant = Column(Boolean, nullable=False, default=False)

    source = Column(String(20), nullable=False, default="synthetic")
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    stock = relationship("Stock", back_populates="holdings")

    __table_args__ = (
        UniqueConstraint("stock_id", "quarter", name="uq_holding_stock_quarter"),
        Index("ix_holdings_significant_end", "is_significant", "quarter_end_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<InstitutionalHolding(stock_id={self.stock_id}, quarter='{self.quarter}', "
            f"fii={self.fii_holding}, dii={self.dii_holding})>"
        )


class QuarterResult(Base):
    """
    Quarterly result announcement tracker.

    expected_date is always quarter_end_date + 45 days. "Overdue" is not
    stored; see is_overdue().
    """
    __tablename__ = "quarter_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    stock_id = Column(Integer, ForeignKey("stocks.id"), nullable=False, index=True)
    quarter = Column(String(10), nullable=False)
    quarter_end_date = Column(Date, nullable=False)
    expected_date = Column(Date, nullable=False, index=True)
    actual_date = Column(Date, nullable=True)
    is_announced = Column(Boolean, nullable=False, default=False)

    revenue = Column(Float, nullable=True)
    profit = Column(Float, nullable=True)
    eps = Column(Float, nullable=True)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    stock = relationship("Stock", back_populates="quarter_results")

    __table_args__ = (
        UniqueConstraint("stock_id", "quarter", name="uq_result_stock_quarter"),
    )

    def is_overdue(self, today: Optional[date] = None) -> bool:
        today = today or date.today()
        return not self.is_announced and today > self.expected_date

    def __repr__(self) -> str:
        return (
            f"<QuarterResult(stock_id={self.stock_id}, quarter='{self.quarter}', "
            f"expected={self.expected_date}, announced={self.is_announced})>"
        )
