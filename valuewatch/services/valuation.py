"""
Undervaluation scoring.

Design Principles:
1. Vectorized Pandas operations over all snapshots in one pass
2. Additive fixed-point factors, no weighting or normalization
3. Deterministic: same snapshots -> same scores and order

Factors (max 30 + 40 + 20 + 10 = 100):
    P/E          0 < pe < 15 -> +30, 15 <= pe < 20 -> +15
    vs 52w high  (high - price) / high > 30% -> +40, > 20% -> +25, > 10% -> +10
    vs 52w low   20% < (price - low) / low < 50% -> +20
    market cap   below the small-cap threshold -> +10
"""
from dataclasses import dataclass, field
from typing import Any, Iterable, List

import numpy as np
import pandas as pd

from valuewatch.config import (
    LOW_PE_MAX,
    MODERATE_PE_MAX,
    SMALL_CAP_THRESHOLD,
    UNDERVALUED_MIN_SCORE,
)

SNAPSHOT_COLUMNS = ["current_price", "pe_ratio", "week_high", "week_low", "market_cap"]


@dataclass
class ScoredSnapshot:
    stock: Any
    score: int
    reasons: List[str] = field(default_factory=list)

    @property
    def reason(self) -> str:
        return ", ".join(self.reasons)


class ValuationScorer:
    """
    Scores snapshots held in a DataFrame.

    Missing inputs (null P/E, zero 52-week bounds, null market cap) simply
    contribute nothing; they never raise.
    """

    @staticmethod
    def to_frame(stocks: Iterable[Any]) -> pd.DataFrame:
        rows = [{col: getattr(s, col) for col in SNAPSHOT_COLUMNS} for s in stocks]
        return pd.DataFrame(rows, columns=SNAPSHOT_COLUMNS, dtype="float64")

    @staticmethod
    def score_frame(df: pd.DataFrame) -> pd.DataFrame:
        """
        Add factor, score and undervalued columns.

        Returns a copy with columns: pe_points, high_points, low_points,
        cap_points, score, pct_from_high, pct_from_low, is_undervalued.
        """
        df = df.copy()
        price = df["current_price"]
        pe = df["pe_ratio"]
        high = df["week_high"]
        low = df["week_low"]
        cap = df["market_cap"]

        df["pe_points"] = np.select(
            [(pe > 0) & (pe < LOW_PE_MAX), (pe >= LOW_PE_MAX) & (pe < MODERATE_PE_MAX)],
            [30, 15],
            default=0,
        )

        # NaN where the bound is missing or non-positive, so comparisons are False
        df["pct_from_high"] = (high - price) / high.where(high > 0) * 100
        df["high_points"] = np.select(
            [df["pct_from_high"] > 30, df["pct_from_high"] > 20, df["pct_from_high"] > 10],
            [40, 25, 10],
            default=0,
        )

        df["pct_from_low"] = (price - low) / low.where(low > 0) * 100
        df["low_points"] = np.where(
            (df["pct_from_low"] > 20) & (df["pct_from_low"] < 50), 20, 0
        )

        df["cap_points"] = np.where(cap.notna() & (cap < SMALL_CAP_THRESHOLD), 10, 0)

        df["score"] = (
            df["pe_points"] + df["high_points"] + df["low_points"] + df["cap_points"]
        ).astype(int)
        df["is_undervalued"] = df["score"] >= UNDERVALUED_MIN_SCORE
        return df

    @staticmethod
    def reasons_for(row: pd.Series) -> List[str]:
        reasons = []
        if row["pe_points"] == 30:
            reasons.append("Low P/E ratio")
        elif row["pe_points"] == 15:
            reasons.append("Moderate P/E ratio")

        if row["high_points"] == 40:
            reasons.append("Far below 52-week high")
        elif row["high_points"] == 25:
            reasons.append("Below 52-week high")
        elif row["high_points"] == 10:
            reasons.append("Moderately below high")

        if row["low_points"]:
            reasons.append("Healthy price above low")
        if row["cap_points"]:
            reasons.append("Small cap potential")
        return reasons

    @classmethod
    def score(cls, stocks: List[Any]) -> List[ScoredSnapshot]:
        """
        Score every stock, in input order.

        Use rank() for the undervalued subset ordered by score.
        """
        if not stocks:
            return []
        scored = cls.score_frame(cls.to_frame(stocks))
        return [
            ScoredSnapshot(stock=stock, score=int(row["score"]), reasons=cls.reasons_for(row))
            for stock, (_, row) in zip(stocks, scored.iterrows())
        ]

    @staticmethod
    def rank(scored: List[ScoredSnapshot], min_score: int = UNDERVALUED_MIN_SCORE) -> List[ScoredSnapshot]:
        """Snapshots scoring at least `min_score`, highest first (stable)."""
        qualifying = [s for s in scored if s.score >= min_score]
        return sorted(qualifying, key=lambda s: s.score, reverse=True)
