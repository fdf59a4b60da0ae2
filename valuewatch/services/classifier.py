"""
Quarter-over-quarter institutional holding changes.

Changes are relative percentage changes, (current - prior) / prior * 100,
for FII, DII and total institutional holding independently. A missing prior
value, a missing current value, or a zero prior all give None.
"""
from dataclasses import dataclass
from typing import Any, Optional

from valuewatch.config import (
    EXTREME_CHANGE_PCT,
    HIGH_CHANGE_PCT,
    SIGNIFICANT_CHANGE_PCT,
    VERY_HIGH_CHANGE_PCT,
)


@dataclass(frozen=True)
class HoldingChange:
    fii_change: Optional[float]
    dii_change: Optional[float]
    total_change: Optional[float]
    is_significant: bool

    @property
    def max_abs_change(self) -> float:
        return max_abs_change(self.fii_change, self.dii_change, self.total_change)


@dataclass(frozen=True)
class ActivityTier:
    level: str
    message: str


EXTREME = ActivityTier("extreme", "Institutional holdings doubled or more!")
VERY_HIGH = ActivityTier("very-high", "Very high institutional activity (15%+)")
HIGH = ActivityTier("high", "High institutional activity (10%+)")
# Same level label as HIGH; only the message differs
SIGNIFICANT = ActivityTier("high", "Significant institutional activity (5%+)")


def percentage_change(current: Optional[float], prior: Optional[float]) -> Optional[float]:
    if current is None or prior is None or prior == 0:
        return None
    return round((current - prior) / prior * 100, 2)


def max_abs_change(*changes: Optional[float]) -> float:
    return max((abs(c) for c in changes if c is not None), default=0.0)


def compute_changes(current: Any, prior: Any) -> HoldingChange:
    """
    Changes of `current` versus `prior`.

    Both arguments only need fii_holding / dii_holding / total_institutional
    attributes (ORM rows or NormalizedHoldings). `prior` may be None when the
    previous quarter has no record yet.
    """
    if prior is None:
        return HoldingChange(None, None, None, is_significant=False)

    fii = percentage_change(current.fii_holding, prior.fii_holding)
    dii = percentage_change(current.dii_holding, prior.dii_holding)
    total = percentage_change(current.total_institutional, prior.total_institutional)
    return HoldingChange(
        fii_change=fii,
        dii_change=dii,
        total_change=total,
        is_significant=max_abs_change(fii, dii, total) >= SIGNIFICANT_CHANGE_PCT,
    )


def activity_tier(
    fii_change: Optional[float],
    dii_change: Optional[float],
    total_change: Optional[float],
) -> Optional[ActivityTier]:
    """Tier of the largest absolute change; None below the significance threshold."""
    largest = max_abs_change(fii_change, dii_change, total_change)
    if largest >= EXTREME_CHANGE_PCT:
        return EXTREME
    if largest >= VERY_HIGH_CHANGE_PCT:
        return VERY_HIGH
    if largest >= HIGH_CHANGE_PCT:
        return HIGH
    if largest >= SIGNIFICANT_CHANGE_PCT:
        return SIGNIFICANT
    return None
