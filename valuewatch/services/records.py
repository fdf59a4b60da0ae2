"""
Typed values produced by the normalizer and the synthetic generator.

These are what the rest of the engine consumes; nothing downstream ever sees
a raw source payload.
"""
import enum
import math
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

from valuewatch.services.quarters import Period


class Provenance(str, enum.Enum):
    LIVE = "live"
    SYNTHETIC = "synthetic"


@dataclass(frozen=True)
class NormalizedSnapshot:
    symbol: str
    name: str
    price: float
    pe_ratio: Optional[float]
    week_high: float
    week_low: float
    market_cap: Optional[float]
    provenance: Provenance
    shape: Optional[str] = None


@dataclass(frozen=True)
class NormalizedHoldings:
    """
    Institutional holdings for the period the data actually pertains to.

    `period` can differ from the period that was requested; callers must
    store and compare against this one.
    """
    symbol: str
    period: Period
    fii_holding: Optional[float]
    dii_holding: Optional[float]
    total_institutional: Optional[float]
    provenance: Provenance
    shape: Optional[str] = None


def to_number(value: Any) -> Optional[float]:
    """Parse a loosely-typed numeric value; None for anything non-numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%").replace(",", "").strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def normalize_percentage(value: Optional[float]) -> Optional[float]:
    """Values in (0, 1) are fractions; scale to percent and round to 2dp."""
    if value is None:
        return None
    if 0 < value < 1:
        value = value * 100
    return round(value, 2)


def total_institutional(fii: Optional[float], dii: Optional[float]) -> Optional[float]:
    if fii is None or dii is None:
        return None
    return round(fii + dii, 2)


@dataclass(frozen=True)
class NormalizedAnnouncement:
    """A quarterly-result announcement found in the source's corporate filings."""
    symbol: str
    period: Period
    announced_on: date
    revenue: Optional[float] = None
    profit: Optional[float] = None
    eps: Optional[float] = None
