"""
Synthetic market data.

Used when no live source is configured, or per security when the live source
fails. Values are random but bounded to realistic ranges; pass a seeded
random.Random for reproducible output.
"""
import random
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from valuewatch.config import (
    CRORE,
    REFERENCE_STOCKS,
    SYNTHETIC_BAND_PCT,
    SYNTHETIC_DII_RANGE,
    SYNTHETIC_FII_RANGE,
    SYNTHETIC_MARKET_CAP_CRORE_RANGE,
    SYNTHETIC_PE_RANGE,
    SYNTHETIC_PRICE_JITTER,
    SYNTHETIC_PRICE_RANGE,
    SYNTHETIC_SPIKE_PROBABILITY,
)
from valuewatch.services.records import (
    NormalizedHoldings,
    NormalizedSnapshot,
    Provenance,
    total_institutional,
)
from valuewatch.services.quarters import Period

# Minimum size of an injected quarter-over-quarter swing, in absolute points
SPIKE_MIN_POINTS = 10.0


@dataclass
class SyntheticDataGenerator:
    """Bounded random stand-in values for snapshots and holdings."""

    rng: random.Random = field(default_factory=random.Random)
    reference: Dict[str, Tuple] = field(
        default_factory=lambda: {row[0]: row for row in REFERENCE_STOCKS}
    )

    def snapshot(self, symbol: str) -> NormalizedSnapshot:
        symbol = symbol.upper()
        ref = self.reference.get(symbol)
        if ref is not None:
            return self._reference_snapshot(ref)

        price = round(self.rng.uniform(*SYNTHETIC_PRICE_RANGE), 2)
        pe = round(self.rng.uniform(*SYNTHETIC_PE_RANGE), 2)
        market_cap_crore = self.rng.uniform(*SYNTHETIC_MARKET_CAP_CRORE_RANGE)
        return NormalizedSnapshot(
            symbol=symbol,
            name=f"{symbol} Ltd.",
            price=price,
            pe_ratio=pe,
            week_high=round(price * (1 + SYNTHETIC_BAND_PCT), 2),
            week_low=round(price * (1 - SYNTHETIC_BAND_PCT), 2),
            market_cap=round(market_cap_crore * CRORE, 2),
            provenance=Provenance.SYNTHETIC,
        )

    def _reference_snapshot(self, ref: Tuple) -> NormalizedSnapshot:
        """Known security: reference values with a small price variation."""
        symbol, name, base_price, base_pe, high, low, market_cap_crore = ref
        variation = base_price * self.rng.uniform(-SYNTHETIC_PRICE_JITTER, SYNTHETIC_PRICE_JITTER)
        price = round(base_price + variation, 2)
        pe = round(base_pe + (variation / base_price) * base_pe, 2)
        return NormalizedSnapshot(
            symbol=symbol,
            name=name,
            price=price,
            pe_ratio=pe,
            week_high=high,
            week_low=low,
            market_cap=market_cap_crore * CRORE,
            provenance=Provenance.SYNTHETIC,
        )

    def holdings(self, symbol: str, period: Period, spike: Optional[bool] = None) -> NormalizedHoldings:
        """
        FII/DII holdings for a quarter.

        About 30% of calls inject one large swing (>= 10 points on FII or DII)
        so that the significance classifier has something to flag. `spike`
        forces the decision either way.
        """
        fii = self.rng.uniform(*SYNTHETIC_FII_RANGE) + self.rng.uniform(-5.0, 5.0)
        dii = self.rng.uniform(*SYNTHETIC_DII_RANGE) + self.rng.uniform(-4.0, 4.0)

        if spike is None:
            spike = self.rng.random() < SYNTHETIC_SPIKE_PROBABILITY
        if spike:
            if self.rng.random() < 0.5:
                fii += self.rng.uniform(SPIKE_MIN_POINTS, 30.0)
            else:
                dii += self.rng.uniform(SPIKE_MIN_POINTS, 25.0)

        fii = min(round(fii, 2), 100.0)
        dii = min(round(dii, 2), 100.0)
        total = total_institutional(fii, dii)
        return NormalizedHoldings(
            symbol=symbol.upper(),
            period=period,
            fii_holding=fii,
            dii_holding=dii,
            total_institutional=min(total, 100.0) if total is not None else None,
            provenance=Provenance.SYNTHETIC,
        )
