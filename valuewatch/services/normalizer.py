"""
Resilient normalization of market-source payloads.

The source returns untyped, inconsistently-shaped JSON. Each known shape is a
variant with its own matcher; matchers run in a fixed priority order and the
first one that yields data wins. Anything else is UNRECOGNIZED, which (like any
source error) makes that one security fall back to synthetic data.

Holdings shapes, in priority order:
    ROOT_FIELDS          {"fii": 21.4, "dii": {"percentage": "14.2"}}
    DETAILED_BREAKDOWN   {"detailed": {"Mutual Funds": 8.1, ...}} or
                         {"categories": [{"category": "FII", "value": 21.4}]}
    DATED_SERIES         {"data": {"30-Sep-2025": [{"Mutual Funds": " 8.1"}, ...]}}
    SECONDARY_PROBE      a second endpoint, parsed as DATED_SERIES/breakdown
"""
import enum
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from valuewatch.config import USE_LIVE_SOURCE
from valuewatch.services.market_source import MarketDataSource
from valuewatch.services.quarters import (
    Period,
    PeriodLike,
    current_period,
    period_for_date,
    previous_period,
)
from valuewatch.services.records import (
    NormalizedAnnouncement,
    NormalizedHoldings,
    NormalizedSnapshot,
    Provenance,
    normalize_percentage,
    to_number,
    total_institutional,
)
from valuewatch.services.synthetic import SyntheticDataGenerator

logger = logging.getLogger(__name__)


# === Category synonyms ===

class _Merge(enum.Enum):
    SET = "set"
    ADD = "add"


# (target field, merge mode, synonyms) - checked in order, first hit wins
CATEGORY_SYNONYMS: Tuple[Tuple[str, _Merge, Tuple[str, ...]], ...] = (
    ("fii", _Merge.SET, (
        "foreign institutional investors", "foreign institutional investor",
        "foreign institutional", "foreign portfolio investors",
        "foreign portfolio investor", "foreign portfolio", "fiis", "fii", "fpis", "fpi",
    )),
    ("dii", _Merge.SET, (
        "domestic institutional investors", "domestic institutional investor",
        "domestic institutional", "diis", "dii",
    )),
    # Components of DII reported on their own lines
    ("dii", _Merge.ADD, (
        "mutual funds", "mutual fund", "insurance companies", "insurance company",
        "banks", "bank", "financial institutions", "financial institution",
    )),
)

_SYNONYM_PATTERNS = [
    (target, mode, re.compile(r"\b(" + "|".join(re.escape(s) for s in synonyms) + r")\b"))
    for target, mode, synonyms in CATEGORY_SYNONYMS
]

# Keys recognised at the payload root for ROOT_FIELDS
_ROOT_KEYS = {
    "fii": "fii",
    "fiiholding": "fii",
    "fii_holding": "fii",
    "foreign institutional investors": "fii",
    "dii": "dii",
    "diiholding": "dii",
    "dii_holding": "dii",
    "domestic institutional investors": "dii",
}

_VALUE_KEYS = ("holding", "percentage", "value", "percent")
_LABEL_KEYS = ("category", "name", "type")
_DATE_FORMATS = ("%d-%b-%Y", "%d-%B-%Y")
_BREAKDOWN_HINTS = ("fii", "dii", "fpi", "institutional", "foreign", "domestic")


def classify_category(name: Any) -> Optional[Tuple[str, _Merge]]:
    """Map a category label to (field, merge mode), case-insensitively."""
    label = " ".join(str(name).lower().split())
    for target, mode, pattern in _SYNONYM_PATTERNS:
        if pattern.search(label):
            return target, mode
    return None


def parse_series_date(key: Any) -> Optional[date]:
    """Parse a "30-Sep-2025" style key; None if it isn't one."""
    if not isinstance(key, str):
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(key.strip(), fmt).date()
        except ValueError:
            continue
    return None


def _value_of(value: Any) -> Optional[float]:
    if isinstance(value, dict):
        for key in _VALUE_KEYS:
            number = to_number(value.get(key))
            if number is not None:
                return number
        return None
    return to_number(value)


class _HoldingsAccumulator:
    def __init__(self) -> None:
        self.fii: Optional[float] = None
        self.dii: Optional[float] = None

    @property
    def found(self) -> bool:
        return self.fii is not None or self.dii is not None

    def add(self, label: Any, value: Optional[float]) -> None:
        if value is None:
            return
        match = classify_category(label)
        if match is None:
            return
        target, mode = match
        if mode is _Merge.ADD:
            value = (getattr(self, target) or 0.0) + value
        setattr(self, target, value)

    def consume(self, rows: Any) -> None:
        """Walk a breakdown (mapping or row list), descending into nested groups."""
        if isinstance(rows, dict):
            for key, value in rows.items():
                if isinstance(value, (dict, list)) and _value_of(value) is None:
                    self.consume(value)
                else:
                    self.add(key, _value_of(value))
        elif isinstance(rows, list):
            for item in rows:
                if not isinstance(item, dict):
                    continue
                label = next((item[k] for k in _LABEL_KEYS if isinstance(item.get(k), str)), None)
                if label is not None:
                    self.add(label, _value_of(item))
                else:
                    self.consume(item)


# === Holdings variants ===

class HoldingsShape(str, enum.Enum):
    ROOT_FIELDS = "root_fields"
    DETAILED_BREAKDOWN = "detailed_breakdown"
    DATED_SERIES = "dated_series"
    SECONDARY_PROBE = "secondary_probe"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class HoldingsMatch:
    shape: HoldingsShape
    fii: Optional[float] = None
    dii: Optional[float] = None
    # Set only when the payload itself says which quarter it covers
    period: Optional[Period] = None

    @property
    def recognized(self) -> bool:
        return self.shape is not HoldingsShape.UNRECOGNIZED


UNRECOGNIZED_HOLDINGS = HoldingsMatch(HoldingsShape.UNRECOGNIZED)


def match_root_fields(payload: Any) -> HoldingsMatch:
    if not isinstance(payload, dict):
        return UNRECOGNIZED_HOLDINGS
    values: Dict[str, Optional[float]] = {"fii": None, "dii": None}
    for key, value in payload.items():
        target = _ROOT_KEYS.get(str(key).strip().lower())
        if target is not None and values[target] is None:
            values[target] = _value_of(value)
    if values["fii"] is None and values["dii"] is None:
        return UNRECOGNIZED_HOLDINGS
    return HoldingsMatch(HoldingsShape.ROOT_FIELDS, fii=values["fii"], dii=values["dii"])


def _breakdown_candidates(payload: Any) -> Iterable[Any]:
    if isinstance(payload, list):
        yield payload
        return
    if not isinstance(payload, dict):
        return
    for key in ("detailed", "categories", "shareHoldingPattern", "shareholdingPattern"):
        if isinstance(payload.get(key), (dict, list)):
            yield payload[key]
    for key, value in payload.items():
        if key == "data" or not isinstance(value, dict):
            continue
        if any(hint in str(k).lower() for k in value for hint in _BREAKDOWN_HINTS):
            yield value


def match_detailed_breakdown(payload: Any) -> HoldingsMatch:
    for candidate in _breakdown_candidates(payload):
        acc = _HoldingsAccumulator()
        acc.consume(candidate)
        if acc.found:
            return HoldingsMatch(HoldingsShape.DETAILED_BREAKDOWN, fii=acc.fii, dii=acc.dii)
    return UNRECOGNIZED_HOLDINGS


def _dated_series(payload: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(payload, dict):
        return None
    series = payload.get("data")
    if not isinstance(series, dict):
        nested = payload.get("shareholdings_patterns")
        series = nested.get("data") if isinstance(nested, dict) else None
    return series if isinstance(series, dict) else None


def match_dated_series(payload: Any) -> HoldingsMatch:
    """
    Latest dated row list, tagged with the quarter its date falls in.

    Keys are compared as parsed dates; "31-Mar-2025" is later than
    "30-Sep-2024" even though it sorts lower as a string.
    """
    series = _dated_series(payload)
    if not series:
        return UNRECOGNIZED_HOLDINGS
    dated: List[Tuple[date, str]] = [
        (parsed, key) for key, parsed in ((k, parse_series_date(k)) for k in series) if parsed
    ]
    if not dated:
        return UNRECOGNIZED_HOLDINGS

    latest_date, latest_key = max(dated)
    acc = _HoldingsAccumulator()
    acc.consume(series[latest_key])
    if not acc.found:
        logger.debug("Latest series row %s has no FII/DII categories", latest_key)
        return UNRECOGNIZED_HOLDINGS
    return HoldingsMatch(
        HoldingsShape.DATED_SERIES, fii=acc.fii, dii=acc.dii, period=period_for_date(latest_date)
    )


HOLDINGS_MATCHERS: Tuple[Callable[[Any], HoldingsMatch], ...] = (
    match_root_fields,
    match_detailed_breakdown,
    match_dated_series,
)


def match_holdings(payload: Any) -> HoldingsMatch:
    """First matching variant in priority order, or UNRECOGNIZED."""
    for matcher in HOLDINGS_MATCHERS:
        match = matcher(payload)
        if match.recognized:
            return match
    return UNRECOGNIZED_HOLDINGS


def match_secondary_probe(payload: Any) -> HoldingsMatch:
    for matcher in (match_dated_series, match_root_fields, match_detailed_breakdown):
        match = matcher(payload)
        if match.recognized:
            return HoldingsMatch(
                HoldingsShape.SECONDARY_PROBE, fii=match.fii, dii=match.dii, period=match.period
            )
    return UNRECOGNIZED_HOLDINGS


# === Quote variants ===

class QuoteShape(str, enum.Enum):
    ROOT_FIELDS = "root_fields"
    NSE_QUOTE = "nse_quote"
    YAHOO_INFO = "yahoo_info"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class QuoteMatch:
    shape: QuoteShape
    price: Optional[float] = None
    pe_ratio: Optional[float] = None
    week_high: Optional[float] = None
    week_low: Optional[float] = None
    market_cap: Optional[float] = None
    name: Optional[str] = None

    @property
    def recognized(self) -> bool:
        return self.shape is not QuoteShape.UNRECOGNIZED


UNRECOGNIZED_QUOTE = QuoteMatch(QuoteShape.UNRECOGNIZED)


def _dig(payload: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(payload, dict):
            return None
        payload = payload.get(key)
    return payload


def _first_number(payload: Any, *paths: Tuple[str, ...]) -> Optional[float]:
    for path in paths:
        number = to_number(_dig(payload, *path))
        if number is not None:
            return number
    return None


def _quote(shape: QuoteShape, payload: Any, price, pe, high, low, cap, name) -> QuoteMatch:
    price = _first_number(payload, *price)
    if price is None or price <= 0:
        return UNRECOGNIZED_QUOTE
    label = next((v for v in (_dig(payload, *p) for p in name) if isinstance(v, str) and v.strip()), None)
    return QuoteMatch(
        shape,
        price=price,
        pe_ratio=_first_number(payload, *pe),
        week_high=_first_number(payload, *high),
        week_low=_first_number(payload, *low),
        market_cap=_first_number(payload, *cap),
        name=label,
    )


def match_quote_root_fields(payload: Any) -> QuoteMatch:
    return _quote(
        QuoteShape.ROOT_FIELDS, payload,
        price=[("lastPrice",)], pe=[("pe",)], high=[("weekHigh52",)], low=[("weekLow52",)],
        cap=[("marketCap",)], name=[("companyName",)],
    )


def match_nse_quote(payload: Any) -> QuoteMatch:
    return _quote(
        QuoteShape.NSE_QUOTE, payload,
        price=[("priceInfo", "lastPrice")],
        pe=[("metadata", "pdSymbolPe"), ("keyIndicators", "pe")],
        high=[("priceInfo", "weekHighLow", "max"), ("priceInfo", "weekHigh52")],
        low=[("priceInfo", "weekHighLow", "min"), ("priceInfo", "weekLow52")],
        cap=[("preOpenMarket", "marketCap"), ("securityInfo", "marketCap")],
        name=[("info", "companyName")],
    )


def match_yahoo_info(payload: Any) -> QuoteMatch:
    return _quote(
        QuoteShape.YAHOO_INFO, payload,
        price=[("currentPrice",), ("regularMarketPrice",)],
        pe=[("trailingPE",)],
        high=[("fiftyTwoWeekHigh",)], low=[("fiftyTwoWeekLow",)],
        cap=[("marketCap",)], name=[("longName",), ("shortName",)],
    )


QUOTE_MATCHERS: Tuple[Callable[[Any], QuoteMatch], ...] = (
    match_quote_root_fields,
    match_nse_quote,
    match_yahoo_info,
)


def match_quote(payload: Any) -> QuoteMatch:
    for matcher in QUOTE_MATCHERS:
        match = matcher(payload)
        if match.recognized:
            return match
    return UNRECOGNIZED_QUOTE


# === Announcements ===

_RESULT_KEYWORDS = ("quarterly", "quarter", "results")
_SUBJECT_KEYS = ("subject", "title", "name", "desc", "attchmntText", "description")
_ANNOUNCED_KEYS = ("date", "announcementDate", "announcedDate", "an_dt", "sort_date")
_ANNOUNCEMENT_DATE_FORMATS = (
    "%Y-%m-%d", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S",
    "%d-%b-%Y", "%d-%b-%Y %H:%M:%S",
)


def _parse_announcement_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    for fmt in _ANNOUNCEMENT_DATE_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt).date()
        except ValueError:
            continue
    return None


def match_result_announcement(payload: Any) -> Optional[Dict[str, Any]]:
    """
    First quarterly-result entry in an announcements payload.

    Accepts a bare list or a mapping holding the list under
    data/announcements/corporateActions. Returns the entry's parsed date and
    financial figures, or None.
    """
    items = payload
    if isinstance(payload, dict):
        items = next(
            (payload[k] for k in ("data", "announcements", "corporateActions", "corporate_announcements")
             if isinstance(payload.get(k), list)),
            [],
        )
    if not isinstance(items, list):
        return None

    for item in items:
        if not isinstance(item, dict):
            continue
        subject = " ".join(str(item.get(k) or "") for k in _SUBJECT_KEYS).lower()
        if not any(word in subject for word in _RESULT_KEYWORDS):
            continue
        announced = next(
            (d for d in (_parse_announcement_date(item.get(k)) for k in _ANNOUNCED_KEYS) if d), None
        )
        if announced is None:
            continue
        return {
            "announced_on": announced,
            "revenue": _first_number(item, ("revenue",), ("totalIncome",)),
            "profit": _first_number(item, ("profit",), ("netProfit",), ("pat",)),
            "eps": _first_number(item, ("eps",), ("earningsPerShare",)),
        }
    return None


# === Normalizer ===

class DataNormalizer:
    """
    Produces typed snapshots and holdings for one security at a time.

    In synthetic mode the source is never touched. In live mode every
    failure (exception, unrecognized payload, no FII/DII found) falls back to
    synthetic data for that security only.
    """

    def __init__(
        self,
        source: Optional[MarketDataSource] = None,
        use_live_source: bool = USE_LIVE_SOURCE,
        synthetic: Optional[SyntheticDataGenerator] = None,
        today: Callable[[], date] = date.today,
    ):
        if use_live_source and source is None:
            raise ValueError("use_live_source=True requires a market data source")
        self.source = source
        self.use_live_source = use_live_source
        self.synthetic = synthetic or SyntheticDataGenerator()
        self._today = today

    def snapshot(self, symbol: str) -> NormalizedSnapshot:
        symbol = symbol.strip().upper()
        if not self.use_live_source:
            return self.synthetic.snapshot(symbol)

        try:
            match = match_quote(self.source.fetch_quote(symbol))
        except Exception as e:
            logger.warning("Quote fetch failed for %s (%s); using synthetic data", symbol, e)
            return self.synthetic.snapshot(symbol)

        if not match.recognized:
            logger.warning("Unrecognized quote payload for %s; using synthetic data", symbol)
            return self.synthetic.snapshot(symbol)

        high = match.week_high if match.week_high and match.week_high > 0 else match.price
        low = match.week_low if match.week_low and match.week_low > 0 else match.price
        if high < low:
            high, low = low, high

        logger.debug("Quote for %s matched %s", symbol, match.shape.value)
        return NormalizedSnapshot(
            symbol=symbol,
            name=match.name or symbol,
            price=round(match.price, 2),
            pe_ratio=round(match.pe_ratio, 2) if match.pe_ratio is not None else None,
            week_high=round(high, 2),
            week_low=round(low, 2),
            market_cap=match.market_cap,
            provenance=Provenance.LIVE,
            shape=match.shape.value,
        )

    def holdings(self, symbol: str, target_period: Optional[PeriodLike] = None) -> NormalizedHoldings:
        """
        FII/DII holdings, preferably for `target_period` (default: current).

        The returned `period` is the quarter the data actually covers, which
        for dated payloads is the latest quarter the source has published.
        Raises MalformedPeriodError for a bad token before touching the source.
        """
        symbol = symbol.strip().upper()
        period = Period.parse(target_period) if target_period is not None else current_period(self._today())
        if not self.use_live_source:
            return self.synthetic.holdings(symbol, period)

        try:
            match = match_holdings(self.source.fetch_shareholding(symbol))
        except Exception as e:
            logger.debug("Primary shareholding fetch failed for %s: %s", symbol, e)
            match = UNRECOGNIZED_HOLDINGS

        if not match.recognized:
            logger.debug("No FII/DII from primary endpoint for %s; probing detail endpoint", symbol)
            try:
                match = match_secondary_probe(self.source.fetch_shareholding_detail(symbol))
            except Exception as e:
                logger.warning("Shareholding fetch failed for %s (%s); using synthetic data", symbol, e)
                return self.synthetic.holdings(symbol, period)

        if not match.recognized:
            logger.warning("No FII/DII data found for %s; using synthetic data", symbol)
            return self.synthetic.holdings(symbol, period)

        actual = match.period or period
        if actual != period:
            logger.info("Shareholding for %s covers %s, requested %s; using %s",
                        symbol, actual, period, actual)

        fii = normalize_percentage(match.fii)
        dii = normalize_percentage(match.dii)
        return NormalizedHoldings(
            symbol=symbol,
            period=actual,
            fii_holding=fii,
            dii_holding=dii,
            total_institutional=total_institutional(fii, dii),
            provenance=Provenance.LIVE,
            shape=match.shape.value,
        )

    def announcement(self, symbol: str) -> Optional[NormalizedAnnouncement]:
        """
        Latest quarterly-result filing for `symbol`, or None.

        Only live mode has filings to look at; synthetic data never announces.
        A filing made on date d reports the quarter before the one d falls in.
        """
        if not self.use_live_source:
            return None
        symbol = symbol.strip().upper()
        try:
            found = match_result_announcement(self.source.fetch_announcements(symbol))
        except Exception as e:
            logger.warning("Announcement fetch failed for %s: %s", symbol, e)
            return None
        if found is None:
            return None
        return NormalizedAnnouncement(
            symbol=symbol,
            period=previous_period(period_for_date(found["announced_on"])),
            **found,
        )


def build_normalizer(use_live_source: bool = USE_LIVE_SOURCE) -> DataNormalizer:
    """Normalizer wired to the configured live source (if enabled)."""
    from valuewatch.services.market_source import build_source

    source = build_source() if use_live_source else None
    return DataNormalizer(source=source, use_live_source=use_live_source)
