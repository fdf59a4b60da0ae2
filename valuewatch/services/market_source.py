"""
Market-data source clients.

Each client is an explicitly constructed object handed to the normalizer;
there is no module-level client instance. Every fetch_* method returns the
raw decoded payload (untyped nested dicts/lists) or raises. Callers treat any
exception as "source unavailable" for that one security.
"""
import logging
import time
from datetime import date
from typing import Any, Callable, Dict, List, Optional

import pandas as pd
import requests
import yfinance as yf

from valuewatch.config import (
    LIVE_SOURCE_PROVIDER,
    MAX_RETRIES,
    NSE_BASE_URL,
    RETRY_BACKOFF_SECONDS,
    SOURCE_TIMEOUT_SECONDS,
    YFINANCE_SYMBOL_SUFFIX,
)

logger = logging.getLogger(__name__)


class SourceUnavailableError(Exception):
    """Raised when the market-data source cannot serve a request."""

    def __init__(self, message: str, last_error: Optional[Exception] = None):
        super().__init__(message)
        self.last_error = last_error


class MarketDataSource:
    """
    Interface of a market-data source.

    Subclasses override the fetches they support; the defaults raise
    SourceUnavailableError so unsupported data falls back to synthetic.
    """

    name = "base"

    def fetch_quote(self, symbol: str) -> Any:
        raise SourceUnavailableError(f"{self.name} does not serve quotes")

    def fetch_shareholding(self, symbol: str) -> Any:
        raise SourceUnavailableError(f"{self.name} does not serve shareholding patterns")

    def fetch_shareholding_detail(self, symbol: str) -> Any:
        raise SourceUnavailableError(f"{self.name} has no detailed shareholding endpoint")

    def fetch_announcements(self, symbol: str) -> Any:
        raise SourceUnavailableError(f"{self.name} does not serve corporate announcements")


class NSEClient(MarketDataSource):
    """
    Client for the NSE India JSON endpoints.

    NSE rejects requests without browser-like headers and the session cookies
    set by its home page, so the first call warms the session up.
    """

    name = "nse"

    HEADERS = {
        "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
        "Accept": "application/json",
        "Accept-Language": "en-US,en;q=0.9",
    }

    def __init__(
        self,
        base_url: str = NSE_BASE_URL,
        timeout: float = SOURCE_TIMEOUT_SECONDS,
        max_retries: int = MAX_RETRIES,
        backoff_seconds: float = RETRY_BACKOFF_SECONDS,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self.session = session or requests.Session()
        self.session.headers.update(self.HEADERS)
        self._sleep = sleep
        self._warmed_up = False

    def _warm_up(self) -> None:
        if self._warmed_up:
            return
        try:
            self.session.get(self.base_url, timeout=self.timeout)
        except requests.RequestException as e:
            logger.debug("NSE session warm-up failed: %s", e)
        self._warmed_up = True

    def _get_json(self, path: str, params: Dict[str, str], referer_symbol: str) -> Any:
        """
        GET an endpoint with retry logic.

        Connection errors, timeouts, 429 and 5xx are retried with exponential
        backoff; other HTTP errors fail immediately.
        """
        self._warm_up()
        url = f"{self.base_url}{path}"
        headers = {"Referer": f"{self.base_url}/get-quotes/equity?symbol={referer_symbol}"}
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
                if response.status_code == 429 or response.status_code >= 500:
                    raise requests.HTTPError(f"HTTP {response.status_code}", response=response)
                response.raise_for_status()
                return response.json()
            except (requests.ConnectionError, requests.Timeout) as e:
                last_error = e
            except requests.HTTPError as e:
                last_error = e
                status = e.response.status_code if e.response is not None else None
                if status is not None and status != 429 and status < 500:
                    break
            except ValueError as e:
                # Body was not JSON (NSE serves an HTML block page when throttling)
                raise SourceUnavailableError(f"Non-JSON response from {path}", e) from e

            if attempt < self.max_retries - 1:
                wait_time = self.backoff_seconds * (2 ** attempt)
                logger.debug("Attempt %d for %s failed: %s; retrying in %.1fs",
                             attempt + 1, path, last_error, wait_time)
                self._sleep(wait_time)

        raise SourceUnavailableError(
            f"{path} failed for {referer_symbol} after {self.max_retries} attempts", last_error
        )

    def fetch_quote(self, symbol: str) -> Any:
        symbol = symbol.upper()
        return self._get_json("/api/quote-equity", {"symbol": symbol}, symbol)

    def fetch_shareholding(self, symbol: str) -> Any:
        symbol = symbol.upper()
        info = self._get_json("/api/top-corp-info", {"symbol": symbol, "market": "equities"}, symbol)
        if isinstance(info, dict):
            for key in ("shareholdings_patterns", "shareHoldingPattern", "shareholdingPattern"):
                if info.get(key):
                    return info[key]
        return info

    def fetch_shareholding_detail(self, symbol: str) -> Any:
        symbol = symbol.upper()
        return self._get_json(
            "/api/corporate-shareholding-pattern", {"index": "equities", "symbol": symbol}, symbol
        )

    def fetch_announcements(self, symbol: str) -> Any:
        symbol = symbol.upper()
        return self._get_json(
            "/api/corporate-announcements", {"index": "equities", "symbol": symbol}, symbol
        )


class YFinanceClient(MarketDataSource):
    """
    Yahoo Finance client built on yfinance.

    Serves quotes and earnings announcement dates. Yahoo publishes no
    FII/DII split, so shareholding fetches raise and the normalizer falls back.
    """

    name = "yfinance"

    def __init__(self, suffix: str = YFINANCE_SYMBOL_SUFFIX, ticker_factory: Callable[[str], Any] = yf.Ticker):
        self.suffix = suffix
        self._ticker_factory = ticker_factory

    def _ticker(self, symbol: str) -> Any:
        return self._ticker_factory(f"{symbol.upper()}{self.suffix}")

    def fetch_quote(self, symbol: str) -> Any:
        info = self._ticker(symbol).info
        if not info:
            raise SourceUnavailableError(f"Empty info returned for {symbol}")
        return dict(info)

    def fetch_announcements(self, symbol: str) -> Any:
        df = self._ticker(symbol).earnings_dates
        if df is None or df.empty:
            return []

        today = pd.Timestamp(date.today())
        announcements: List[Dict[str, Any]] = []
        for ts, row in df.iterrows():
            ts = pd.Timestamp(ts).tz_localize(None) if pd.Timestamp(ts).tzinfo else pd.Timestamp(ts)
            if ts > today:
                continue
            eps = row.get("Reported EPS")
            announcements.append({
                "subject": "Quarterly results",
                "date": ts.date().isoformat(),
                "eps": None if pd.isna(eps) else float(eps),
            })
        return announcements


def build_source(provider: str = LIVE_SOURCE_PROVIDER) -> MarketDataSource:
    """Construct the configured live source client."""
    if provider == "yfinance":
        return YFinanceClient()
    if provider == "nse":
        return NSEClient()
    raise ValueError(f"Unknown market data provider: {provider!r}")
