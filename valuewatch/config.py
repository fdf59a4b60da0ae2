"""
Configuration management for the Valuation & Institutional Activity engine.

All configurable values are centralized here with sensible defaults.
No magic numbers in application code.
"""
import os
from pathlib import Path
from typing import List, Tuple

# === Paths ===
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.getenv("VALUEWATCH_DATA_DIR", BASE_DIR / "data"))
DATABASE_PATH = DATA_DIR / "valuewatch.db"

# Ensure data directory exists
DATA_DIR.mkdir(parents=True, exist_ok=True)

# === Database ===
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATABASE_PATH}")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"

# === Logging ===
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# === Market Data Source ===
# Synthetic data is the default; set USE_LIVE_SOURCE=true to query the source.
USE_LIVE_SOURCE = os.getenv("USE_LIVE_SOURCE", "false").lower() == "true"
LIVE_SOURCE_PROVIDER = os.getenv("LIVE_SOURCE_PROVIDER", "nse")  # "nse" | "yfinance"

NSE_BASE_URL = os.getenv("NSE_BASE_URL", "https://www.nseindia.com")
YFINANCE_SYMBOL_SUFFIX = ".NS"

SOURCE_TIMEOUT_SECONDS = float(os.getenv("SOURCE_TIMEOUT_SECONDS", "10"))

# Retry configuration for API failures
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "3"))
RETRY_BACKOFF_SECONDS = float(os.getenv("RETRY_BACKOFF_SECONDS", "2.0"))

# === Batch Processing ===
DEFAULT_BATCH_SIZE = int(os.getenv("BATCH_SIZE", "10"))
DEFAULT_INTER_REQUEST_DELAY_MS = int(os.getenv("INTER_REQUEST_DELAY_MS", "200"))
DEFAULT_INTER_BATCH_DELAY_MS = int(os.getenv("INTER_BATCH_DELAY_MS", "1000"))

# === Quarter Calendar ===
# Statutory window for announcing quarterly results
ANNOUNCEMENT_OFFSET_DAYS = 45
DEFAULT_PERIODS_AHEAD = 2
DEFAULT_RESULTS_DAYS_AHEAD = 60

# === Valuation Scoring ===
UNDERVALUED_MIN_SCORE = 30
LOW_PE_MAX = 15
MODERATE_PE_MAX = 20
# 5,000 crore expressed in actual currency units
SMALL_CAP_THRESHOLD = 50_000_000_000
CRORE = 10_000_000
TOP_BUY_CANDIDATES = 3

# === Institutional Activity ===
SIGNIFICANT_CHANGE_PCT = 5.0
VERY_HIGH_CHANGE_PCT = 15.0
HIGH_CHANGE_PCT = 10.0
EXTREME_CHANGE_PCT = 50.0

# === Synthetic Data Ranges ===
SYNTHETIC_PRICE_RANGE = (100.0, 2100.0)
SYNTHETIC_PE_RANGE = (10.0, 40.0)
SYNTHETIC_BAND_PCT = 0.30
SYNTHETIC_MARKET_CAP_CRORE_RANGE = (1_000.0, 55_000.0)
SYNTHETIC_PRICE_JITTER = 0.02
SYNTHETIC_FII_RANGE = (10.0, 40.0)
SYNTHETIC_DII_RANGE = (5.0, 30.0)
SYNTHETIC_SPIKE_PROBABILITY = 0.30

# === Reference Securities ===
# (symbol, name, price, pe, 52w high, 52w low, market cap in crore)
REFERENCE_STOCKS: List[Tuple[str, str, float, float, float, float, float]] = [
    ("RELIANCE", "Reliance Industries Ltd", 2450.50, 28.5, 2750.00, 2200.00, 1_657_000),
    ("TCS", "Tata Consultancy Services Ltd", 3450.75, 32.8, 3800.00, 3100.00, 1_270_000),
    ("HDFCBANK", "HDFC Bank Ltd", 1625.30, 18.2, 1800.00, 1400.00, 1_215_000),
    ("INFY", "Infosys Ltd", 1450.20, 26.5, 1650.00, 1200.00, 605_000),
    ("HINDUNILVR", "Hindustan Unilever Ltd", 2650.80, 58.3, 2800.00, 2400.00, 625_000),
    ("ICICIBANK", "ICICI Bank Ltd", 980.45, 16.8, 1100.00, 850.00, 695_000),
    ("BHARTIARTL", "Bharti Airtel Ltd", 1120.25, 45.2, 1250.00, 900.00, 625_000),
    ("SBIN", "State Bank of India", 625.50, 9.5, 680.00, 550.00, 555_000),
    ("BAJFINANCE", "Bajaj Finance Ltd", 6850.00, 32.5, 7800.00, 6200.00, 425_000),
    ("ITC", "ITC Ltd", 450.75, 22.8, 500.00, 400.00, 560_000),
    ("WIPRO", "Wipro Ltd", 425.30, 19.5, 480.00, 380.00, 232_000),
    ("LT", "Larsen & Toubro Ltd", 3250.50, 38.2, 3650.00, 2800.00, 455_000),
    ("AXISBANK", "Axis Bank Ltd", 1120.00, 14.5, 1250.00, 950.00, 345_000),
    ("MARUTI", "Maruti Suzuki India Ltd", 9850.75, 28.5, 11000.00, 8500.00, 295_000),
    ("NTPC", "NTPC Ltd", 285.25, 12.5, 320.00, 250.00, 276_000),
    ("POWERGRID", "Power Grid Corporation of India Ltd", 235.50, 10.8, 265.00, 200.00, 220_000),
]

# Default symbols refreshed when nothing is tracked yet
POPULAR_SYMBOLS: List[str] = [
    "RELIANCE", "TCS", "HDFCBANK", "INFY", "HINDUNILVR",
    "ICICIBANK", "BHARTIARTL", "SBIN", "BAJFINANCE", "ITC",
]

# === API Configuration ===
API_TITLE = "ValueWatch"
API_DESCRIPTION = """
REST API for valuation screening and institutional-activity tracking of NSE equities.

## Features
- Undervalued score from P/E, 52-week band and market-cap factors
- Quarter-over-quarter FII/DII holding changes with activity tiers
- Quarterly result announcement tracker (45-day statutory window)
- Live NSE/Yahoo data with per-security synthetic fallback
"""
API_VERSION = "1.0.0"

# Default query limits
MAX_LIST_LIMIT = 500

# Comma-separated; "*" allows any origin
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
