"""
Batch refresh job.

This script:
1. Refreshes snapshots for the given (or tracked) symbols
2. Rescores every snapshot and overwrites the undervalued flags
3. Refreshes FII/DII holdings and recomputes quarter-over-quarter changes
4. Schedules quarter result rows for the current and next quarters
5. In live mode, marks results announced from corporate filings

Usage:
    python scripts/refresh_data.py
    python scripts/refresh_data.py --seed
    python scripts/refresh_data.py --symbols TCS INFY --quarter Q3-2025 --live

The job is idempotent - running it multiple times only updates existing rows.
SIGINT/SIGTERM finish the stock in progress and then stop the batch.
"""
import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from valuewatch.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_INTER_BATCH_DELAY_MS,
    DEFAULT_INTER_REQUEST_DELAY_MS,
    DEFAULT_PERIODS_AHEAD,
    LOG_FORMAT,
    LOG_LEVEL,
    POPULAR_SYMBOLS,
    USE_LIVE_SOURCE,
)
from valuewatch.db.database import init_db, session_scope
from valuewatch.services.engine import AnalyticsEngine
from valuewatch.services.normalizer import build_normalizer
from valuewatch.services.quarters import MalformedPeriodError, Period

logger = logging.getLogger("refresh_data")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Refresh snapshots, scores, holdings and result schedules.")
    parser.add_argument("--symbols", nargs="*", help="Symbols to refresh (default: tracked stocks)")
    parser.add_argument("--seed", action="store_true", help="Seed and track the reference stocks first")
    parser.add_argument("--quarter", help="Target quarter for holdings, e.g. Q3-2025 (default: current)")
    parser.add_argument("--live", action="store_true", default=USE_LIVE_SOURCE,
                        help="Use the live market-data source")
    parser.add_argument("--skip-holdings", action="store_true")
    parser.add_argument("--skip-results", action="store_true")
    parser.add_argument("--periods-ahead", type=int, default=DEFAULT_PERIODS_AHEAD)
    parser.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE)
    parser.add_argument("--inter-request-delay-ms", type=int, default=DEFAULT_INTER_REQUEST_DELAY_MS)
    parser.add_argument("--inter-batch-delay-ms", type=int, default=DEFAULT_INTER_BATCH_DELAY_MS)
    return parser.parse_args(argv)


def _count(results: List[dict]) -> str:
    ok = sum(1 for r in results if r["success"])
    return f"{ok}/{len(results)}"


def run(args: argparse.Namespace) -> int:
    # Validate before any work
    target = None
    if args.quarter:
        try:
            target = Period.parse(args.quarter)
        except MalformedPeriodError as e:
            logger.error("%s", e)
            return 2

    print("=" * 60)
    print("ValueWatch Refresh")
    print("=" * 60)

    init_db()
    with session_scope() as db:
        engine = AnalyticsEngine(db, normalizer=build_normalizer(args.live))

        def stop(signum, frame):
            logger.warning("Signal %s received; stopping after the current stock", signum)
            engine.request_stop()

        signal.signal(signal.SIGINT, stop)
        signal.signal(signal.SIGTERM, stop)

        if args.seed:
            print(f"Seeded reference stocks: {_count(engine.seed_reference_stocks())}")

        symbols = args.symbols or engine.data.get_tracked_symbols() or POPULAR_SYMBOLS
        print(f"Stocks to process: {len(symbols)} ({'live' if args.live else 'synthetic'} data)")

        snapshots = engine.refresh_snapshots(
            symbols,
            batch_size=args.batch_size,
            inter_batch_delay_ms=args.inter_batch_delay_ms,
            inter_request_delay_ms=args.inter_request_delay_ms,
        )
        print(f"Snapshots refreshed: {_count(snapshots)}")

        undervalued = engine.score_undervalued()
        print(f"Undervalued stocks: {len(undervalued)}")
        for scored in undervalued[:3]:
            print(f"  {scored.stock.symbol:<12} score {scored.score:>3}  {scored.reason}")

        if not args.skip_holdings:
            holdings = engine.refresh_holdings(symbols, target_period=target)
            print(f"Holdings refreshed: {_count(holdings)}")
            print(f"Significant activity: {len(engine.significant_activity())} stocks")

        if not args.skip_results:
            scheduled = engine.generate_upcoming_results(args.periods_ahead)
            print(f"Result rows scheduled: {_count(scheduled)}")
            if args.live:
                announced = engine.scheduler.sync_announcements(symbols)
                print(f"Results marked announced: {len(announced)}")

    print("=" * 60)
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    sys.exit(run(parse_args()))
