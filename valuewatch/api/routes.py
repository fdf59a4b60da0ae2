"""
FastAPI route definitions.

All endpoints are defined here with proper typing and documentation.
No business logic - delegates to the analytics engine and service layer.

Error Handling:
- 404: Symbol or scheduled result not found
- 422: Invalid request parameters (including malformed quarter tokens)
"""
from collections import OrderedDict
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from valuewatch.config import MAX_LIST_LIMIT, TOP_BUY_CANDIDATES, UNDERVALUED_MIN_SCORE, USE_LIVE_SOURCE
from valuewatch.db.database import get_db
from valuewatch.db.models import InstitutionalHolding, QuarterResult
from valuewatch.services.data_service import DataService
from valuewatch.services.engine import AnalyticsEngine
from valuewatch.services.normalizer import DataNormalizer, build_normalizer
from valuewatch.services.quarters import MalformedPeriodError
from valuewatch.services.scheduler import ResultNotFoundError
from valuewatch.schemas.stock import (
    AnnounceRequest,
    BatchItemResponse,
    BatchResponse,
    GroupedResultsResponse,
    HoldingResponse,
    QuarterResultResponse,
    RefreshRequest,
    SignificantActivity,
    SignificantActivityResponse,
    StockResponse,
    TrackRequest,
    UndervaluedResponse,
    UndervaluedStock,
)

router = APIRouter()


@lru_cache(maxsize=1)
def get_normalizer() -> DataNormalizer:
    """Normalizer shared across requests so the source session is reused."""
    return build_normalizer(USE_LIVE_SOURCE)


def get_engine(
    db: Session = Depends(get_db),
    normalizer: DataNormalizer = Depends(get_normalizer),
) -> AnalyticsEngine:
    return AnalyticsEngine(db, normalizer=normalizer)


def _not_found(symbol: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Symbol '{symbol}' not found in database")


def _batch_response(results: List[Dict[str, Any]]) -> BatchResponse:
    succeeded = sum(1 for r in results if r["success"])
    return BatchResponse(
        total=len(results),
        succeeded=succeeded,
        failed=len(results) - succeeded,
        results=[
            BatchItemResponse(
                identifier=r["identifier"],
                success=r["success"],
                period=r.get("period"),
                error=r.get("error"),
            )
            for r in results
        ],
    )


def _holding_response(record: InstitutionalHolding) -> HoldingResponse:
    return HoldingResponse(
        symbol=record.stock.symbol,
        quarter=record.quarter,
        quarter_end_date=record.quarter_end_date,
        fii_holding=record.fii_holding,
        dii_holding=record.dii_holding,
        total_institutional=record.total_institutional,
        previous_quarter=record.previous_quarter,
        fii_change=record.fii_change,
        dii_change=record.dii_change,
        total_change=record.total_change,
        is_significant=record.is_significant,
        source=record.source,
    )


def _result_response(entry: Dict[str, Any]) -> QuarterResultResponse:
    result: QuarterResult = entry["result"]
    return QuarterResultResponse(
        symbol=result.stock.symbol,
        name=result.stock.name,
        quarter=result.quarter,
        quarter_end_date=result.quarter_end_date,
        expected_date=result.expected_date,
        actual_date=result.actual_date,
        is_announced=result.is_announced,
        is_overdue=entry["is_overdue"],
        days_until=entry.get("days_until"),
        revenue=result.revenue,
        profit=result.profit,
        eps=result.eps,
    )


# === Stock Endpoints ===

@router.get(
    "/stocks",
    response_model=List[StockResponse],
    summary="List stocks",
    description="Returns stored snapshots, optionally filtered by tracked/undervalued flags.",
)
def list_stocks(
    tracked: Optional[bool] = Query(None, description="Only tracked (true) or untracked (false)"),
    undervalued: Optional[bool] = Query(None, description="Filter on the last scoring run"),
    db: Session = Depends(get_db),
) -> List[StockResponse]:
    service = DataService(db)
    return [StockResponse.model_validate(s) for s in service.get_all_stocks(tracked, undervalued)]


@router.get(
    "/stocks/undervalued",
    response_model=UndervaluedResponse,
    summary="Undervalued stocks",
    description="Rescores every priced snapshot, overwrites the undervalued flags, "
                "and returns qualifying stocks highest score first.",
)
def get_undervalued(
    min_score: int = Query(default=UNDERVALUED_MIN_SCORE, ge=0, le=100),
    limit: Optional[int] = Query(default=None, ge=1, le=MAX_LIST_LIMIT),
    engine: AnalyticsEngine = Depends(get_engine),
) -> UndervaluedResponse:
    ranked = [s for s in engine.score_undervalued() if s.score >= min_score]
    if limit:
        ranked = ranked[:limit]
    stocks = [
        UndervaluedStock(stock=StockResponse.model_validate(s.stock), score=s.score, reason=s.reason)
        for s in ranked
    ]
    return UndervaluedResponse(total=len(stocks), top_buys=stocks[:TOP_BUY_CANDIDATES], stocks=stocks)


@router.get(
    "/stocks/{symbol}",
    response_model=StockResponse,
    summary="Get one stock",
    responses={404: {"description": "Symbol not found"}},
)
def get_stock(symbol: str, db: Session = Depends(get_db)) -> StockResponse:
    stock = DataService(db).get_stock(symbol)
    if stock is None:
        raise _not_found(symbol)
    return StockResponse.model_validate(stock)


@router.patch(
    "/stocks/{symbol}/track",
    response_model=StockResponse,
    summary="Track or untrack a stock",
    responses={404: {"description": "Symbol not found"}},
)
def set_tracking(symbol: str, body: TrackRequest, db: Session = Depends(get_db)) -> StockResponse:
    stock = DataService(db).set_tracked(symbol, body.is_tracked)
    if stock is None:
        raise _not_found(symbol)
    return StockResponse.model_validate(stock)


@router.post(
    "/stocks/refresh",
    response_model=BatchResponse,
    summary="Refresh snapshots",
    description="Fetches (or synthesizes) snapshots in rate-limited batches. "
                "An empty symbol list refreshes every tracked stock.",
)
def refresh_stocks(body: RefreshRequest, engine: AnalyticsEngine = Depends(get_engine)) -> BatchResponse:
    symbols = body.symbols or engine.data.get_tracked_symbols()
    results = engine.refresh_snapshots(
        symbols,
        batch_size=body.batch_size,
        inter_batch_delay_ms=body.inter_batch_delay_ms,
        inter_request_delay_ms=body.inter_request_delay_ms,
    )
    return _batch_response(results)


@router.post(
    "/stocks/seed",
    response_model=BatchResponse,
    summary="Seed reference stocks",
    description="Creates snapshots for the built-in list of well-known NSE stocks and tracks them.",
)
def seed_stocks(engine: AnalyticsEngine = Depends(get_engine)) -> BatchResponse:
    return _batch_response(engine.seed_reference_stocks())


# === Institutional Holding Endpoints ===

@router.get(
    "/holdings",
    response_model=List[HoldingResponse],
    summary="List FII/DII holdings",
    responses={422: {"description": "Malformed quarter token"}},
)
def list_holdings(
    symbol: Optional[str] = Query(None, description="Stock symbol"),
    quarter: Optional[str] = Query(None, description="Quarter token, e.g. Q3-2025"),
    significant: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
) -> List[HoldingResponse]:
    try:
        records = DataService(db).get_holdings(symbol=symbol, quarter=quarter, significant=significant)
    except MalformedPeriodError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return [_holding_response(r) for r in records]


@router.post(
    "/holdings/refresh",
    response_model=BatchResponse,
    summary="Refresh FII/DII holdings",
    description="Fetches holdings and recomputes quarter-over-quarter changes. "
                "An empty symbol list refreshes every tracked stock.",
    responses={422: {"description": "Malformed quarter token"}},
)
def refresh_holdings(
    body: RefreshRequest,
    quarter: Optional[str] = Query(None, description="Target quarter, default current"),
    engine: AnalyticsEngine = Depends(get_engine),
) -> BatchResponse:
    symbols = body.symbols or engine.data.get_tracked_symbols()
    try:
        results = engine.refresh_holdings(symbols, target_period=quarter)
    except MalformedPeriodError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _batch_response(results)


@router.get(
    "/holdings/significant",
    response_model=SignificantActivityResponse,
    summary="Significant institutional activity",
    description="Latest significant record per stock with an increase of at least min_change %, "
                "largest change first, also grouped by activity level.",
)
def significant_activity(
    min_change: float = Query(default=5.0, ge=0),
    limit: Optional[int] = Query(default=None, ge=1, le=MAX_LIST_LIMIT),
    engine: AnalyticsEngine = Depends(get_engine),
) -> SignificantActivityResponse:
    entries = engine.significant_activity(min_change)
    if limit:
        entries = entries[:limit]

    activities = [
        SignificantActivity(
            stock=StockResponse.model_validate(e["snapshot"]),
            holding=_holding_response(e["holding_record"]),
            level=e["activity_tier"].level if e["activity_tier"] else None,
            message=e["activity_tier"].message if e["activity_tier"] else None,
        )
        for e in entries
    ]
    by_level: Dict[str, List[SignificantActivity]] = OrderedDict(
        (level, []) for level in ("extreme", "very-high", "high")
    )
    for activity in activities:
        if activity.level in by_level:
            by_level[activity.level].append(activity)

    return SignificantActivityResponse(
        total=len(activities), min_change=min_change, activities=activities, by_level=by_level
    )


# === Quarter Result Endpoints ===

@router.get(
    "/quarter-results",
    response_model=List[QuarterResultResponse],
    summary="Upcoming quarter results",
    description="Previous- and current-quarter results expected within days_ahead days, soonest first.",
)
def upcoming_results(
    days_ahead: int = Query(default=60, ge=0, le=365),
    include_announced: bool = Query(default=False),
    limit: Optional[int] = Query(default=None, ge=1, le=MAX_LIST_LIMIT),
    engine: AnalyticsEngine = Depends(get_engine),
) -> List[QuarterResultResponse]:
    entries = engine.scheduler.upcoming(days_ahead, include_announced, limit)
    return [_result_response(e) for e in entries]


@router.get(
    "/quarter-results/grouped",
    response_model=GroupedResultsResponse,
    summary="Quarter results grouped by date",
)
def grouped_results(
    days_ahead: int = Query(default=60, ge=0, le=365),
    engine: AnalyticsEngine = Depends(get_engine),
) -> GroupedResultsResponse:
    grouped = engine.scheduler.grouped_by_date(days_ahead)
    return GroupedResultsResponse(
        announced={k: [_result_response(e) for e in v] for k, v in grouped["announced"].items()},
        upcoming={k: [_result_response(e) for e in v] for k, v in grouped["upcoming"].items()},
    )


@router.post(
    "/quarter-results/generate",
    response_model=BatchResponse,
    summary="Schedule upcoming quarter results",
    description="Creates expected-result rows for every tracked stock for the current and next quarters.",
)
def generate_results(
    periods_ahead: int = Query(default=2, ge=1, le=8),
    engine: AnalyticsEngine = Depends(get_engine),
) -> BatchResponse:
    return _batch_response(engine.generate_upcoming_results(periods_ahead))


@router.post(
    "/quarter-results/announce",
    response_model=QuarterResultResponse,
    summary="Mark a quarter result announced",
    responses={
        404: {"description": "Symbol or scheduled result not found"},
        422: {"description": "Malformed quarter token"},
    },
)
def announce_result(body: AnnounceRequest, engine: AnalyticsEngine = Depends(get_engine)) -> QuarterResultResponse:
    try:
        result = engine.scheduler.mark_announced(
            body.symbol,
            body.quarter,
            actual_date=body.actual_date,
            revenue=body.revenue,
            profit=body.profit,
            eps=body.eps,
        )
    except MalformedPeriodError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ResultNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _result_response({"result": result, "is_overdue": False})


# === Health Check ===

@router.get(
    "/health",
    summary="Health check",
    description="Returns API health status and database connectivity.",
)
def health_check(db: Session = Depends(get_db)) -> dict:
    """API health check endpoint."""
    service = DataService(db)

    try:
        return {
            "status": "healthy",
            "database": "connected",
            "stocks": service.count_stocks(),
            "tracked": len(service.get_tracked_symbols()),
            "live_source": USE_LIVE_SOURCE,
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "database": "error",
            "error": str(e),
        }
