"""
Pydantic models for API response serialization.

All responses are clearly typed for Swagger documentation.
Nullable fields use Optional: P/E, market cap and holding changes can be missing.
"""
from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class StockResponse(BaseModel):
    """Current snapshot of one security."""
    id: int
    symbol: str = Field(..., example="RELIANCE")
    name: str = Field(..., example="Reliance Industries Ltd.")
    current_price: float = Field(..., example=2450.50)
    pe_ratio: Optional[float] = Field(None, example=24.5)
    week_high: float = Field(..., example=3024.90, description="52-week high")
    week_low: float = Field(..., example=2220.30, description="52-week low")
    market_cap: Optional[float] = Field(None, example=1.65e13, description="Market cap in rupees")
    is_tracked: bool
    is_undervalued: bool
    source: str = Field(..., example="synthetic", description="live or synthetic")
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TrackRequest(BaseModel):
    is_tracked: bool = Field(..., example=True)


class RefreshRequest(BaseModel):
    """Symbols to refresh; empty means every tracked stock."""
    symbols: List[str] = Field(default_factory=list, example=["RELIANCE", "TCS"])
    batch_size: int = Field(10, ge=1, le=100)
    inter_request_delay_ms: int = Field(200, ge=0)
    inter_batch_delay_ms: int = Field(1000, ge=0)


class BatchItemResponse(BaseModel):
    """Outcome for one identifier of a batch run."""
    identifier: str
    success: bool
    period: Optional[str] = Field(None, example="Q3-2025")
    error: Optional[str] = None


class BatchResponse(BaseModel):
    total: int
    succeeded: int
    failed: int
    results: List[BatchItemResponse]


class UndervaluedStock(BaseModel):
    stock: StockResponse
    score: int = Field(..., example=70, description="Undervaluation score 0-100")
    reason: str = Field(..., example="Low P/E ratio, Below 52-week high")


class UndervaluedResponse(BaseModel):
    total: int
    top_buys: List[UndervaluedStock] = Field(..., description="Three highest-scoring stocks")
    stocks: List[UndervaluedStock]


class HoldingResponse(BaseModel):
    """FII/DII holdings of one stock in one quarter."""
    symbol: str = Field(..., example="TCS")
    quarter: str = Field(..., example="Q3-2025")
    quarter_end_date: date
    fii_holding: Optional[float] = Field(None, example=21.4, description="FII holding %")
    dii_holding: Optional[float] = Field(None, example=14.2, description="DII holding %")
    total_institutional: Optional[float] = Field(None, example=35.6)
    previous_quarter: Optional[str] = Field(None, example="Q2-2025")
    fii_change: Optional[float] = Field(None, example=12.5, description="% change vs previous quarter")
    dii_change: Optional[float] = Field(None, example=-3.1)
    total_change: Optional[float] = Field(None, example=5.8)
    is_significant: bool
    source: str


class SignificantActivity(BaseModel):
    stock: StockResponse
    holding: HoldingResponse
    level: Optional[str] = Field(None, example="very-high", description="extreme/very-high/high")
    message: Optional[str] = Field(None, example="Very high institutional activity (15%+)")


class SignificantActivityResponse(BaseModel):
    """Significant activity, all together and split by level."""
    total: int
    min_change: float
    activities: List[SignificantActivity]
    by_level: Dict[str, List[SignificantActivity]]


class QuarterResultResponse(BaseModel):
    symbol: str = Field(..., example="INFY")
    name: str
    quarter: str = Field(..., example="Q3-2025")
    quarter_end_date: date
    expected_date: date = Field(..., description="Quarter end + 45 days")
    actual_date: Optional[date] = None
    is_announced: bool
    is_overdue: bool
    days_until: Optional[int] = Field(None, example=12, description="Days to expected date")
    revenue: Optional[float] = None
    profit: Optional[float] = None
    eps: Optional[float] = None


class GroupedResultsResponse(BaseModel):
    announced: Dict[str, List[QuarterResultResponse]]
    upcoming: Dict[str, List[QuarterResultResponse]]


class AnnounceRequest(BaseModel):
    symbol: str = Field(..., example="INFY")
    quarter: str = Field(..., example="Q3-2025")
    actual_date: Optional[date] = None
    revenue: Optional[float] = None
    profit: Optional[float] = None
    eps: Optional[float] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    detail: str = Field(..., example="Symbol 'INVALID' not found in database")
