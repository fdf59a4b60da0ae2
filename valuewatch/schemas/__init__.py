# Schemas package
from valuewatch.schemas.stock import (
    BatchResponse,
    HoldingResponse,
    QuarterResultResponse,
    SignificantActivityResponse,
    StockResponse,
    UndervaluedResponse,
)

__all__ = [
    "BatchResponse",
    "HoldingResponse",
    "QuarterResultResponse",
    "SignificantActivityResponse",
    "StockResponse",
    "UndervaluedResponse",
]
