"""
ValueWatch - FastAPI Application

REST API over the valuation and institutional-activity engine:
- Snapshot refresh with per-stock synthetic fallback
- Undervaluation scoring
- FII/DII change classification
- Quarterly result scheduling
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from valuewatch.config import (
    API_DESCRIPTION,
    API_HOST,
    API_PORT,
    API_TITLE,
    API_VERSION,
    CORS_ORIGINS,
    LOG_FORMAT,
    LOG_LEVEL,
    USE_LIVE_SOURCE,
)
from valuewatch.api.routes import router
from valuewatch.db.database import init_db

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("ValueWatch %s started with %s data", API_VERSION,
                "live" if USE_LIVE_SOURCE else "synthetic")
    yield


app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    # Browsers reject credentials with a wildcard origin
    allow_credentials="*" not in CORS_ORIGINS,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api/v1", tags=["ValueWatch"])


@app.get("/", include_in_schema=False)
def index() -> dict:
    """Entry points of the API."""
    return {
        "name": API_TITLE,
        "version": API_VERSION,
        "docs": "/docs",
        "undervalued": "/api/v1/stocks/undervalued",
        "significant_activity": "/api/v1/holdings/significant",
        "quarter_results": "/api/v1/quarter-results",
    }


# Run with: uvicorn valuewatch.main:app --reload
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("valuewatch.main:app", host=API_HOST, port=API_PORT, reload=True)
