"""Pytest configuration and fixtures."""

import random
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from valuewatch.db.database import enable_sqlite_foreign_keys
from valuewatch.db.models import Base
from valuewatch.services.data_service import DataService
from valuewatch.services.engine import AnalyticsEngine
from valuewatch.services.market_source import MarketDataSource, SourceUnavailableError
from valuewatch.services.normalizer import DataNormalizer
from valuewatch.services.records import NormalizedSnapshot, Provenance
from valuewatch.services.synthetic import SyntheticDataGenerator

# Mid Q3-2025
TODAY = date(2025, 8, 15)


class FakeSource(MarketDataSource):
    """
    In-memory market-data source.

    Each payload table maps symbol -> payload; a missing symbol raises
    SourceUnavailableError and an Exception value is raised as is.
    """

    name = "fake"

    def __init__(self, quotes=None, shareholding=None, detail=None, announcements=None):
        self.quotes = quotes or {}
        self.shareholding = shareholding or {}
        self.detail = detail or {}
        self.announcements = announcements or {}
        self.calls = []

    def _serve(self, kind, table, symbol):
        self.calls.append((kind, symbol))
        if symbol not in table:
            raise SourceUnavailableError(f"no {kind} for {symbol}")
        payload = table[symbol]
        if isinstance(payload, Exception):
            raise payload
        return payload

    def fetch_quote(self, symbol):
        return self._serve("quote", self.quotes, symbol)

    def fetch_shareholding(self, symbol):
        return self._serve("shareholding", self.shareholding, symbol)

    def fetch_shareholding_detail(self, symbol):
        return self._serve("detail", self.detail, symbol)

    def fetch_announcements(self, symbol):
        return self._serve("announcements", self.announcements, symbol)


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def db_session():
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def data_service(db_session) -> DataService:
    return DataService(db_session)


@pytest.fixture
def synthetic() -> SyntheticDataGenerator:
    return SyntheticDataGenerator(rng=random.Random(42))


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def synthetic_normalizer(synthetic) -> DataNormalizer:
    return DataNormalizer(synthetic=synthetic, today=lambda: TODAY)


@pytest.fixture
def live_normalizer(fake_source, synthetic) -> DataNormalizer:
    return DataNormalizer(
        source=fake_source, use_live_source=True, synthetic=synthetic, today=lambda: TODAY
    )


@pytest.fixture
def engine(db_session, synthetic_normalizer) -> AnalyticsEngine:
    return AnalyticsEngine(
        db_session, normalizer=synthetic_normalizer, today=lambda: TODAY, sleep=lambda s: None
    )


@pytest.fixture
def live_engine(db_session, live_normalizer) -> AnalyticsEngine:
    return AnalyticsEngine(
        db_session, normalizer=live_normalizer, today=lambda: TODAY, sleep=lambda s: None
    )


@pytest.fixture
def add_stock(data_service):
    """Factory that stores a snapshot directly."""

    def _add(symbol, price=100.0, pe_ratio=None, week_high=None, week_low=None,
             market_cap=None, tracked=False):
        stock = data_service.upsert_stock(NormalizedSnapshot(
            symbol=symbol,
            name=f"{symbol} Ltd.",
            price=price,
            pe_ratio=pe_ratio,
            week_high=week_high if week_high is not None else price,
            week_low=week_low if week_low is not None else price,
            market_cap=market_cap,
            provenance=Provenance.SYNTHETIC,
        ))
        if tracked:
            data_service.set_tracked(symbol, True)
        return stock

    return _add


@pytest.fixture
def client(db_session, engine):
    """TestClient wired to the in-memory database and synthetic engine."""
    from fastapi.testclient import TestClient

    from valuewatch.api.routes import get_engine
    from valuewatch.db.database import get_db
    from valuewatch.main import app

    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_engine] = lambda: engine
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
