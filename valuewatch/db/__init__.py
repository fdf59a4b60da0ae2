# Database package
from valuewatch.db.database import engine, get_db, init_db, session_scope, SessionLocal
from valuewatch.db.models import Base, InstitutionalHolding, QuarterResult, Stock

__all__ = [
    "engine",
    "get_db",
    "init_db",
    "session_scope",
    "SessionLocal",
    "Base",
    "Stock",
    "InstitutionalHolding",
    "QuarterResult",
]
