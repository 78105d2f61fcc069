"""
Database Engine & Session Management
SQLAlchemy setup with dependency injection for FastAPI.
"""
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from lovepages.config import get_settings

settings = get_settings()

Base = declarative_base()


def build_engine(url: str, echo: bool = False):
    """Create an engine; SQLite needs its data directory and cross-thread access."""
    connect_args = {}
    if url.startswith("sqlite:///"):
        db_path = url.replace("sqlite:///", "", 1)
        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        # Background webhook tasks and capture workers run on other threads
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(url, connect_args=connect_args, echo=echo)


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def get_db():
    """FastAPI dependency: yields a database session, auto-closes on finish."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    """FastAPI dependency: the factory used by work that outlives the request."""
    return SessionLocal


def init_db(bind=None):
    """Create all tables. Called once at application startup."""
    from lovepages.models import user as _user_model         # noqa: F401
    from lovepages.models import payment as _payment_model   # noqa: F401
    from lovepages.models import audit as _audit_model       # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
