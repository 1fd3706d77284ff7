"""
Database utilities and connection management.

WHAT: SQLite database setup with WAL mode
WHY: Listings, matches and deal history live in one shared relational store
HOW: SQLAlchemy sync engine v2 with WAL mode, session management
"""

from sqlalchemy import create_engine, text, event
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from contextlib import contextmanager
from pathlib import Path

from .config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)


def _is_memory_url(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:")


def build_engine(url: str):
    """
    Create a SQLAlchemy engine for the given URL.

    In-memory databases share a single connection (StaticPool) so every
    session sees the same tables; file databases get their directory created.
    """
    kwargs = {
        "connect_args": {"check_same_thread": False},  # Allow multi-threaded access
        "echo": settings.DEBUG,
        "future": True,
    }
    if _is_memory_url(url):
        kwargs["poolclass"] = StaticPool
    elif url.startswith("sqlite:///"):
        data_dir = Path(url.replace("sqlite:///", "")).parent
        data_dir.mkdir(parents=True, exist_ok=True)

    new_engine = create_engine(url, **kwargs)

    @event.listens_for(new_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        """Enable WAL mode for better concurrency."""
        # Let SQLAlchemy own BEGIN so SAVEPOINTs nest inside the outer transaction
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        if not _is_memory_url(url):
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(new_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return new_engine


engine = build_engine(settings.DATABASE_URL)

# Session factory
SessionLocal = sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
    autocommit=False
)

# Base for models
Base = declarative_base()


@contextmanager
def get_db():
    """
    Context manager for database session.

    Usage:
        with get_db() as db:
            # use db session
            pass

    Yields:
        Session: SQLAlchemy session
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ping_database() -> dict:
    """
    Check database connectivity.

    Returns:
        Dict with status and info
    """
    try:
        with engine.connect() as conn:
            result = conn.execute(text("SELECT 1"))
            result.fetchone()

        return {
            "available": True,
            "url": settings.DATABASE_URL,
            "error": None
        }
    except Exception as e:
        logger.error(f"Database ping failed: {e}")
        return {
            "available": False,
            "url": settings.DATABASE_URL,
            "error": str(e)
        }


def init_db():
    """Create all tables."""
    # Import models so they register on Base.metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("Database initialized")


def close_db():
    """Close database connections."""
    engine.dispose()
    logger.info("Database connections closed")
