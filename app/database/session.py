"""
============================================================================
Mess Ledger v1.0.0
Database Session - SQLAlchemy Engine & Session Management
============================================================================

Reliability Level: CRITICAL
Input Constraints: DATABASE_URL (default: local SQLite file)
Side Effects: Database connections

The engine and session factory live on an explicitly constructed
Database object. The API keeps one on app.state; jobs and tests build
their own, so nothing here is process-wide mutable state.

============================================================================
"""

from contextlib import contextmanager
from typing import Generator, Iterator, Optional
import logging
import os

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from dotenv import load_dotenv

from app.database.models import Base

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./mess_ledger.db"


# ============================================================================
# DATABASE CONFIGURATION
# ============================================================================

def get_database_url() -> str:
    """
    Read the connection URL from the environment.

    Environment Variables:
        DATABASE_URL: SQLAlchemy URL (default: sqlite:///./mess_ledger.db)
    """
    return os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)


def _echo_enabled() -> bool:
    return os.getenv("DB_ECHO", "false").lower() == "true"


def build_engine(database_url: str, echo: Optional[bool] = None) -> Engine:
    """
    Create an engine with pooling suited to the backend.

    In-memory SQLite uses a StaticPool so every session sees the same
    database; file SQLite uses the default pool; server databases get a
    QueuePool.
    """
    if echo is None:
        echo = _echo_enabled()

    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=10,           # Maintain 10 connections
        max_overflow=20,        # Allow up to 20 additional connections under load
        pool_timeout=30,        # Wait up to 30s for a connection
        pool_recycle=1800,      # Recycle connections after 30 minutes
        pool_pre_ping=True,     # Verify connections before use
        echo=echo,
        execution_options={
            "isolation_level": "READ COMMITTED"
        }
    )


# ============================================================================
# DATABASE OBJECT
# ============================================================================

class Database:
    """
    Engine plus session factory.

    Usage:
        database = Database("sqlite://")
        database.create_all()
        with database.session_scope() as session:
            ...
    """

    def __init__(self, database_url: Optional[str] = None, echo: Optional[bool] = None):
        self.url = database_url or get_database_url()
        self.engine = build_engine(self.url, echo=echo)
        self.session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine
        )

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    def drop_all(self) -> None:
        Base.metadata.drop_all(self.engine)

    def session(self) -> Session:
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Session that commits on success and rolls back on error."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def check_connection(self) -> bool:
        """
        Verify database connectivity.

        Raises:
            RuntimeError: If the database is unreachable
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            raise RuntimeError(f"Database connection failed: {e}") from e

    def dispose(self) -> None:
        self.engine.dispose()


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================

def get_database(request: Request) -> Database:
    return request.app.state.database


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    FastAPI dependency for database session injection.

    Yields:
        Session bound to the application's Database

    Usage:
        @router.get("/history")
        def history(db: Session = Depends(get_db)):
            ...

    The session is rolled back on exception and always closed.
    """
    db = get_database(request).session()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
