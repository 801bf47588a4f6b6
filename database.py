from contextlib import contextmanager
from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError, TimeoutError as PoolTimeoutError
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool
from typing import Optional
from config import settings
from utils.errors import QueryTimeout, UpstreamQueryFailure
import logging

logger = logging.getLogger(__name__)

# Portal-owned tables (created by init_db.py)
Base = declarative_base()
# Read-only ERP tables, never created or migrated by the portal
ErpBase = declarative_base()

POSTGRES_QUERY_CANCELED = "57014"


def normalize_database_url(database_url: str) -> Optional[str]:
    """Get and fix database URL for SQLAlchemy compatibility"""
    database_url = (database_url or "").strip()
    if not database_url:
        return None

    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
        logger.info("Converted postgres:// to postgresql://")

    return database_url


class Database:
    """Process-wide engine and session factory with an explicit init/shutdown lifecycle"""

    def __init__(self, database_url: str, **engine_kwargs):
        self.database_url = normalize_database_url(database_url)
        self._engine_kwargs = engine_kwargs
        self.engine = None
        self.SessionLocal = None

    def init(self) -> "Database":
        if self.engine is not None:
            return self
        if not self.database_url:
            raise RuntimeError("Database not configured. Set DATABASE_URL environment variable.")

        kwargs = dict(self._engine_kwargs)
        if "postgresql" in self.database_url.lower():
            kwargs.setdefault("poolclass", QueuePool)
            kwargs.setdefault("pool_size", settings.db_pool_size)
            # Requests beyond pool capacity wait for a free session instead of opening more
            kwargs.setdefault("max_overflow", 0)
            kwargs.setdefault("pool_timeout", settings.db_pool_timeout_seconds)
            kwargs.setdefault("pool_pre_ping", True)
            kwargs.setdefault("pool_recycle", 300)
            kwargs.setdefault("connect_args", {
                "connect_timeout": settings.db_pool_timeout_seconds,
                "options": f"-c statement_timeout={settings.db_statement_timeout_seconds * 1000}",
            })

        self.engine = create_engine(self.database_url, echo=False, **kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        logger.info("Database engine created successfully")
        return self

    def shutdown(self):
        if self.engine is not None:
            self.engine.dispose()
            logger.info("Database engine disposed")
        self.engine = None
        self.SessionLocal = None

    def session(self):
        if self.SessionLocal is None:
            raise RuntimeError("Database handle is not initialized")
        return self.SessionLocal()

    def verify_connection(self) -> bool:
        """Verify database connection is working"""
        if self.engine is None:
            return False
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database connection failed: {e}")
            return False


def get_database(request: Request) -> Database:
    database = getattr(request.app.state, "database", None)
    if database is None:
        raise RuntimeError("Database not configured. Set DATABASE_URL environment variable.")
    return database


def get_db(request: Request):
    """Dependency that provides a database session with automatic cleanup"""
    db = get_database(request).session()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def _is_statement_timeout(exc: OperationalError) -> bool:
    pgcode = getattr(getattr(exc, "orig", None), "pgcode", None)
    return pgcode == POSTGRES_QUERY_CANCELED or "statement timeout" in str(exc).lower()


@contextmanager
def translate_query_errors(operation: str):
    """Map driver and pool failures of a read-only unit of work onto portal errors"""
    try:
        yield
    except PoolTimeoutError as e:
        logger.warning(f"{operation}: no database session available: {e}")
        raise QueryTimeout(f"{operation} timed out waiting for a database connection") from e
    except OperationalError as e:
        if _is_statement_timeout(e):
            logger.warning(f"{operation}: statement timeout: {e}")
            raise QueryTimeout(f"{operation} exceeded the query time limit") from e
        logger.error(f"{operation} failed: {e}")
        raise UpstreamQueryFailure(f"{operation} failed") from e
    except SQLAlchemyError as e:
        logger.error(f"{operation} failed: {e}")
        raise UpstreamQueryFailure(f"{operation} failed") from e
