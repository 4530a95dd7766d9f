"""
Database Connection Management for the Lost Document Registry

This module provides:
- FastAPI Dependency Injection pattern for database sessions
- Unit of Work pattern for explicit transaction boundaries
- Connection pooling with proper configuration
- Health checks and connection validation with retry logic
- Environment-based configuration

Uses SQLAlchemy 2.0 style with proper typing support. SQLite (the default
single-office deployment) and PostgreSQL are both supported.
"""

import os
import logging
from typing import Generator, Optional, Callable
from contextlib import contextmanager
from functools import lru_cache
from dataclasses import dataclass

from sqlalchemy import create_engine, event, text, Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import OperationalError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from config_manager import get_config
from database.models import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./lost_documents.db"


# ============================================
# CONFIGURATION
# ============================================

@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = DEFAULT_DATABASE_URL
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    echo: bool = False

    @classmethod
    def from_env(cls, default_url: str = DEFAULT_DATABASE_URL) -> 'DatabaseSettings':
        """Create settings from environment variables (DATABASE_URL wins over default_url)."""
        return cls(
            url=os.getenv("DATABASE_URL", default_url),
            pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
            pool_recycle=int(os.getenv("DB_POOL_RECYCLE", "1800")),
            echo=os.getenv("DB_ECHO", "false").lower() == "true"
        )

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    def get_engine_kwargs(self) -> dict:
        """Engine keyword arguments for the configured backend."""
        if self.is_sqlite:
            # Request workers run in a thread pool; busy timeout in seconds
            return {"connect_args": {"check_same_thread": False, "timeout": self.pool_timeout}}
        return {
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
            "pool_recycle": self.pool_recycle,
            "pool_pre_ping": True,
        }


@lru_cache()
def get_settings() -> DatabaseSettings:
    """Get cached database settings (config.yaml url unless DATABASE_URL is set)."""
    return DatabaseSettings.from_env(get_config().database.url)


# ============================================
# RETRY LOGIC
# ============================================

def create_retry_decorator(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10
) -> Callable:
    """
    Create a retry decorator for database operations.

    Args:
        max_attempts: Maximum number of retry attempts
        min_wait: Minimum wait time between retries (seconds)
        max_wait: Maximum wait time between retries (seconds)

    Returns:
        Retry decorator
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(OperationalError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )


# Create default retry decorator
db_retry = create_retry_decorator()


def register_sqlite_pragmas(engine: Engine) -> None:
    """Enable foreign keys (and WAL for file databases) on every SQLite connection."""
    if engine.dialect.name != "sqlite":
        return

    in_memory = engine.url.database in (None, "", ":memory:")

    @event.listens_for(engine, "connect")
    def on_sqlite_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()


# ============================================
# UNIT OF WORK PATTERN
# ============================================

class UnitOfWork:
    """
    Unit of Work pattern for explicit transaction management.

    Provides clear transaction boundaries and ensures proper
    commit/rollback semantics. Any exception leaving the block,
    cancellation included, rolls the whole transaction back.

    Usage:
        with UnitOfWork(session_factory) as uow:
            repo = LostDocumentRepository(uow.session)
            document = repo.create(...)
            uow.commit()  # Explicit commit
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._session: Optional[Session] = None

    def __enter__(self) -> 'UnitOfWork':
        self._session = self._session_factory()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.rollback()
        self.close()

    @property
    def session(self) -> Session:
        """Get the current session."""
        if self._session is None:
            raise RuntimeError("UnitOfWork not started. Use as context manager.")
        return self._session

    def commit(self) -> None:
        """Explicitly commit the transaction."""
        if self._session:
            self._session.commit()

    def rollback(self) -> None:
        """Rollback the transaction."""
        if self._session:
            self._session.rollback()

    def close(self) -> None:
        """Close the session. Uncommitted work is discarded."""
        if self._session:
            self._session.close()
            self._session = None


# ============================================
# DATABASE SESSION PROVIDER (FastAPI DI)
# ============================================

class DatabaseSessionProvider:
    """
    Provides database sessions using FastAPI Dependency Injection pattern.

    Usage:
        # Create provider (typically in app startup)
        db_provider = DatabaseSessionProvider()

        # Hand it to the services
        service = DocumentService(db_provider, config_service)
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        engine: Optional[Engine] = None
    ):
        """
        Initialize the database session provider.

        Args:
            settings: Database settings (uses env if not provided)
            engine: Pre-created engine (for testing)
        """
        self._settings = settings or get_settings()
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = None
        self._initialized = False

    def init(self, echo: Optional[bool] = None) -> None:
        """
        Initialize database engine and session factory.

        Args:
            echo: Override echo setting for SQL logging
        """
        if self._initialized:
            return

        if echo is not None:
            self._settings.echo = echo

        if self._engine is None:
            self._engine = self._create_engine_with_retry()
        else:
            register_sqlite_pragmas(self._engine)

        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False
        )

        self._setup_event_listeners()

        self._initialized = True
        logger.info("Database session provider initialized (%s)", self._engine.dialect.name)

    @db_retry
    def _create_engine_with_retry(self) -> Engine:
        """Create database engine with retry logic."""
        engine = create_engine(
            self._settings.url,
            echo=self._settings.echo,
            **self._settings.get_engine_kwargs()
        )
        register_sqlite_pragmas(engine)

        # Verify connection
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        return engine

    def _setup_event_listeners(self) -> None:
        """Set up SQLAlchemy event listeners for logging and debugging."""

        @event.listens_for(self._engine, "connect")
        def on_connect(dbapi_connection, connection_record):
            logger.debug("New database connection established")

        @event.listens_for(self._engine, "checkout")
        def on_checkout(dbapi_connection, connection_record, connection_proxy):
            logger.debug("Connection checked out from pool")

    @property
    def engine(self) -> Engine:
        """Get the SQLAlchemy engine."""
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        """Get the session factory."""
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._session_factory

    def get_unit_of_work(self) -> UnitOfWork:
        """
        Get a Unit of Work for explicit transaction management.

        Usage:
            with db_provider.get_unit_of_work() as uow:
                repo = LostDocumentRepository(uow.session)
                document = repo.create(...)
                uow.commit()
        """
        if self._session_factory is None:
            self.init()
        return UnitOfWork(self._session_factory)

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Context manager for session with auto-commit/rollback.

        Usage:
            with db_provider.session_scope() as session:
                session.add(entity)
                # Auto-commits on exit, rollbacks on exception
        """
        if self._session_factory is None:
            self.init()

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create all database tables."""
        if self._engine is None:
            self.init()
        Base.metadata.create_all(self._engine)
        logger.info("Database tables created")

    def close(self) -> None:
        """Close database connections and clean up."""
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._initialized = False


# ============================================
# GLOBAL PROVIDER INSTANCE
# ============================================

# Default database provider instance
_db_provider: Optional[DatabaseSessionProvider] = None


def get_db_provider() -> DatabaseSessionProvider:
    """
    Get the global database provider instance.

    Returns:
        DatabaseSessionProvider instance
    """
    global _db_provider
    if _db_provider is None:
        _db_provider = DatabaseSessionProvider()
    return _db_provider


def init_db(echo: bool = False) -> DatabaseSessionProvider:
    """
    Initialize the global database provider.

    Call this during application startup.

    Args:
        echo: If True, log all SQL statements

    Returns:
        DatabaseSessionProvider instance
    """
    provider = get_db_provider()
    provider.init(echo=echo)
    return provider


def close_db() -> None:
    """
    Close the global database provider.

    Call this during application shutdown.
    """
    global _db_provider
    if _db_provider:
        _db_provider.close()
        _db_provider = None


# ============================================
# PYTEST FIXTURES SUPPORT
# ============================================

def create_test_provider(
    engine: Optional[Engine] = None,
    settings: Optional[DatabaseSettings] = None
) -> DatabaseSessionProvider:
    """
    Create a database provider for testing.

    Args:
        engine: Pre-created engine (e.g., SQLite for unit tests)
        settings: Custom settings for testing

    Returns:
        DatabaseSessionProvider configured for testing
    """
    provider = DatabaseSessionProvider(
        settings=settings,
        engine=engine
    )
    return provider
