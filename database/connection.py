"""
Database Connection Management for the Watchlist Screening System

The screening engine itself never touches the database. This module is
only used when the API or the loader runs with persistent storage:

- DatabaseSettings resolves the target from DATABASE_URL, the DB_*
  variables and the database section of config.yaml, in that order
- DatabaseSessionProvider owns the engine and hands out transactional
  session scopes to the repositories and the SQL match store
- Connecting is retried with tenacity while the server is still coming up

SQLite (file or in-memory) and PostgreSQL are both supported.
"""

import os
import logging
from typing import Any, Dict, Generator, Optional
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import create_engine, event, text, Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from sqlalchemy.exc import SQLAlchemyError, OperationalError
from tenacity import (
    Retrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from config_manager import ConfigManager, get_config
from database.models import Base

logger = logging.getLogger(__name__)

_MEMORY_SQLITE_URLS = ("sqlite://", "sqlite+pysqlite://")


# ============================================
# CONFIGURATION
# ============================================

@dataclass
class DatabaseSettings:
    """Where the screening database lives and how to pool connections to it."""
    host: str = "localhost"
    port: int = 5432
    database: str = "watchlist_screening"
    user: str = "watchlist_user"
    password: str = "watchlist_password"
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    connect_attempts: int = 3
    echo: bool = False
    url: Optional[str] = None

    @classmethod
    def from_env(cls, config: Optional[ConfigManager] = None) -> 'DatabaseSettings':
        """Create settings from environment variables, falling back to config.yaml."""
        db = (config or get_config()).database
        return cls(
            host=os.getenv("DB_HOST", db.host),
            port=int(os.getenv("DB_PORT", str(db.port))),
            database=os.getenv("DB_NAME", db.name),
            user=os.getenv("DB_USER", db.user),
            password=os.getenv("DB_PASSWORD", db.password),
            pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
            pool_recycle=int(os.getenv("DB_POOL_RECYCLE", "1800")),
            connect_attempts=int(os.getenv("DB_CONNECT_ATTEMPTS", "3")),
            echo=os.getenv("DB_ECHO", "false").lower() == "true",
            url=os.getenv("DATABASE_URL") or None
        )

    def get_url(self) -> str:
        if self.url:
            return self.url
        return f"postgresql+psycopg2://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"

    @property
    def is_sqlite(self) -> bool:
        return self.get_url().startswith("sqlite")

    def engine_options(self) -> Dict[str, Any]:
        """Keyword arguments for create_engine matching the URL's backend."""
        url = self.get_url()
        if self.is_sqlite:
            # The API screens in a worker thread and reviews on the event loop thread
            options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in url or url in _MEMORY_SQLITE_URLS:
                # One shared connection, otherwise each checkout sees an empty database
                options["poolclass"] = StaticPool
            return options
        return {
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
            "pool_recycle": self.pool_recycle,
            "pool_pre_ping": True,
        }


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    """Alias and match rows rely on ON DELETE CASCADE, which SQLite leaves off."""

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# ============================================
# SESSION PROVIDER
# ============================================

class DatabaseSessionProvider:
    """
    Owns the engine for one database and opens sessions on it.

    Usage:
        provider = DatabaseSessionProvider()
        with provider.session_scope() as session:
            WatchlistRepository(session).upsert_entries(entries)
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        engine: Optional[Engine] = None
    ):
        """
        Args:
            settings: Connection settings (environment and config.yaml when omitted)
            engine: Ready-made engine, used as is
        """
        self._settings = settings or DatabaseSettings.from_env()
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = None

    @property
    def initialized(self) -> bool:
        return self._session_factory is not None

    def init(self, echo: Optional[bool] = None) -> None:
        """Connect (with retries) and prepare the session factory. Idempotent."""
        if self.initialized:
            return

        if echo is not None:
            self._settings.echo = echo

        if self._engine is None:
            self._engine = self._connect()

        self._session_factory = sessionmaker(
            bind=self._engine,
            autoflush=False,
            expire_on_commit=False
        )
        logger.info("✓ Database ready (%s)", self._engine.dialect.name)

    def _connect(self) -> Engine:
        retrying = Retrying(
            stop=stop_after_attempt(self._settings.connect_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(OperationalError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )
        for attempt in retrying:
            with attempt:
                engine = create_engine(
                    self._settings.get_url(),
                    echo=self._settings.echo,
                    **self._settings.engine_options()
                )
                if self._settings.is_sqlite:
                    _enable_sqlite_foreign_keys(engine)
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
        return engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._engine

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        One transaction: committed when the block exits normally,
        rolled back when it raises.
        """
        if not self.initialized:
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
        """Create any missing tables (deployments use the alembic migrations)."""
        Base.metadata.create_all(self._engine or self._connect_now())
        logger.info("Database tables created")

    def drop_tables(self) -> None:
        Base.metadata.drop_all(self._engine or self._connect_now())
        logger.warning("Database tables dropped")

    def _connect_now(self) -> Engine:
        self.init()
        return self.engine

    def health_check(self) -> bool:
        try:
            with self.session_scope() as session:
                session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._session_factory = None


# ============================================
# PROCESS-WIDE PROVIDER
# ============================================

_db_provider: Optional[DatabaseSessionProvider] = None


def get_db_provider() -> DatabaseSessionProvider:
    global _db_provider
    if _db_provider is None:
        _db_provider = DatabaseSessionProvider()
    return _db_provider


def init_db(echo: bool = False) -> DatabaseSessionProvider:
    """Initialize the process-wide provider (API startup, loader)."""
    provider = get_db_provider()
    provider.init(echo=echo)
    return provider


def close_db() -> None:
    global _db_provider
    if _db_provider is not None:
        _db_provider.close()
        _db_provider = None


def create_test_provider(
    engine: Optional[Engine] = None,
    settings: Optional[DatabaseSettings] = None
) -> DatabaseSessionProvider:
    """Provider over a given engine, e.g. in-memory SQLite in unit tests."""
    return DatabaseSessionProvider(settings=settings, engine=engine)
