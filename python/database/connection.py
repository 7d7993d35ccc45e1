"""
Datastore connection handling for the Shelter Matching Service

Every component receives a DatabaseSessionProvider when it is built; there
is no process-wide client. Production providers build a PostgreSQL engine
from environment settings, tests hand in an in-memory SQLite engine.

Usage:
    provider = DatabaseSessionProvider()
    finder = MatchCandidateFinder(provider)

    with provider.session_scope() as session:
        PersonRepository(session).create({...})
"""

import os
import logging
from typing import Generator, Optional
from contextlib import contextmanager
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

from database.models import Base

logger = logging.getLogger(__name__)


@dataclass
class DatabaseSettings:
    """Connection settings, normally read from DATABASE_URL or DB_* variables."""
    host: str = "localhost"
    port: int = 5432
    database: str = "shelterlink"
    user: str = "shelterlink"
    password: str = "shelterlink"
    url: Optional[str] = None
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    echo: bool = False

    @classmethod
    def from_env(cls) -> 'DatabaseSettings':
        """DATABASE_URL takes precedence over the individual DB_* variables."""
        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "shelterlink"),
            user=os.getenv("DB_USER", "shelterlink"),
            password=os.getenv("DB_PASSWORD", "shelterlink"),
            url=os.getenv("DATABASE_URL") or None,
            pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
            pool_recycle=int(os.getenv("DB_POOL_RECYCLE", "1800")),
            echo=os.getenv("DB_ECHO", "false").lower() == "true"
        )

    def get_url(self) -> str:
        if self.url:
            return self.url
        return f"postgresql+psycopg2://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"

    def pool_options(self) -> dict:
        """Pool keyword arguments for create_engine; SQLite keeps its defaults."""
        if self.get_url().startswith("sqlite"):
            return {}
        return {
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
            "pool_recycle": self.pool_recycle,
            "pool_pre_ping": True,
        }


# Only connection-level failures (refused, server gone away) are retried
db_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(OperationalError),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True
)


def _on_connect(dbapi_connection, connection_record):
    logger.debug("New database connection established")


def _on_checkout(dbapi_connection, connection_record, connection_proxy):
    logger.debug("Connection checked out from pool")


class DatabaseSessionProvider:
    """
    Hands out transactional sessions to the components it is injected into.

    An engine passed in by the caller is used as is and survives close();
    an engine built from settings is discarded on close() and rebuilt by
    the next init().
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        engine: Optional[Engine] = None
    ):
        self._settings = settings or DatabaseSettings.from_env()
        self._engine = engine
        self._owns_engine = engine is None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def initialized(self) -> bool:
        return self._session_factory is not None

    def init(self) -> None:
        """Build the engine (if needed) and the session factory. Idempotent."""
        if self.initialized:
            return

        if self._engine is None:
            self._engine = self._create_engine_with_retry()

        if not event.contains(self._engine, "connect", _on_connect):
            event.listen(self._engine, "connect", _on_connect)
            event.listen(self._engine, "checkout", _on_checkout)

        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False
        )
        logger.info("Database session provider initialized")

    @db_retry
    def _create_engine_with_retry(self) -> Engine:
        engine = create_engine(
            self._settings.get_url(),
            echo=self._settings.echo,
            **self._settings.pool_options()
        )
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
        Session that commits on success and rolls back on any exception.

        The exception is re-raised after the rollback.
        """
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
        self.init()
        Base.metadata.create_all(self._engine)
        logger.info("Database tables created")

    def close(self) -> None:
        """Release pooled connections; a later init() starts afresh."""
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Database engine disposed")
            if self._owns_engine:
                self._engine = None
        self._session_factory = None


def create_test_provider(
    engine: Optional[Engine] = None,
    settings: Optional[DatabaseSettings] = None
) -> DatabaseSessionProvider:
    """Initialized provider around a test engine (in-memory SQLite by default)."""
    provider = DatabaseSessionProvider(
        settings=settings or DatabaseSettings(url="sqlite://"),
        engine=engine
    )
    provider.init()
    return provider
