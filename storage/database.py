"""
Storage - Database.

============================================================
RESPONSIBILITY
============================================================
Manages database connections and sessions.

- Builds the SQLAlchemy engine from environment configuration
- Provides the session factory used by every job
- Creates the schema on demand

============================================================
DESIGN PRINCIPLES
============================================================
- One session per job, never shared across concurrent jobs
- Explicit transaction management
- SQLite for tests and local runs, PostgreSQL in production

============================================================
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generator, Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from storage.models import Base


logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///deals.db"


@dataclass
class DatabaseConfig:
    """Database connection settings."""

    url: str = DEFAULT_DATABASE_URL
    """SQLAlchemy URL."""

    echo: bool = False
    """Log SQL statements."""

    pool_size: int = 5
    """Connections kept in the pool (ignored for SQLite)."""

    max_overflow: int = 10
    """Connections allowed beyond pool_size (ignored for SQLite)."""

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Read DATABASE_URL_SYNC, then DATABASE_URL, falling back to a local SQLite file."""
        load_dotenv()
        url = os.getenv("DATABASE_URL_SYNC") or os.getenv("DATABASE_URL")
        if url and url.startswith("postgresql+asyncpg"):
            # Jobs use sync sessions
            url = url.replace("postgresql+asyncpg", "postgresql")
        if not url:
            url = DEFAULT_DATABASE_URL
            logger.warning(f"DATABASE_URL not set, using default: {url}")
        return cls(
            url=url,
            echo=os.getenv("DATABASE_ECHO", "false").lower() == "true",
            pool_size=int(os.getenv("DATABASE_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DATABASE_MAX_OVERFLOW", "10")),
        )


class Database:
    """
    Engine plus session factory.

    Usage:
        db = Database(DatabaseConfig.from_env())
        db.create_all()
        with db.session_scope() as session:
            ...
    """

    def __init__(self, config: Optional[DatabaseConfig] = None) -> None:
        self._config = config or DatabaseConfig()
        self._engine = self._create_engine(self._config)
        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
        logger.info(f"Database engine created for: {self._config.url.split('@')[-1]}")

    @property
    def shares_one_connection(self) -> bool:
        """True for in-memory SQLite, where every session uses the same connection."""
        return isinstance(self._engine.pool, StaticPool)

    @staticmethod
    def _create_engine(config: DatabaseConfig) -> Engine:
        if config.url.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in config.url or config.url in ("sqlite://", "sqlite:///"):
                # One shared connection so every session sees the same in-memory DB
                kwargs["poolclass"] = StaticPool
            engine = create_engine(config.url, echo=config.echo, **kwargs)

            @event.listens_for(engine, "connect")
            def on_connect(dbapi_conn, connection_record):
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

            return engine

        return create_engine(
            config.url,
            echo=config.echo,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_pre_ping=True,
        )

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(self._engine)

    def new_session(self) -> Session:
        return self._session_factory()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Session whose transactions the caller manages."""
        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Session that commits on success and rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self._engine.dispose()
