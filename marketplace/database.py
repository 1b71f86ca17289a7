"""Database configuration and session management."""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from marketplace.config import Settings

logger = logging.getLogger(__name__)

Base: Any = declarative_base()


class Database:
    """Owns the engine and its bounded connection pool.

    Built once by the application lifespan and handed to request handlers
    through dependencies. A request that finds every pooled connection busy
    waits up to ``pool_timeout`` seconds before failing.
    """

    def __init__(
        self,
        url: str,
        pool_size: int = 5,
        max_overflow: int = 5,
        pool_timeout: float = 30.0,
    ) -> None:
        self.url = url
        if url.startswith("sqlite"):
            self.engine = create_engine(url, connect_args={"check_same_thread": False})
        else:
            self.engine = create_engine(
                url,
                pool_pre_ping=True,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
            )
        self.session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
        )

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Check a connection out of the pool for the duration of the block."""
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.warning(f"Database ping failed: {e}")
            return False
        return True

    def create_all(self) -> None:
        """Create all tables. Deployments use Alembic migrations instead."""
        # Import all models here so they are registered with Base.metadata
        from marketplace import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        """Close every pooled connection."""
        self.engine.dispose()
