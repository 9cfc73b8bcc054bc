"""
Database Session Management
===========================

Engine and session handling with SQLAlchemy. SQLite for development and
tests, any SQLAlchemy URL (PostgreSQL) in production.
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

from ..config import Settings, get_settings
from .models import Base

logger = logging.getLogger(__name__)


def _create_engine_for_url(database_url: str, echo: bool = False):
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=echo,
        )

        # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        echo=echo,
    )


class Database:
    """
    Engine + session factory for one database URL.

    Usage:
        db = Database("sqlite:///./accidents.db")
        db.init_db()
        with db.session() as session:
            session.query(AccidentRow).all()
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.engine = _create_engine_for_url(database_url, echo=echo)
        self._sessionmaker = sessionmaker(bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "Database":
        settings = settings or get_settings()
        return cls(settings.database_url, echo=settings.sql_echo)

    def init_db(self):
        """Initialize database tables"""
        Base.metadata.create_all(bind=self.engine)
        logger.info(f"Database initialized: {self.engine.url.render_as_string(hide_password=True)}")

    def drop_db(self):
        """Drop all database tables (use with caution!)"""
        Base.metadata.drop_all(bind=self.engine)

    def dispose(self):
        self.engine.dispose()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Context manager for database session.

        Commits on success, rolls back and re-raises on error.
        """
        db = self._sessionmaker()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
