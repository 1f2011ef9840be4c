from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator
import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import Settings, settings

logger = logging.getLogger(__name__)


def build_engine(config: Settings) -> Engine:
    database_url = config.database_url
    if not database_url:
        logger.error("database_url_missing")
        raise RuntimeError(
            "DATABASE_URL is not configured. Set DATABASE_URL to a PostgreSQL DSN before startup."
        )
    if database_url.startswith("sqlite"):
        # In-memory SQLite must share one connection across threads.
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            return create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=max(1, config.database_pool_size),
        max_overflow=max(0, config.database_max_overflow),
        pool_timeout=max(1, config.database_pool_timeout_seconds),
        pool_recycle=max(1, config.database_pool_recycle_seconds),
    )


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return build_engine(settings)


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker[Session]:
    return sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Commits on success, rolls back on any error."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def get_session() -> Iterator[Session]:
    with session_scope(get_session_factory()) as session:
        yield session
