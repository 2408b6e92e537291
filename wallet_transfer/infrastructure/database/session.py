"""Database engine and session dependency"""

from functools import lru_cache
from typing import Iterator
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from wallet_transfer.config import settings


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    """Engine is built on first use so importing the app never needs a live driver"""
    if settings.database_url.startswith("sqlite"):
        return create_engine(settings.database_url, connect_args={"check_same_thread": False})
    return create_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=10,
        pool_recycle=3600,
    )


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def get_db() -> Iterator[Session]:
    """Dependency injection for database sessions"""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()
