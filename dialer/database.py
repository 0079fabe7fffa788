"""
Engine, session factory and declarative base.

SQLite is enough for local runs and tests. Production points DATABASE_URL at
PostgreSQL, where the row locks taken by the outcome processor and the
scheduling lease actually block.
"""

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from dialer.config import config


def create_db_engine(url: str, echo: bool = False) -> Engine:
    if url.startswith("sqlite"):
        # Sessions are opened from Celery worker threads and the FastAPI threadpool.
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        echo=echo,
    )


engine = create_db_engine(config.DATABASE_URL, echo=config.DEBUG)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a session that is closed after the request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Create every table that does not exist yet."""
    from dialer import db_models  # noqa: F401  (registers the tables)

    Base.metadata.create_all(bind=bind or engine)
