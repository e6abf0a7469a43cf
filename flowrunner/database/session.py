"""Database session."""

from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from flowrunner.config import settings
from flowrunner.database.base import Base


def create_db_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create an engine for the execution store.

    SQLite doesn't support connection pooling parameters; its database
    directory is created on demand.
    """
    url = str(database_url or settings.DATABASE_URL)

    if url.startswith("sqlite"):
        db_path = url.split("///", 1)[-1]
        if db_path and db_path != ":memory:" and "///" in url:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(
            url,
            connect_args={"check_same_thread": False},  # SQLite specific
            echo=settings.LOG_LEVEL == "DEBUG",
        )

    # PostgreSQL and other databases with connection pooling
    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,  # Verify connections before using
        echo=settings.LOG_LEVEL == "DEBUG",
    )


engine = create_db_engine()

# Create SessionLocal class
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Optional[Engine] = None) -> None:
    """Create the execution store tables."""
    import flowrunner.database.models  # noqa: F401  (register models on Base)
    Base.metadata.create_all(bind=bind or engine)


def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
