from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool

from core.config import settings


class Base(DeclarativeBase):
    pass


def build_engine(url: str, echo: bool = False):
    """Create an engine configured for the target database."""
    if url.startswith("sqlite"):
        # For SQLite, use StaticPool for in-memory databases and wait on locked writers
        sqlite_engine = create_engine(
            url,
            echo=echo,
            future=True,
            connect_args={"check_same_thread": False, "timeout": settings.SQLITE_BUSY_TIMEOUT},
            poolclass=StaticPool if ":memory:" in url else None,
        )

        # Enable foreign key constraints for SQLite
        @event.listens_for(sqlite_engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return sqlite_engine

    # For PostgreSQL and other databases
    return create_engine(url, echo=echo, future=True, pool_pre_ping=True)


engine = build_engine(settings.DATABASE_URL, echo=settings.SQLALCHEMY_ECHO)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def db_session() -> Generator:
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
