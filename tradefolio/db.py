from __future__ import annotations

from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from tradefolio.config import settings

SQLITE_JOURNAL_MODES = {"DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"}


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""


def _sqlite_pragmas() -> list[str]:
    journal_mode = settings.sqlite_journal_mode.strip().upper()
    if journal_mode not in SQLITE_JOURNAL_MODES:
        journal_mode = "WAL"
    return [
        f"PRAGMA busy_timeout={max(settings.sqlite_busy_timeout_ms, 0)}",
        f"PRAGMA journal_mode={journal_mode}",
        "PRAGMA synchronous=NORMAL",
    ]


def build_engine(database_url: str) -> Engine:
    """Create the engine; SQLite files get a busy timeout and WAL journaling."""
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True, future=True)

    new_engine = create_engine(
        database_url,
        connect_args={
            "check_same_thread": False,
            "timeout": max(settings.sqlite_busy_timeout_ms, 0) / 1000.0,
        },
        future=True,
    )

    @event.listens_for(new_engine, "connect")
    def _apply_pragmas(dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        for pragma in _sqlite_pragmas():
            cursor.execute(pragma)
        cursor.close()

    return new_engine


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)


def init_db() -> None:
    """Create all tables that do not exist yet."""
    from tradefolio import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a request-scoped SQLAlchemy session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(factory: sessionmaker | None = None) -> Iterator[Session]:
    """Session that commits on success and rolls back on any error."""
    db = (factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def dialect_insert(db: Session, table):
    """INSERT construct with ON CONFLICT support for the bound dialect."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upserts are not supported on {dialect}")
    return insert(table)
