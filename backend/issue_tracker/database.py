from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session as SessionBase, declarative_base, sessionmaker

from .config import settings

POSTGRES_PREFIXES = ("postgres://", "postgresql://")


def resolve_engine_url(url: str) -> tuple[str, dict[str, object]]:
    """Return the SQLAlchemy URL and connect args for a configured database URL.

    Plain postgres URLs are pinned to the psycopg 3 driver. File-backed SQLite
    databases get their parent directory created up front.
    """
    if url.startswith("sqlite"):
        db_path = url.replace("sqlite:///", "", 1)
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return url, {"check_same_thread": False}
    for prefix in POSTGRES_PREFIXES:
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):], {}
    return url, {}


engine_url, connect_args = resolve_engine_url(settings.database_url)
engine = create_engine(engine_url, connect_args=connect_args, future=True)


def enable_sqlite_foreign_keys(target: Engine) -> None:
    if target.dialect.name != "sqlite":
        return

    @event.listens_for(target, "connect")
    def _set_pragma(dbapi_connection, connection_record):  # type: ignore[unused-variable]
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


enable_sqlite_foreign_keys(engine)


class TrackerSession(SessionBase):
    """Session that carries issue events waiting for the transaction to commit."""


SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True,
    class_=TrackerSession,
)

Base = declarative_base()


@contextmanager
def session_scope() -> Generator[TrackerSession, None, None]:
    session: TrackerSession = SessionLocal()  # type: ignore[assignment]
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_session() -> Generator[TrackerSession, None, None]:
    with session_scope() as session:
        yield session


def init_db() -> None:
    from . import orm_models  # noqa: F401
    from .broadcasting import setup_broadcast_events

    setup_broadcast_events(TrackerSession)

    Base.metadata.create_all(bind=engine)
