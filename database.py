from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings


MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def build_engine(database_url: str) -> Engine:
    """Engine for the ledger database.

    In-memory SQLite shares one connection so the scheduler thread and
    request handlers see the same ledger.
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url)

    kwargs: dict[str, object] = {"connect_args": {"check_same_thread": False}}
    if database_url in MEMORY_URLS:
        kwargs["poolclass"] = StaticPool
    eng = create_engine(database_url, **kwargs)
    event.listen(eng, "connect", _sqlite_pragmas)
    return eng


def _sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    # background reconcile writes can overlap a request's write
    cursor.execute("PRAGMA busy_timeout=5000;")
    cursor.close()


def make_sessionmaker(eng: Engine) -> sessionmaker:
    return sessionmaker(bind=eng, autoflush=False, expire_on_commit=False)


engine = build_engine(get_settings().database_url)
SessionLocal = make_sessionmaker(engine)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope(
    factory: Callable[[], Session] = SessionLocal,
) -> Iterator[Session]:
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
