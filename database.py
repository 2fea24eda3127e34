from contextlib import contextmanager
from typing import Any, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


def create_db_engine(database_url: str, **engine_kwargs: Any) -> Engine:
    is_sqlite = database_url.startswith("sqlite")
    connect_args: dict[str, object] = {}
    if is_sqlite:
        connect_args["check_same_thread"] = False
    eng = create_engine(database_url, connect_args=connect_args, **engine_kwargs)
    if is_sqlite:
        event.listen(eng, "connect", enable_sqlite_pragmas)
    return eng


def enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    # Instance rows rely on ON DELETE CASCADE from their expense.
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def make_sessionmaker(bind: Engine) -> sessionmaker:
    # Services commit mid-request and keep returning the same objects.
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = create_db_engine(get_settings().database_url)
SessionLocal = make_sessionmaker(engine)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    session: Session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
