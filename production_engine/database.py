# production_engine/database.py

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from .config import settings


def enable_sqlite_savepoints(engine: Engine) -> None:
    """
    pysqlite emits its own BEGIN lazily, which breaks SAVEPOINT handling.
    Take over transaction demarcation so session.begin_nested() works.
    """

    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(url: str, **kwargs) -> Engine:
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    eng = create_engine(url, **kwargs)
    if url.startswith("sqlite"):
        enable_sqlite_savepoints(eng)
    return eng


engine = build_engine(settings.database_url)


def create_db_and_tables(bind: Engine | None = None) -> None:
    # Register every table before create_all
    from . import models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)


def get_session() -> Iterator[Session]:
    with Session(engine) as session:
        yield session


@contextmanager
def unit_of_work(session: Session) -> Iterator[Session]:
    """
    One transaction per service call: commit on success,
    roll back every partial write on any error.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
