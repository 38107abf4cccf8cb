from pathlib import Path
from typing import Any

from sqlalchemy import Connection, Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from db.models import Base


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """SQLite engine whose transactions take the write lock up front.

    pysqlite's implicit BEGIN is disabled and every transaction starts with
    BEGIN IMMEDIATE, so two writers never both hold a read lock and then fail
    to upgrade it.
    """
    engine = create_engine(url, echo=echo, connect_args={"check_same_thread": False})

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn: Connection) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def init_db(echo: bool = False, *, db_file: str | Path, reset: bool = False) -> sessionmaker[Session]:
    path = Path(db_file)
    if reset and path.exists():
        path.unlink()
    path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_db_engine(f"sqlite:///{path}", echo=echo)

    Base.metadata.create_all(engine)
    return sessionmaker(engine)
