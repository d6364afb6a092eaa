from __future__ import annotations
import sqlite3
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from .config import get_settings

Base = declarative_base()

_DB_URL = None
engine = None
SessionLocal = None


@event.listens_for(Engine, "connect")
def _sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def make_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def _init_engine(url: str):
    global engine, SessionLocal, _DB_URL
    engine = make_engine(url)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    _DB_URL = url


def _ensure_engine_current():
    url = get_settings().database_url
    if _DB_URL != url:
        if engine is not None:
            engine.dispose()
        _init_engine(url)


_ensure_engine_current()


def open_session() -> Session:
    _ensure_engine_current()
    return SessionLocal()


def get_db():
    db = open_session()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind=None) -> None:
    if bind is None:
        _ensure_engine_current()
        bind = engine
    Base.metadata.create_all(bind=bind)
