import os
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

from . import config

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./salesdesk.db")


def make_engine(url: str, timeout: float | None = None):
    """Build an engine whose connections give up after `timeout` seconds."""
    timeout = timeout if timeout is not None else config.get().store_timeout
    if url.startswith("sqlite"):
        # check_same_thread=False for multithreading in FastAPI
        engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": timeout}, future=True)

        # Ensure SQLite enforces foreign keys
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine
    return create_engine(url, pool_timeout=timeout, pool_pre_ping=True, future=True)


engine = make_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()
