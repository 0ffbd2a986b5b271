# customtees/database.py
import logging

from flask import g
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from customtees.config import Config

logger = logging.getLogger(__name__)

IS_SQLITE = Config.DATABASE_URL.startswith("sqlite")

engine_kwargs = {
    "echo": Config.SQL_ECHO,
    "future": True,
    "pool_pre_ping": True,
}
if IS_SQLITE:
    # Flask serves requests on several threads in development.
    engine_kwargs["connect_args"] = {"check_same_thread": False}
else:
    engine_kwargs["pool_size"] = Config.DB_POOL_SIZE
    engine_kwargs["max_overflow"] = Config.DB_MAX_OVERFLOW

engine = create_engine(Config.DATABASE_URL, **engine_kwargs)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)

Base = declarative_base()


def enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """Cart lines, order items and payment rows rely on ON DELETE rules."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


if IS_SQLITE:
    event.listen(engine, "connect", enable_sqlite_foreign_keys)


def init_db() -> None:
    """Create any missing tables for every model registered on ``Base``."""
    # Models register themselves on import.
    import customtees.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables initialized", extra={"tables": sorted(Base.metadata.tables)})


def get_db():
    """One session per request; checkout relies on it spanning the whole request."""
    if "db" not in g:
        g.db = SessionLocal()
    return g.db


def close_db(e=None):
    try:
        db = g.pop("db", None)
    except RuntimeError:
        # Outside of an application context (test teardown)
        return
    if db is None:
        return
    if e is not None:
        # Half-finished checkouts never leak into the next request.
        db.rollback()
        logger.warning("Rolled back request session after %s", type(e).__name__)
    db.close()
