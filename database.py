"""
Database access for the storefront.

One SQLAlchemy engine per process and one session per request. SQLite is used
for local development and tests; PostgreSQL in production (DATABASE_URL).
"""
import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

import config

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def build_engine(url: str) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, pool_size=20, pool_timeout=2, pool_pre_ping=True)

    engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": 15})

    # pysqlite's own BEGIN handling is replaced so that every transaction takes
    # the write lock up front; concurrent writers then queue instead of
    # failing on lock upgrade.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


engine = build_engine(config.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine = None) -> None:
    # Registers the mapped tables on Base.metadata
    import models  # noqa: F401

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    logger.info("Database schema verified on %s", bind.url.render_as_string(hide_password=True))


def ping(session) -> bool:
    session.execute(text("SELECT 1"))
    return True
