# api/oddsraiders/db.py
import logging
from urllib.parse import urlparse

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from .settings import settings

logger = logging.getLogger("oddsraiders.db")

# Prefer a full DATABASE_URL (hosting platforms inject this). Fallback to individual parts for local dev.
DATABASE_URL = settings.DATABASE_URL

if not DATABASE_URL:
    logger.info(
        "DB config (local fallback) -> user=%s host=%s port=%s db=%s",
        settings.PGUSER, settings.PGHOST, settings.PGPORT, settings.PGDATABASE,
    )
    DATABASE_URL = (
        f"postgresql://{settings.PGUSER}:{settings.PGPASSWORD}"
        f"@{settings.PGHOST}:{settings.PGPORT}/{settings.PGDATABASE}"
    )


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # one shared connection, otherwise every session sees its own empty db
        if ":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:"):
            kwargs["poolclass"] = StaticPool
        return kwargs

    # If it's a remote DB (not localhost), enforce SSL
    parsed = urlparse(url)
    is_local = parsed.hostname in {"localhost", "127.0.0.1"} or parsed.hostname is None
    kwargs = {"pool_pre_ping": True}
    if not is_local:
        # psycopg2 uses sslmode
        kwargs["connect_args"] = {"sslmode": "require"}
    return kwargs


engine = create_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))

if engine.dialect.name == "sqlite":
    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; take over transaction control
    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN")

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
