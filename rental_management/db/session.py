import os

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from db.base import Base


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(db_url: str) -> Engine:
    connect_args = {}
    is_sqlite = db_url.startswith("sqlite")
    if is_sqlite:
        lock_timeout = float(os.environ.get("RENTAL_DB_LOCK_TIMEOUT_SECONDS") or "15")
        connect_args = {"timeout": lock_timeout, "check_same_thread": False}

    engine = create_engine(
        db_url,
        pool_pre_ping=True,
        future=True,
        connect_args=connect_args,
    )
    if is_sqlite:
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def create_tables(engine: Engine) -> None:
    # Importing registers every mapped class on Base.metadata.
    import models.rental_models  # noqa: F401

    Base.metadata.create_all(engine)


RENTAL_DB_URL = _require_env("RENTAL_DB_URL")

engine_rental = build_engine(RENTAL_DB_URL)

SessionLocalRental = build_session_factory(engine_rental)
