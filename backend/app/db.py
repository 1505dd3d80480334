from collections.abc import Generator
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import URL, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .core.config import settings

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def _prepare_sqlite_file(url: URL) -> None:
    if url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


def _engine_options(url: URL, *, echo: bool) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": echo, "future": True, "pool_pre_ping": True}
    backend = url.get_backend_name()

    if backend == "sqlite":
        # The API and the CLI scripts may write to the same file at once.
        options["connect_args"] = {
            "check_same_thread": False,
            "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
        }
        return options

    options["pool_recycle"] = 300
    if backend.startswith("postgresql") and url.get_driver_name() == "psycopg":
        # Transaction poolers reject PREPARE; keep psycopg on plain statements.
        options["connect_args"] = {"keepalives": 1, "prepare_threshold": None}
    return options


def build_db_components(database_url: str, *, echo: bool = False) -> tuple[Engine, sessionmaker[Session]]:
    """Create an engine plus a session factory bound to it."""

    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        _prepare_sqlite_file(url)
    db_engine = create_engine(url, **_engine_options(url, echo=echo))
    # Autoflush lets one import see the rows it added when a key repeats.
    factory = sessionmaker(bind=db_engine, autoflush=True, autocommit=False, future=True)
    return db_engine, factory


engine, SessionLocal = build_db_components(settings.resolved_database_url, echo=settings.debug)
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def init_db(bind: Engine | None = None) -> None:
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
