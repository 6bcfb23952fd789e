"""SQLite engine and session factory for the catalog database."""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import URL, Engine
from sqlalchemy.orm import Session, sessionmaker

from .models_sql import Base


LOGGER = logging.getLogger(__name__)

DEFAULT_BUSY_TIMEOUT = 30.0


def _install_sqlite_pragmas(engine: Engine, busy_ms: int) -> None:
    """Run every pooled connection in WAL mode.

    The storefront reads the catalog while a sync run writes it, so readers
    must not block on the writer.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record) -> None:  # pragma: no cover - exercised via engine use
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute(f"PRAGMA busy_timeout = {busy_ms}")
        finally:
            cursor.close()


def get_engine(sqlite_path: str | Path, *, busy_timeout: int | float | None = None) -> Engine:
    """Create an engine for the catalog database at *sqlite_path*.

    The parent directory is created when missing so a fresh ``output.sqlite_path``
    works on the first run.
    """

    timeout_value = float(busy_timeout) if busy_timeout is not None else DEFAULT_BUSY_TIMEOUT
    path = Path(sqlite_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(
        URL.create("sqlite", database=str(path)),
        future=True,
        pool_pre_ping=True,
        connect_args={"check_same_thread": False, "timeout": timeout_value},
    )
    _install_sqlite_pragmas(engine, int(timeout_value * 1000))
    return engine


def make_session(engine: Engine) -> sessionmaker[Session]:
    """Session factory whose loaded rows stay usable after commit."""

    return sessionmaker(engine, expire_on_commit=False, future=True)


def init_db_safe(engine: Engine) -> list[str]:
    """Create the catalog and run tables that do not exist yet.

    Existing tables are never altered. Returns the names of the tables created.
    """

    existing = set(inspect(engine).get_table_names())
    Base.metadata.create_all(engine, checkfirst=True)
    created = [name for name in Base.metadata.tables if name not in existing]
    if created:
        LOGGER.info("Created tables: %s", ", ".join(sorted(created)))
    return created
