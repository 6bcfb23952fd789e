"""Async store interfaces consumed by the engine, with SQLAlchemy implementations."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy.orm import Session, sessionmaker

from catalog_sync.ledger import RunTotals
from catalog_sync.logging_config import get_logger
from catalog_sync.models import ProductSource, RunStatus, StoredProduct

from . import repo

LOGGER = get_logger(__name__)


class CatalogStore(Protocol):
    async def find_by_code(self, code: str) -> StoredProduct | None: ...

    async def upsert(self, code: str, fields: dict[str, Any]) -> None: ...

    async def bulk_hide(self, codes_not_in: set[str]) -> int: ...


class RunRecorder(Protocol):
    async def start(
        self,
        *,
        started_at: datetime,
        summary: str,
        report_paths: dict[str, str],
        run_id: int | None = None,
    ) -> int | None: ...

    async def checkpoint(self, run_id: int | None, totals: RunTotals, price_changed_count: int) -> None: ...

    async def finish(
        self,
        run_id: int | None,
        *,
        status: RunStatus,
        summary: str,
        hint: str | None,
        finished_at: datetime,
        duration_ms: int,
        totals: RunTotals,
        price_changed_count: int,
    ) -> None: ...


class SqlCatalogStore:
    """Catalog rows in the ``products`` table; one short session per call.

    Session work runs in a worker thread so the feed producer keeps parsing
    while a lookup or write is in flight.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        source: ProductSource = ProductSource.XML_FEED,
    ) -> None:
        self._session_factory = session_factory
        self._source = source

    def _find_by_code(self, code: str) -> StoredProduct | None:
        with self._session_factory() as session:
            row = repo.get_product(session, code)
            return repo.to_stored_product(row) if row is not None else None

    def _upsert(self, code: str, fields: dict[str, Any]) -> None:
        with self._session_factory() as session:
            repo.upsert_product(session, code, fields)
            session.commit()

    def _bulk_hide(self, codes_not_in: set[str]) -> int:
        with self._session_factory() as session:
            hidden = repo.hide_missing_products(session, codes_not_in, source=self._source)
            session.commit()
            return hidden

    async def find_by_code(self, code: str) -> StoredProduct | None:
        return await asyncio.to_thread(self._find_by_code, code)

    async def upsert(self, code: str, fields: dict[str, Any]) -> None:
        await asyncio.to_thread(self._upsert, code, fields)

    async def bulk_hide(self, codes_not_in: set[str]) -> int:
        return await asyncio.to_thread(self._bulk_hide, set(codes_not_in))


class SqlRunRecorder:
    """Persists the run lifecycle into the ``sync_runs`` table."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def _start(
        self,
        started_at: datetime,
        summary: str,
        report_paths: dict[str, str],
        run_id: int | None,
    ) -> int:
        with self._session_factory() as session:
            run = None
            if run_id:
                run = repo.restart_run(
                    session, run_id, started_at=started_at, summary=summary, report_paths=report_paths
                )
                if run is None:
                    LOGGER.warning("Run id %s not found; creating a new run record", run_id)
            if run is None:
                run = repo.create_run(
                    session, started_at=started_at, summary=summary, report_paths=report_paths
                )
            session.commit()
            return run.id

    def _update(self, run_id: int, totals: dict[str, int], fields: dict[str, Any]) -> None:
        with self._session_factory() as session:
            repo.update_run(session, run_id, totals=totals, **fields)
            session.commit()

    async def start(
        self,
        *,
        started_at: datetime,
        summary: str,
        report_paths: dict[str, str],
        run_id: int | None = None,
    ) -> int | None:
        return await asyncio.to_thread(self._start, started_at, summary, report_paths, run_id)

    async def checkpoint(self, run_id: int | None, totals: RunTotals, price_changed_count: int) -> None:
        if not run_id:
            return
        await asyncio.to_thread(
            self._update, run_id, totals.as_dict(), {"price_changed_count": price_changed_count}
        )

    async def finish(
        self,
        run_id: int | None,
        *,
        status: RunStatus,
        summary: str,
        hint: str | None,
        finished_at: datetime,
        duration_ms: int,
        totals: RunTotals,
        price_changed_count: int,
    ) -> None:
        if not run_id:
            return
        await asyncio.to_thread(
            self._update,
            run_id,
            totals.as_dict(),
            {
                "status": status,
                "summary": summary,
                "hint": hint,
                "finished_at": finished_at,
                "duration_ms": duration_ms,
                "price_changed_count": price_changed_count,
            },
        )


__all__ = ["CatalogStore", "RunRecorder", "SqlCatalogStore", "SqlRunRecorder"]
