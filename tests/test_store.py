import asyncio
import threading
from datetime import datetime, timezone

import pytest

from catalog_sync.ledger import RunTotals
from catalog_sync.models import ProductSource, RunStatus
from catalog_sync.storage import repo
from catalog_sync.storage.db import get_engine, init_db_safe, make_session
from catalog_sync.storage.models_sql import SyncRun
from catalog_sync.storage.store import SqlCatalogStore, SqlRunRecorder


@pytest.fixture()
def session_factory(tmp_path):
    engine = get_engine(tmp_path / "catalog.sqlite")
    init_db_safe(engine)
    try:
        yield make_session(engine)
    finally:
        engine.dispose()


def _fields(price: str = "100.00") -> dict:
    return {
        "name": "Wool Rug",
        "price": price,
        "sizes": ["80 x 150 cm"],
        "default_size": "80 x 150 cm",
        "images": [],
        "in_stock": True,
        "source": ProductSource.XML_FEED,
        "source_meta": {"schema_version": 1, "feed": {"product_id": "1"}},
    }


def test_session_work_runs_off_the_event_loop(session_factory, monkeypatch) -> None:
    store = SqlCatalogStore(session_factory)
    loop_thread = threading.get_ident()
    calls: list[bool] = []
    original = repo.get_product

    def spy(session, code):
        calls.append(threading.get_ident() == loop_thread)
        return original(session, code)

    monkeypatch.setattr(repo, "get_product", spy)

    assert asyncio.run(store.find_by_code("missing")) is None
    assert calls == [False]


def test_catalog_store_round_trip(session_factory) -> None:
    store = SqlCatalogStore(session_factory)

    async def scenario():
        await store.upsert("1", _fields())
        await store.upsert("2", _fields("80.00"))
        hidden = await store.bulk_hide({"1"})
        return hidden, await store.find_by_code("1"), await store.find_by_code("2")

    hidden, kept, gone = asyncio.run(scenario())

    assert hidden == 1
    assert kept.price == "100.00"
    assert gone.price == ""
    assert gone.sizes == []


def test_run_recorder_lifecycle(session_factory) -> None:
    recorder = SqlRunRecorder(session_factory)
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)

    async def scenario():
        run_id = await recorder.start(started_at=now, summary="Sync started.", report_paths={})
        await recorder.checkpoint(run_id, RunTotals(products_parsed=25), 1)
        await recorder.finish(
            run_id,
            status=RunStatus.SUCCESS,
            summary="done",
            hint=None,
            finished_at=now,
            duration_ms=1500,
            totals=RunTotals(products_parsed=30, created=30),
            price_changed_count=2,
        )
        return run_id

    run_id = asyncio.run(scenario())

    with session_factory() as session:
        run = session.get(SyncRun, run_id)
    assert run.status == "SUCCESS"
    assert run.products_parsed == 30
    assert run.created == 30
    assert run.price_changed_count == 2
    assert run.duration_ms == 1500
