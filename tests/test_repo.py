from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from catalog_sync.models import ProductSource, RunStatus
from catalog_sync.storage import repo
from catalog_sync.storage.db import get_engine, init_db_safe
from catalog_sync.storage.models_sql import CatalogProduct, SyncRun


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite:///:memory:", future=True)
    init_db_safe(engine)
    Session = sessionmaker(engine, future=True)
    try:
        with Session() as session:
            yield session
    finally:
        engine.dispose()


def _fields(price: str = "100.00", **overrides) -> dict:
    fields = {
        "name": "Wool Rug",
        "price": price,
        "sizes": ["80 x 150 cm"],
        "default_size": "80 x 150 cm",
        "images": ["https://cdn.example.com/1.jpg"],
        "in_stock": True,
        "source": ProductSource.XML_FEED,
        "source_meta": {"schema_version": 1, "feed": {"product_id": "1"}},
    }
    fields.update(overrides)
    return fields


def test_upsert_product_inserts_then_updates(db_session) -> None:
    repo.upsert_product(db_session, "1", _fields())
    db_session.commit()
    created = repo.get_product(db_session, "1")
    assert created is not None
    assert created.source == "xml_feed"
    first_updated = created.updated_at

    repo.upsert_product(db_session, "1", _fields(price="120.00"))
    db_session.commit()

    rows = db_session.execute(select(CatalogProduct)).scalars().all()
    assert len(rows) == 1
    assert rows[0].price == "120.00"
    assert rows[0].updated_at >= first_updated


def test_upsert_product_rejects_unknown_fields(db_session) -> None:
    with pytest.raises(ValueError):
        repo.upsert_product(db_session, "1", {"colour": "red"})


def test_to_stored_product_validates_meta(db_session) -> None:
    repo.upsert_product(db_session, "1", _fields())
    repo.upsert_product(
        db_session,
        "2",
        _fields(source_meta={"schema_version": 99, "translation": {"content_hash": "x"}}),
    )
    db_session.commit()

    good = repo.to_stored_product(repo.get_product(db_session, "1"))
    bad = repo.to_stored_product(repo.get_product(db_session, "2"))

    assert good.price == "100.00"
    assert good.source is ProductSource.XML_FEED
    assert good.source_meta.feed.product_id == "1"
    assert bad.source_meta.translation.content_hash is None


def test_hide_missing_products_only_touches_feed_rows(db_session) -> None:
    repo.upsert_product(db_session, "seen", _fields())
    repo.upsert_product(db_session, "gone-visible", _fields())
    repo.upsert_product(db_session, "gone-hidden", _fields(price="", in_stock=False))
    repo.upsert_product(db_session, "manual", _fields(source=ProductSource.MANUAL))
    db_session.commit()

    hidden = repo.hide_missing_products(db_session, {"seen"})
    db_session.commit()

    assert hidden == 1
    gone = repo.get_product(db_session, "gone-visible")
    assert gone.price == ""
    assert gone.in_stock is False
    assert gone.sizes == []
    assert gone.default_size is None
    assert repo.get_product(db_session, "seen").price == "100.00"
    assert repo.get_product(db_session, "manual").price == "100.00"


def test_run_lifecycle(db_session) -> None:
    started = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    run = repo.create_run(
        db_session,
        started_at=started,
        summary="Sync started.",
        report_paths={"report_dir": "/tmp/reports/run"},
    )
    db_session.commit()
    assert run.status == RunStatus.RUNNING.value

    repo.update_run(db_session, run.id, totals={"products_found": 3, "created": 2}, price_changed_count=1)
    repo.update_run(db_session, run.id, status=RunStatus.SUCCESS, duration_ms=1500)
    db_session.commit()

    stored = db_session.get(SyncRun, run.id)
    assert stored.status == "SUCCESS"
    assert stored.products_found == 3
    assert stored.created == 2
    assert stored.price_changed_count == 1
    assert stored.report_dir == "/tmp/reports/run"
    assert repo.update_run(db_session, 999, status=RunStatus.FAILED) is None


def test_restart_run_adopts_existing_record(db_session) -> None:
    run = repo.create_run(db_session, started_at=datetime.now(timezone.utc))
    repo.update_run(db_session, run.id, status=RunStatus.FAILED, hint="retry")
    db_session.commit()

    restarted = repo.restart_run(db_session, run.id, started_at=datetime.now(timezone.utc), summary="again")

    assert restarted.status == "RUNNING"
    assert restarted.hint is None
    assert repo.restart_run(db_session, 999, started_at=datetime.now(timezone.utc)) is None


def test_init_db_safe_only_creates_missing_tables(tmp_path) -> None:
    engine = get_engine(tmp_path / "nested" / "catalog.sqlite")
    try:
        assert sorted(init_db_safe(engine)) == ["products", "sync_runs"]
        assert init_db_safe(engine) == []
    finally:
        engine.dispose()
    assert (tmp_path / "nested" / "catalog.sqlite").exists()
