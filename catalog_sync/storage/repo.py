"""Repository helpers for interacting with persistent storage."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from catalog_sync.extractors.schemas import load_source_meta
from catalog_sync.models import ProductSource, RunStatus, StoredProduct

from .models_sql import CatalogProduct, SyncRun

HIDE_BATCH_SIZE = 500

PRODUCT_FIELDS = frozenset(
    {
        "name",
        "description",
        "features",
        "taxonomy",
        "price",
        "sizes",
        "default_size",
        "images",
        "in_stock",
        "is_new",
        "is_runners",
        "source",
        "source_meta",
    }
)

RUN_TOTAL_FIELDS = (
    "products_found",
    "products_parsed",
    "variants_found",
    "variants_parsed",
    "created",
    "updated",
    "unchanged",
    "deactivated",
    "hidden_no_price",
    "price_on_request",
    "errors_count",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_product(session: Session, product_code: str) -> CatalogProduct | None:
    stmt = select(CatalogProduct).where(CatalogProduct.product_code == product_code)
    return session.execute(stmt).scalar_one_or_none()


def to_stored_product(row: CatalogProduct) -> StoredProduct:
    try:
        source = ProductSource(row.source)
    except ValueError:
        source = ProductSource.MANUAL
    return StoredProduct(
        product_code=row.product_code,
        price=row.price or "",
        sizes=list(row.sizes or []),
        default_size=row.default_size,
        images=list(row.images or []),
        in_stock=bool(row.in_stock),
        is_new=bool(row.is_new),
        is_runners=bool(row.is_runners),
        source=source,
        source_meta=load_source_meta(row.source_meta, product_code=row.product_code),
    )


def upsert_product(session: Session, product_code: str, fields: dict[str, Any]) -> CatalogProduct:
    unknown = set(fields) - PRODUCT_FIELDS
    if unknown:
        raise ValueError(f"Unknown product fields: {sorted(unknown)}")

    now = _utcnow()
    product = get_product(session, product_code)
    if product is None:
        product = CatalogProduct(product_code=product_code, created_at=now, updated_at=now)
        session.add(product)
    for key, value in fields.items():
        if isinstance(value, ProductSource):
            value = value.value
        setattr(product, key, value)
    product.updated_at = now
    session.flush()
    return product


def hide_missing_products(
    session: Session,
    seen_codes: Iterable[str],
    *,
    source: ProductSource = ProductSource.XML_FEED,
) -> int:
    """Hide rows of *source* whose code is not in *seen_codes*.

    Returns how many of them were visible (non-empty price) before the sweep.
    """

    seen = set(seen_codes)
    stmt = select(CatalogProduct.product_code, CatalogProduct.price).where(
        CatalogProduct.source == source.value
    )
    missing: list[str] = []
    previously_visible = 0
    for product_code, price in session.execute(stmt):
        if product_code in seen:
            continue
        missing.append(product_code)
        if price:
            previously_visible += 1

    now = _utcnow()
    for start in range(0, len(missing), HIDE_BATCH_SIZE):
        batch = missing[start : start + HIDE_BATCH_SIZE]
        session.execute(
            update(CatalogProduct)
            .where(CatalogProduct.product_code.in_(batch))
            .values(price="", in_stock=False, sizes=[], default_size=None, updated_at=now)
        )
    session.flush()
    return previously_visible


def create_run(
    session: Session,
    *,
    started_at: datetime,
    summary: str | None = None,
    report_paths: dict[str, str] | None = None,
) -> SyncRun:
    run = SyncRun(
        status=RunStatus.RUNNING.value,
        started_at=started_at,
        summary=summary,
        **(report_paths or {}),
    )
    session.add(run)
    session.flush()
    return run


def restart_run(
    session: Session,
    run_id: int,
    *,
    started_at: datetime,
    summary: str | None = None,
    report_paths: dict[str, str] | None = None,
) -> SyncRun | None:
    """Mark a run pre-created by the admin surface as RUNNING."""

    run = session.get(SyncRun, run_id)
    if run is None:
        return None
    run.status = RunStatus.RUNNING.value
    run.started_at = started_at
    run.summary = summary
    run.hint = None
    for key, value in (report_paths or {}).items():
        setattr(run, key, value)
    session.flush()
    return run


def update_run(
    session: Session,
    run_id: int,
    *,
    totals: dict[str, int] | None = None,
    **fields: Any,
) -> SyncRun | None:
    run = session.get(SyncRun, run_id)
    if run is None:
        return None
    for key in RUN_TOTAL_FIELDS:
        if totals and key in totals:
            setattr(run, key, totals[key])
    for key, value in fields.items():
        if isinstance(value, RunStatus):
            value = value.value
        setattr(run, key, value)
    session.flush()
    return run


__all__ = [
    "create_run",
    "get_product",
    "hide_missing_products",
    "restart_run",
    "to_stored_product",
    "update_run",
    "upsert_product",
]
