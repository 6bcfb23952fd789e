"""SQLAlchemy ORM models for the catalog store and sync run records."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from catalog_sync.models import ProductSource, RunStatus


class Base(DeclarativeBase):
    """Declarative base class for ORM models."""


class CatalogProduct(Base):
    """A storefront product; ``product_code`` is the feed's external id."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_code: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    features: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    taxonomy: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    # "" hides the product, "0.00" marks price on request.
    price: Mapped[str] = mapped_column(String, nullable=False, default="")
    sizes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    default_size: Mapped[str | None] = mapped_column(String, nullable=True)
    images: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    in_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_new: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_runners: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source: Mapped[str] = mapped_column(String, nullable=False, default=ProductSource.XML_FEED.value)
    source_meta: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_products_source_price", "source", "price"),
    )


class SyncRun(Base):
    """One execution of the sync engine with its totals and report pointers."""

    __tablename__ = "sync_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=RunStatus.RUNNING.value)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    hint: Mapped[str | None] = mapped_column(Text, nullable=True)
    products_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    products_parsed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    variants_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    variants_parsed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unchanged: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deactivated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    hidden_no_price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price_on_request: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price_changed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    report_dir: Mapped[str | None] = mapped_column(String, nullable=True)
    report_json_path: Mapped[str | None] = mapped_column(String, nullable=True)
    report_md_path: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        Index("ix_sync_runs_started_at", "started_at"),
    )
