"""Validation schemas for the ``source_meta`` blob stored on catalog rows."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from catalog_sync.logging_config import get_logger

LOGGER = get_logger(__name__)

SOURCE_META_VERSION = 1


def _coerce_datetime(value: Any) -> Any:
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return value


class TechnicalDetailMeta(BaseModel):
    model_config = ConfigDict(extra="ignore")

    key: str = ""
    value: str = ""


class TranslationScopes(BaseModel):
    """Per-scope "already translated" flags; ``False`` means regeneration is pending."""

    model_config = ConfigDict(extra="allow")

    descriptions: bool = False
    technical_details: bool = False
    lists: bool = False
    taxonomy: bool = False


class TranslationState(BaseModel):
    """Hash-gated translation bookkeeping; keys added by the translator are kept."""

    model_config = ConfigDict(extra="allow")

    content_hash: str | None = None
    updated_at: datetime | None = None
    mode: str | None = None
    scopes: TranslationScopes = Field(default_factory=TranslationScopes)

    @field_validator("updated_at", mode="before")
    @classmethod
    def _ensure_utc(cls, value: Any) -> Any:
        return _coerce_datetime(value)


class VariantSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    variation_id: str | None = None
    sku: str | None = None
    barcode: str | None = None
    size_label: str = ""
    is_active: bool = False
    stock_status: str | None = None
    price_usd: float | None = None
    price_eur: float | None = None
    price_usd_raw: str = ""
    in_stock: bool = False
    is_special_size: bool = False
    sale_price_usd: float | None = None
    discount_price_usd: float | None = None
    currency: str | None = None
    currency_name: str | None = None


class FeedOrigin(BaseModel):
    """Feed-side facts about a product, kept verbatim for downstream consumers."""

    model_config = ConfigDict(extra="ignore")

    product_id: str
    product_url: str | None = None
    brand: str | None = None
    category: str | None = None
    category_tree: str | None = None
    short_html: str | None = None
    description_html: str | None = None
    technical_details: list[TechnicalDetailMeta] = Field(default_factory=list)
    price_on_request: bool = False


class SourceMeta(BaseModel):
    """Versioned structure of ``products.source_meta``.

    Unknown top-level keys are preserved so other writers sharing the column
    do not lose their data when a sync run rewrites it.
    """

    model_config = ConfigDict(extra="allow")

    schema_version: int = SOURCE_META_VERSION
    feed: FeedOrigin | None = None
    variants: list[VariantSnapshot] = Field(default_factory=list)
    translation: TranslationState = Field(default_factory=TranslationState)

    @field_validator("schema_version")
    @classmethod
    def _check_version(cls, value: int) -> int:
        if value > SOURCE_META_VERSION:
            raise ValueError(f"unsupported source_meta schema_version {value}")
        return value


def load_source_meta(raw: Any, *, product_code: str | None = None) -> SourceMeta:
    """Validate a stored blob, falling back to an empty meta when it is unusable."""

    if not raw:
        return SourceMeta()
    try:
        return SourceMeta.model_validate(raw)
    except ValidationError as exc:
        LOGGER.warning(
            "Discarding invalid source_meta for product=%s: %s",
            product_code,
            exc.errors()[:3],
        )
        return SourceMeta()


def dump_source_meta(meta: SourceMeta) -> dict[str, Any]:
    return meta.model_dump(mode="json")


__all__ = [
    "FeedOrigin",
    "SOURCE_META_VERSION",
    "SourceMeta",
    "TechnicalDetailMeta",
    "TranslationScopes",
    "TranslationState",
    "VariantSnapshot",
    "dump_source_meta",
    "load_source_meta",
]
