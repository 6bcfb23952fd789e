"""In-memory records flowing through a sync run."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from catalog_sync.extractors.schemas import SourceMeta


class ProductSource(str, Enum):
    """Origin tag stored on every catalog row."""

    XML_FEED = "xml_feed"
    MANUAL = "manual"


class RunStatus(str, Enum):
    """Lifecycle status of a persisted sync run."""

    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    NEED_AUTH = "NEED_AUTH"
    FAILED = "FAILED"


class Classification(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class Visibility(str, Enum):
    """Which row of the visibility decision table a product landed on."""

    INACTIVE = "inactive"
    PRICED = "priced"
    PRICE_ON_REQUEST = "price_on_request"
    HIDDEN_NO_PRICE = "hidden_no_price"


@dataclass
class TechnicalDetail:
    key: str | None = None
    value: str | None = None


@dataclass
class RawVariant:
    """A variant exactly as read from the feed; every field is raw text."""

    active: str | None = None
    variation_id: str | None = None
    sku: str | None = None
    barcode: str | None = None
    stock_status: str | None = None
    price: str | None = None
    discounted_price: str | None = None
    currency: str | None = None
    currency_name: str | None = None
    size: str | None = None


@dataclass
class RawProduct:
    """A product record assembled by the feed parser."""

    active: str | None = None
    id: str | None = None
    name: str | None = None
    short_html: str | None = None
    description_html: str | None = None
    brand: str | None = None
    category: str | None = None
    category_tree: str | None = None
    url: str | None = None
    images: list[str] = field(default_factory=list)
    variants: list[RawVariant] = field(default_factory=list)
    technical_details: list[TechnicalDetail] = field(default_factory=list)


@dataclass
class NormalizedVariant:
    raw: RawVariant
    price_usd: float | None
    price_eur: float | None
    price_usd_raw: str
    sale_price_usd: float | None
    discount_price_usd: float | None
    size_label: str | None
    size_area: float
    is_active: bool
    in_stock: bool
    is_special_size: bool

    @property
    def is_parsed(self) -> bool:
        """Active and carrying a size label; only these feed price and size logic."""

        return self.is_active and bool(self.size_label)


@dataclass
class ConsolidatedProduct:
    variants: list[NormalizedVariant]
    parsed: list[NormalizedVariant]
    representative: NormalizedVariant | None
    sizes: list[str]
    default_size: str | None
    has_positive_price: bool
    has_active_variants: bool
    has_in_stock_variant: bool
    has_special_size: bool

    @property
    def base_price_eur(self) -> float | None:
        return self.representative.price_eur if self.representative else None


@dataclass
class StoredProduct:
    """Snapshot of a persisted catalog row, as returned by the store."""

    product_code: str
    price: str = ""
    sizes: list[str] = field(default_factory=list)
    default_size: str | None = None
    images: list[str] = field(default_factory=list)
    in_stock: bool = False
    is_new: bool = False
    is_runners: bool = False
    source: ProductSource = ProductSource.XML_FEED
    source_meta: SourceMeta = field(default_factory=SourceMeta)


@dataclass
class PriceChange:
    product_code: str
    old_price: str
    new_price: str


__all__ = [
    "Classification",
    "ConsolidatedProduct",
    "NormalizedVariant",
    "PriceChange",
    "ProductSource",
    "RawProduct",
    "RawVariant",
    "RunStatus",
    "StoredProduct",
    "TechnicalDetail",
    "Visibility",
]
