"""Diff a normalized feed product against the catalog store and upsert it."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from catalog_sync.consolidate import consolidate
from catalog_sync.content import ProductContent, TaxonomyMapper, build_content, compute_content_hash
from catalog_sync.errors import RecordPersistError, RecordValidationError
from catalog_sync.extractors.schemas import (
    SOURCE_META_VERSION,
    FeedOrigin,
    SourceMeta,
    TechnicalDetailMeta,
    TranslationState,
    VariantSnapshot,
    dump_source_meta,
)
from catalog_sync.logging_config import get_logger
from catalog_sync.models import (
    Classification,
    ConsolidatedProduct,
    NormalizedVariant,
    ProductSource,
    RawProduct,
    StoredProduct,
    Visibility,
)
from catalog_sync.normalizers import format_price, normalize_flag
from catalog_sync.storage.store import CatalogStore

LOGGER = get_logger(__name__)

PRICE_ON_REQUEST = "0.00"
TRANSLATION_MODE = "sync"


@dataclass(frozen=True)
class VisibilityDecision:
    price: str
    in_stock: bool
    price_on_request: bool
    visibility: Visibility


def decide_visibility(product_active: bool, consolidated: ConsolidatedProduct) -> VisibilityDecision:
    """Apply the storefront visibility table.

    ============  =========  ========  =======  ===========  ========
    active        priced     in stock  special  price        in_stock
    ============  =========  ========  =======  ===========  ========
    no            -          -         -        ""           False
    yes           yes        any       any      min EUR      in stock
    yes           no         yes       yes      "0.00"       True
    yes           no         -         -        ""           in stock
    ============  =========  ========  =======  ===========  ========
    """

    if not product_active:
        return VisibilityDecision("", False, False, Visibility.INACTIVE)

    base_price = consolidated.base_price_eur
    if consolidated.has_positive_price and base_price:
        return VisibilityDecision(
            format_price(base_price), consolidated.has_in_stock_variant, False, Visibility.PRICED
        )

    if (
        consolidated.has_active_variants
        and consolidated.has_in_stock_variant
        and consolidated.has_special_size
    ):
        return VisibilityDecision(PRICE_ON_REQUEST, True, True, Visibility.PRICE_ON_REQUEST)

    return VisibilityDecision("", consolidated.has_in_stock_variant, False, Visibility.HIDDEN_NO_PRICE)


def next_translation(
    current: TranslationState,
    content_hash: str,
    now: datetime,
) -> tuple[TranslationState, bool]:
    """Return the translation state to persist and whether content changed.

    A new hash resets every scope to pending; an unchanged hash keeps the
    stored state untouched so no translation is re-triggered.
    """

    if current.content_hash and current.content_hash == content_hash:
        return current, False
    return TranslationState(content_hash=content_hash, updated_at=now, mode=TRANSLATION_MODE), True


@dataclass
class ReconcileOutcome:
    product_code: str
    visibility: Visibility
    price: str
    variants_found: int
    variants_parsed: int
    classification: Classification | None = None
    previous_price: str | None = None
    content_changed: bool = False

    @property
    def price_changed(self) -> bool:
        return self.previous_price is not None and self.previous_price != self.price


def _variant_snapshot(variant: NormalizedVariant) -> VariantSnapshot:
    raw = variant.raw
    return VariantSnapshot(
        variation_id=raw.variation_id,
        sku=raw.sku,
        barcode=raw.barcode,
        size_label=variant.size_label or raw.size or "",
        is_active=variant.is_active,
        stock_status=raw.stock_status,
        price_usd=variant.price_usd,
        price_eur=variant.price_eur,
        price_usd_raw=variant.price_usd_raw,
        in_stock=variant.in_stock,
        is_special_size=variant.is_special_size,
        sale_price_usd=variant.sale_price_usd,
        discount_price_usd=variant.discount_price_usd,
        currency=raw.currency,
        currency_name=raw.currency_name,
    )


def _has_changed(existing: StoredProduct, fields: dict[str, Any]) -> bool:
    return (
        existing.price != fields["price"]
        or existing.default_size != fields["default_size"]
        or existing.in_stock != fields["in_stock"]
        or existing.is_new != fields["is_new"]
        or existing.is_runners != fields["is_runners"]
        or existing.source != fields["source"]
        or list(existing.images) != list(fields["images"])
        or list(existing.sizes) != list(fields["sizes"])
    )


class ProductReconciler:
    """Reconciles one feed product at a time, in feed order.

    ``dry_run`` reads the store and classifies but never writes;
    ``parse_only`` never touches the store at all.
    """

    def __init__(
        self,
        store: CatalogStore | None,
        *,
        rate: float,
        mapper: TaxonomyMapper | None = None,
        dry_run: bool = False,
        parse_only: bool = False,
        debug_sku: str | None = None,
        source: ProductSource = ProductSource.XML_FEED,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if store is None and not parse_only:
            raise ValueError("A catalog store is required unless running parse-only")
        self.store = store
        self.rate = rate
        self.mapper = mapper or TaxonomyMapper()
        self.dry_run = dry_run
        self.parse_only = parse_only
        self.debug_sku = debug_sku
        self.source = source
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.seen_codes: set[str] = set()

    def validate(self, product: RawProduct) -> str:
        product_code = (product.id or "").strip()
        if not product_code:
            raise RecordValidationError("Missing product external id", name=product.name)
        if product_code in self.seen_codes:
            raise RecordValidationError("Duplicate product in feed", product_code=product_code)
        self.seen_codes.add(product_code)
        return product_code

    def _build_meta(
        self,
        base: SourceMeta,
        product_code: str,
        product: RawProduct,
        consolidated: ConsolidatedProduct,
        decision: VisibilityDecision,
        translation: TranslationState,
    ) -> SourceMeta:
        snapshot_variants = consolidated.parsed or consolidated.variants
        origin = FeedOrigin(
            product_id=product_code,
            product_url=product.url,
            brand=product.brand,
            category=product.category,
            category_tree=product.category_tree,
            short_html=product.short_html,
            description_html=product.description_html,
            technical_details=[
                TechnicalDetailMeta(key=detail.key or "", value=detail.value or "")
                for detail in product.technical_details
            ],
            price_on_request=decision.price_on_request,
        )
        return base.model_copy(
            update={
                "schema_version": SOURCE_META_VERSION,
                "feed": origin,
                "variants": [_variant_snapshot(variant) for variant in snapshot_variants],
                "translation": translation,
            }
        )

    def _build_fields(
        self,
        product_code: str,
        product: RawProduct,
        content: ProductContent,
        consolidated: ConsolidatedProduct,
        decision: VisibilityDecision,
        existing: StoredProduct | None,
        meta: SourceMeta,
    ) -> dict[str, Any]:
        images = list(dict.fromkeys(image.strip() for image in product.images if image.strip()))
        if not images and existing is not None:
            images = list(existing.images)
        sizes = list(consolidated.sizes)
        if not sizes and existing is not None:
            sizes = list(existing.sizes)
        default_size = consolidated.default_size
        if default_size is None and existing is not None:
            default_size = existing.default_size

        return {
            "name": product.name or product_code,
            "description": content.description,
            "features": content.feature_fields(),
            "taxonomy": content.taxonomy_fields(),
            "price": decision.price,
            "sizes": sizes,
            "default_size": default_size,
            "images": images,
            "in_stock": decision.in_stock,
            "is_new": False,
            "is_runners": False,
            "source": self.source,
            "source_meta": dump_source_meta(meta),
        }

    async def reconcile(self, product: RawProduct) -> ReconcileOutcome:
        product_code = self.validate(product)
        consolidated = consolidate(product, self.rate, debug_sku=self.debug_sku)
        decision = decide_visibility(normalize_flag(product.active), consolidated)
        outcome = ReconcileOutcome(
            product_code=product_code,
            visibility=decision.visibility,
            price=decision.price,
            variants_found=len(consolidated.variants),
            variants_parsed=len(consolidated.parsed),
        )
        if self.parse_only:
            return outcome

        assert self.store is not None
        try:
            existing = await self.store.find_by_code(product_code)
        except Exception as exc:
            raise RecordPersistError("Catalog lookup failed", product_code=product_code) from exc

        content = build_content(product, self.mapper)
        content_hash = compute_content_hash(product, content)
        base_meta = existing.source_meta if existing is not None else SourceMeta()
        translation, outcome.content_changed = next_translation(
            base_meta.translation, content_hash, self._clock()
        )
        meta = self._build_meta(base_meta, product_code, product, consolidated, decision, translation)
        fields = self._build_fields(product_code, product, content, consolidated, decision, existing, meta)

        if existing is None:
            outcome.classification = Classification.CREATED
        else:
            outcome.previous_price = existing.price
            outcome.classification = (
                Classification.UPDATED if _has_changed(existing, fields) else Classification.UNCHANGED
            )

        if not self.dry_run:
            try:
                await self.store.upsert(product_code, fields)
            except Exception as exc:
                raise RecordPersistError("Catalog write failed", product_code=product_code) from exc

        LOGGER.debug(
            "Reconciled product=%s classification=%s visibility=%s price=%s",
            product_code,
            outcome.classification.value,
            decision.visibility.value,
            decision.price,
        )
        return outcome


__all__ = [
    "PRICE_ON_REQUEST",
    "ProductReconciler",
    "ReconcileOutcome",
    "VisibilityDecision",
    "decide_visibility",
    "next_translation",
]
