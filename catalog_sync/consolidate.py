"""Turn raw feed variants into priced, sized variants and pick a representative."""

from __future__ import annotations

from catalog_sync.logging_config import get_logger
from catalog_sync.models import ConsolidatedProduct, NormalizedVariant, RawProduct, RawVariant
from catalog_sync.normalizers import (
    is_special_size_label,
    normalize_flag,
    normalize_price,
    normalize_size_label,
    parse_size_area,
    parse_stock_status,
    to_eur,
)

LOGGER = get_logger(__name__)

NATIVE_EUR_CODES = frozenset({"EUR"})


def normalize_variant(variant: RawVariant, rate: float) -> NormalizedVariant:
    discounted = normalize_price(variant.discounted_price)
    regular = normalize_price(variant.price)
    sale_price_usd = regular.positive
    discount_price_usd = discounted.positive

    size_label = normalize_size_label(variant.size)
    is_active = normalize_flag(variant.active)
    is_special_size = is_special_size_label(size_label or variant.size)
    price_usd_raw = (variant.discounted_price if discount_price_usd else variant.price) or ""

    price_usd = None
    price_eur = None
    if not is_special_size:
        price_usd = discount_price_usd or sale_price_usd
        if price_usd:
            currency = (variant.currency or "").strip().upper()
            price_eur = to_eur(price_usd, 1.0 if currency in NATIVE_EUR_CODES else rate)

    return NormalizedVariant(
        raw=variant,
        price_usd=price_usd,
        price_eur=price_eur,
        price_usd_raw=price_usd_raw,
        sale_price_usd=sale_price_usd,
        discount_price_usd=discount_price_usd,
        size_label=size_label,
        size_area=parse_size_area(size_label),
        is_active=is_active,
        in_stock=is_active and parse_stock_status(variant.stock_status),
        is_special_size=is_special_size,
    )


def pick_representative(variants: list[NormalizedVariant]) -> NormalizedVariant | None:
    """Cheapest priced, fixed-size variant; the first one wins a tie."""

    best: NormalizedVariant | None = None
    for variant in variants:
        if variant.is_special_size or not variant.price_eur or variant.price_eur <= 0:
            continue
        if best is None or variant.price_eur < (best.price_eur or 0):
            best = variant
    return best


def consolidate(product: RawProduct, rate: float, *, debug_sku: str | None = None) -> ConsolidatedProduct:
    variants = [normalize_variant(raw, rate) for raw in product.variants]
    parsed = [variant for variant in variants if variant.is_parsed]
    priced = [
        variant
        for variant in parsed
        if not variant.is_special_size and variant.price_eur is not None and variant.price_eur > 0
    ]
    representative = pick_representative(priced)

    sizes = list(dict.fromkeys(variant.size_label for variant in parsed if variant.size_label))
    special = next((variant for variant in parsed if variant.is_special_size), None)
    if representative is not None:
        default_size = representative.size_label
    elif special is not None:
        default_size = special.size_label
    else:
        default_size = sizes[0] if sizes else None

    if debug_sku:
        for variant in variants:
            if (variant.raw.sku or "").strip() == debug_sku:
                LOGGER.info(
                    "debug_sku sku=%s product=%s size=%s special=%s raw=%s usd=%s eur=%s currency=%s",
                    debug_sku,
                    product.id,
                    variant.size_label,
                    variant.is_special_size,
                    variant.price_usd_raw,
                    variant.price_usd,
                    variant.price_eur,
                    variant.raw.currency,
                )

    return ConsolidatedProduct(
        variants=variants,
        parsed=parsed,
        representative=representative,
        sizes=sizes,
        default_size=default_size,
        has_positive_price=bool(priced),
        has_active_variants=bool(parsed),
        has_in_stock_variant=any(variant.in_stock for variant in parsed),
        has_special_size=special is not None,
    )


__all__ = ["consolidate", "normalize_variant", "pick_representative"]
