from __future__ import annotations

from typing import Any

import pytest

from catalog_sync.extractors.schemas import load_source_meta
from catalog_sync.models import ProductSource, StoredProduct


def variant_xml(
    *,
    active: str = "true",
    sku: str = "SKU-1",
    stock: str = "available",
    price: str = "100",
    discounted: str = "",
    currency: str = "USD",
    size: str = "80x150 cm",
) -> str:
    return (
        "<Variant>"
        f"<Active>{active}</Active>"
        f"<Sku>{sku}</Sku>"
        f"<StockStatus>{stock}</StockStatus>"
        f"<Price>{price}</Price>"
        f"<DiscountedPrice>{discounted}</DiscountedPrice>"
        f"<CurrencyCode>{currency}</CurrencyCode>"
        f"<Size>{size}</Size>"
        "</Variant>"
    )


def product_xml(
    product_id: str,
    *,
    active: str = "true",
    name: str = "Wool Rug",
    short_html: str = "<p>Hand woven wool rug</p>",
    variants: list[str] | None = None,
    images: tuple[str, ...] = ("https://cdn.example.com/rug-1.jpg",),
) -> str:
    variant_block = "".join(variants if variants is not None else [variant_xml()])
    image_block = "".join(f"<Image>{image}</Image>" for image in images)
    return (
        "<Product>"
        f"<ExternalId>{product_id}</ExternalId>"
        f"<Active>{active}</Active>"
        f"<Name>{name}</Name>"
        f"<ShortHtml><![CDATA[{short_html}]]></ShortHtml>"
        "<Category>Beige</Category>"
        f"<Images>{image_block}</Images>"
        f"<Variants>{variant_block}</Variants>"
        "</Product>"
    )


def feed_xml(*products: str) -> bytes:
    body = "".join(products)
    return f'<?xml version="1.0" encoding="UTF-8"?><Catalog>{body}</Catalog>'.encode("utf-8")


class MemoryCatalogStore:
    """Dict-backed catalog store used to exercise reconciliation without SQL."""

    def __init__(self) -> None:
        self.rows: dict[str, dict[str, Any]] = {}
        self.writes = 0

    async def find_by_code(self, code: str) -> StoredProduct | None:
        fields = self.rows.get(code)
        if fields is None:
            return None
        return StoredProduct(
            product_code=code,
            price=fields.get("price", ""),
            sizes=list(fields.get("sizes", [])),
            default_size=fields.get("default_size"),
            images=list(fields.get("images", [])),
            in_stock=fields.get("in_stock", False),
            is_new=fields.get("is_new", False),
            is_runners=fields.get("is_runners", False),
            source=ProductSource(fields.get("source", ProductSource.XML_FEED)),
            source_meta=load_source_meta(fields.get("source_meta"), product_code=code),
        )

    async def upsert(self, code: str, fields: dict[str, Any]) -> None:
        self.writes += 1
        self.rows[code] = dict(fields)

    async def bulk_hide(self, codes_not_in: set[str]) -> int:
        hidden = 0
        for code, fields in self.rows.items():
            if code in codes_not_in:
                continue
            if fields.get("price"):
                hidden += 1
            fields.update(price="", in_stock=False, sizes=[], default_size=None)
        return hidden


@pytest.fixture()
def memory_store() -> MemoryCatalogStore:
    return MemoryCatalogStore()
