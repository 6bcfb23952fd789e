"""Streaming extractor for the vendor XML catalog feed.

The feed is consumed as raw byte chunks and fed to expat. All parser state
lives in :class:`ParserState`; the ``on_start``/``on_text``/``on_end``
transition functions take that state explicitly, so they can be driven
directly in tests without any byte-stream I/O.

Tag vocabulary follows the Ticimax XML export (``Urun``, ``Secenek``,
``TeknikDetay`` ...) with English aliases accepted for every field.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping
from xml.parsers import expat

from catalog_sync.errors import ParseError
from catalog_sync.models import RawProduct, RawVariant, TechnicalDetail
from catalog_sync.normalizers import is_size_option_name, is_size_value

PRODUCT_TAGS = frozenset({"Urun", "Product"})
VARIANT_TAGS = frozenset({"Secenek", "Variant"})
DETAIL_TAGS = frozenset({"TeknikDetay", "TechnicalDetail"})
IMAGE_TAGS = frozenset({"Resim", "Image"})

PRODUCT_FIELDS: dict[str, str] = {
    "Aktif": "active",
    "Active": "active",
    "UrunKartiID": "id",
    "ExternalId": "id",
    "UrunAdi": "name",
    "Name": "name",
    "OnYazi": "short_html",
    "ShortHtml": "short_html",
    "Aciklama": "description_html",
    "LongHtml": "description_html",
    "Marka": "brand",
    "Brand": "brand",
    "Kategori": "category",
    "Category": "category",
    "KategoriTree": "category_tree",
    "CategoryTree": "category_tree",
    "UrunUrl": "url",
    "Url": "url",
}

VARIANT_FIELDS: dict[str, str] = {
    "Aktif": "active",
    "Active": "active",
    "VaryasyonID": "variation_id",
    "VariationId": "variation_id",
    "StokKodu": "sku",
    "Sku": "sku",
    "Barkod": "barcode",
    "Barcode": "barcode",
    "StokDurumu": "stock_status",
    "StockStatus": "stock_status",
    "SatisFiyati": "price",
    "Price": "price",
    "IndirimliFiyat": "discounted_price",
    "DiscountedPrice": "discounted_price",
    "ParaBirimiKodu": "currency",
    "CurrencyCode": "currency",
    "ParaBirimi": "currency_name",
    "Currency": "currency_name",
}

DETAIL_FIELDS: dict[str, str] = {
    "OzellikTanim": "key",
    "Key": "key",
    "DegerTanim": "value",
    "Value": "value",
}

# Variant options ("size: 80x150") come in several shapes; see _assign_size.
OPTION_TAGS = frozenset({"Ozellik", "SecenekOzellik", "SecenekOzelligi", "SecenekOzellikleri", "Option"})
OPTION_NAME_TAGS = frozenset({"Tanim", "OzellikTanim", "SecenekTanim", "SecenekAdi", "OptionName"})
OPTION_VALUE_TAGS = frozenset({"Deger", "OzellikDeger", "SecenekDeger", "DegerTanim", "OptionValue"})
OPTION_OPENER_TAGS = frozenset({"SecenekAdi", "SecenekDeger"})
SIZE_TAGS = frozenset({"SecenekAdi", "SecenekDeger", "Ebat", "Boyut", "Size", "Beden"})


@dataclass
class VariantOption:
    name: str | None = None
    value: str | None = None


@dataclass
class ParserState:
    element_stack: list[str] = field(default_factory=list)
    text_stack: list[list[str]] = field(default_factory=list)
    product: RawProduct | None = None
    variant: RawVariant | None = None
    option: VariantOption | None = None
    detail: TechnicalDetail | None = None
    completed: list[RawProduct] = field(default_factory=list)

    def take_completed(self) -> list[RawProduct]:
        records, self.completed = self.completed, []
        return records


def _attribute(attrs: Mapping[str, str], key: str) -> str | None:
    wanted = key.lower()
    for name, value in attrs.items():
        if name.lower() == wanted and value is not None:
            return str(value).strip()
    return None


def _assign_size(state: ParserState, candidate: str | None) -> None:
    """Set the variant size from *candidate* if none is set and it looks like a size."""

    if state.variant is None or not candidate or state.variant.size:
        return
    if is_size_value(candidate):
        state.variant.size = candidate.strip()


def _apply_option(state: ParserState) -> None:
    variant, option = state.variant, state.option
    if variant is None or option is None:
        return
    value = (option.value or "").strip()
    if not value or variant.size:
        return
    if is_size_option_name(option.name) or is_size_value(value):
        variant.size = value


def on_start(state: ParserState, name: str, attrs: Mapping[str, str]) -> None:
    state.element_stack.append(name)
    state.text_stack.append([])

    if name in PRODUCT_TAGS:
        state.product = RawProduct()
    elif name in VARIANT_TAGS:
        state.variant = RawVariant()
        state.option = None
    elif name in DETAIL_TAGS:
        state.detail = TechnicalDetail()

    if state.variant is None or state.detail is not None:
        return

    if name in OPTION_TAGS:
        state.option = VariantOption()
    elif name in OPTION_OPENER_TAGS and state.option is None:
        state.option = VariantOption()

    if state.option is not None:
        option_name = _attribute(attrs, "Tanim")
        option_value = _attribute(attrs, "Deger")
        if option_name:
            state.option.name = option_name
        if option_value:
            state.option.value = option_value
        _apply_option(state)


def on_text(state: ParserState, text: str) -> None:
    if state.text_stack:
        state.text_stack[-1].append(text)


def _close_variant_option(state: ParserState, name: str, value: str) -> None:
    if name in OPTION_NAME_TAGS:
        if state.option is None:
            state.option = VariantOption()
        state.option.name = value
        if name == "SecenekAdi":
            _assign_size(state, value)
        _apply_option(state)

    if name in OPTION_VALUE_TAGS:
        if state.option is None:
            state.option = VariantOption()
        state.option.value = value
        _apply_option(state)
        if name == "SecenekDeger":
            state.option = None

    if name in SIZE_TAGS:
        _assign_size(state, value)

    if name in OPTION_TAGS:
        _assign_size(state, value)
        _apply_option(state)
        state.option = None


def on_end(state: ParserState, name: str) -> RawProduct | None:
    """Handle a closing tag; returns the product when its record is complete."""

    parts = state.text_stack.pop() if state.text_stack else []
    if state.element_stack:
        state.element_stack.pop()
    value = "".join(parts).strip()

    if state.variant is not None:
        attr = VARIANT_FIELDS.get(name)
        if attr:
            setattr(state.variant, attr, value)
        if state.detail is None:
            _close_variant_option(state, name, value)

    if state.detail is not None:
        attr = DETAIL_FIELDS.get(name)
        if attr:
            setattr(state.detail, attr, value)

    product = state.product
    if product is not None and state.variant is None and state.detail is None:
        attr = PRODUCT_FIELDS.get(name)
        if attr:
            setattr(product, attr, value)
        elif name in IMAGE_TAGS and value:
            product.images.append(value)

    if name in DETAIL_TAGS and product is not None and state.detail is not None:
        product.technical_details.append(state.detail)
        state.detail = None

    if name in VARIANT_TAGS and product is not None and state.variant is not None:
        product.variants.append(state.variant)
        state.variant = None
        state.option = None

    if name in PRODUCT_TAGS and product is not None:
        state.product = None
        state.completed.append(product)
        return product

    return None


class FeedExtractor:
    """Incremental byte-level front end over :class:`ParserState`."""

    def __init__(self) -> None:
        self.state = ParserState()
        self.bytes_read = 0
        self._parser = expat.ParserCreate()
        self._parser.buffer_text = True
        self._parser.StartElementHandler = self._handle_start
        self._parser.EndElementHandler = self._handle_end
        self._parser.CharacterDataHandler = self._handle_text

    def _handle_start(self, name: str, attrs: dict[str, str]) -> None:
        on_start(self.state, name, attrs)

    def _handle_end(self, name: str) -> None:
        on_end(self.state, name)

    def _handle_text(self, text: str) -> None:
        on_text(self.state, text)

    def _parse(self, data: bytes, final: bool) -> list[RawProduct]:
        try:
            self._parser.Parse(data, final)
        except expat.ExpatError as exc:
            raise ParseError(
                f"XML parse error: {expat.ErrorString(exc.code)}",
                line=exc.lineno,
                column=exc.offset,
            ) from exc
        return self.state.take_completed()

    def feed(self, chunk: bytes) -> list[RawProduct]:
        """Consume *chunk* and return the products completed by it, in document order."""

        self.bytes_read += len(chunk)
        return self._parse(chunk, False)

    def close(self) -> list[RawProduct]:
        return self._parse(b"", True)


def parse_feed(chunks: Iterable[bytes] | bytes) -> list[RawProduct]:
    """Parse a whole feed held in memory (used by tooling and tests)."""

    if isinstance(chunks, bytes):
        chunks = [chunks]
    extractor = FeedExtractor()
    products: list[RawProduct] = []
    for chunk in chunks:
        products.extend(extractor.feed(chunk))
    products.extend(extractor.close())
    return products


__all__ = [
    "FeedExtractor",
    "ParserState",
    "VariantOption",
    "on_end",
    "on_start",
    "on_text",
    "parse_feed",
]
