"""Localizable product content derived from the feed, and its change hash.

The hash covers exactly the inputs a translation job would read. If it is
unchanged between runs, stored translations are still valid.
"""

from __future__ import annotations

import hashlib
import json
import re
import unicodedata
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from bs4 import BeautifulSoup

from catalog_sync.logging_config import get_logger
from catalog_sync.models import RawProduct

LOGGER = get_logger(__name__)


def html_to_text(html: str | None) -> str:
    if not html:
        return ""
    text = BeautifulSoup(html, "html.parser").get_text()
    return re.sub(r"\s+", " ", text).strip()


def _list_after_heading(soup: BeautifulSoup, match: Callable[[str], bool]) -> list[str]:
    heading = next(
        (tag for tag in soup.find_all("b") if match(tag.get_text().strip().upper())),
        None,
    )
    if heading is None or heading.parent is None:
        return []
    listing = heading.parent.find_next_sibling("ul")
    if listing is None:
        return []
    items = (li.get_text().strip() for li in listing.find_all("li"))
    return [item for item in items if item]


def extract_feature_lists(html: str | None) -> tuple[list[str], list[str]]:
    """Return the (care-and-warranty, technical) bullet lists of a description.

    The vendor marks each list with a ``<b>`` heading inside a paragraph that
    is followed by a ``<ul>``.
    """

    if not html:
        return [], []
    soup = BeautifulSoup(html, "html.parser")
    care = _list_after_heading(soup, lambda title: "CARE" in title or "WARRANTY" in title)
    technical = _list_after_heading(soup, lambda title: "TECHNICAL" in title)
    return care, technical


def normalize_key(raw: str) -> str:
    text = unicodedata.normalize("NFKD", raw.strip().upper())
    text = re.sub(r"[\u0300-\u036f]", "", text)
    text = re.sub(r"[_-]+", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def slugify(value: str) -> str:
    text = unicodedata.normalize("NFKD", value)
    text = re.sub(r"[\u0300-\u036f]", "", text)
    text = re.sub(r"[^\w\s-]", "", text).strip().lower()
    slug = re.sub(r"[\s-]+", "_", text)
    slug = re.sub(r"_+", "_", slug)
    return slug or "feed"


class TaxonomyMapper:
    """Maps raw vendor taxonomy names to storefront filter values.

    The mapping file is JSON keyed by taxonomy type, each entry holding
    ``by_raw`` (exact name) and ``by_norm`` (:func:`normalize_key` form)
    lookups. Unmapped names fall back to :func:`slugify`.
    """

    def __init__(self, mapping: dict[str, Any] | None = None) -> None:
        self._mapping = mapping or {}

    @classmethod
    def from_file(cls, path: str | Path | None) -> "TaxonomyMapper":
        if not path:
            return cls()
        mapping_path = Path(path)
        if not mapping_path.exists():
            LOGGER.warning("Taxonomy mapping %s not found; using slug values", mapping_path)
            return cls()
        with mapping_path.open("r", encoding="utf-8") as handle:
            return cls(json.load(handle))

    def map_value(self, kind: str, raw: str) -> str | None:
        trimmed = raw.strip()
        if not trimmed:
            return None
        normalized = normalize_key(trimmed)
        kinds = [kind]
        if kind == "category_to_color" and "categoryTree_to_color" in self._mapping:
            kinds.append("categoryTree_to_color")
        for key in kinds:
            entry = self._mapping.get(key) or {}
            match = (entry.get("by_raw") or {}).get(trimmed) or (entry.get("by_norm") or {}).get(normalized)
            if match:
                return str(match)
        return slugify(trimmed)


@dataclass
class TaxonomyTerm:
    name: str
    value: str


@dataclass
class ProductContent:
    description: str
    feature_head: str
    care: list[str] = field(default_factory=list)
    technical: list[str] = field(default_factory=list)
    color: TaxonomyTerm | None = None
    style: TaxonomyTerm | None = None
    collection: TaxonomyTerm | None = None

    def taxonomy_names(self) -> dict[str, list[str]]:
        return {
            "colors": [self.color.name] if self.color else [],
            "collections": [self.collection.name] if self.collection else [],
            "styles": [self.style.name] if self.style else [],
        }

    def taxonomy_fields(self) -> dict[str, dict[str, str] | None]:
        return {
            kind: ({"name": term.name, "value": term.value} if term else None)
            for kind, term in (("color", self.color), ("style", self.style), ("collection", self.collection))
        }

    def feature_fields(self) -> dict[str, Any]:
        return {"head": self.feature_head, "care_and_warranty": self.care, "technical_info": self.technical}


def build_content(product: RawProduct, mapper: TaxonomyMapper) -> ProductContent:
    short_text = html_to_text(product.short_html)
    long_text = html_to_text(product.description_html)
    description = short_text or long_text
    care, technical = extract_feature_lists(product.description_html)

    details: dict[str, str] = {}
    detail_lists: dict[str, list[str]] = {}
    for detail in product.technical_details:
        key = (detail.key or "").strip()
        value = (detail.value or "").strip()
        if not key or not value:
            continue
        details[key.upper()] = value
        detail_lists.setdefault(key.upper(), []).append(value)

    color = None
    category_color = (product.category or "").strip()
    detail_color = details.get("COLOR", "").strip()
    if category_color:
        color = TaxonomyTerm(category_color, mapper.map_value("category_to_color", category_color) or "")
    elif detail_color:
        color = TaxonomyTerm(detail_color, mapper.map_value("color", detail_color) or "")

    style = None
    styles = detail_lists.get("STYLE") or []
    if styles:
        style_name = styles[-1].strip()
        style = TaxonomyTerm(style_name, mapper.map_value("style", style_name) or "")

    collection = None
    collection_name = details.get("COLLECTION", "").strip()
    if collection_name:
        collection = TaxonomyTerm(collection_name, mapper.map_value("collection", collection_name) or "")

    return ProductContent(
        description=description,
        feature_head=long_text or description,
        care=care,
        technical=technical,
        color=color,
        style=style,
        collection=collection,
    )


def compute_content_hash(product: RawProduct, content: ProductContent) -> str:
    """SHA-256 over every field that feeds localized text, in a fixed layout."""

    payload = {
        "short_html": product.short_html or "",
        "description_html": product.description_html or "",
        "technical_details": [
            {"key": detail.key or "", "value": detail.value or ""} for detail in product.technical_details
        ],
        "feature_head": content.feature_head,
        "care": content.care,
        "technical": content.technical,
        "taxonomy": content.taxonomy_names(),
    }
    encoded = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


__all__ = [
    "ProductContent",
    "TaxonomyMapper",
    "TaxonomyTerm",
    "build_content",
    "compute_content_hash",
    "extract_feature_lists",
    "html_to_text",
    "normalize_key",
    "slugify",
]
