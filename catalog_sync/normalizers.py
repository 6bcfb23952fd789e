"""Utility helpers for normalising raw feed text values.

Everything here is total: unparseable input yields ``None``/``0``/``False`` or
an ``invalid`` classification, never an exception. A missing price is data.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any

from catalog_sync.logging_config import get_logger

LOGGER = get_logger(__name__)

RATE_MIN = 0.2
RATE_MAX = 2.0

_CENT = Decimal("0.01")
_NUMBER_PATTERN = re.compile(r"(?P<sign>-)?\s*(?P<number>\d[\d\s.,']*)")
_LEADING_NUMBER = re.compile(r"^[-+]?\d+(?:\.\d+)?")
SIZE_PATTERN = re.compile(
    r"(\d+(?:[.,]\d+)?)\s*[x\u00d7\u0445]\s*(\d+(?:[.,]\d+)?)",
    re.IGNORECASE,
)
_UNIT_PATTERN = re.compile(r"cm", re.IGNORECASE)
_COMBINING = re.compile(r"[\u0300-\u036f]")

SPECIAL_SIZE_LABELS = frozenset({"ozel olcu", "custom size"})
SIZE_OPTION_MARKERS = ("size", "ebat", "olcu", "boyut")

_TRUE_FLAGS = {"evet", "true", "1", "yes", "y"}
_FALSE_FLAGS = {"hayir", "false", "0", "no", "n"}


class PriceClass(str, Enum):
    OK = "ok"
    ZERO_OR_NEGATIVE = "zero_or_negative"
    INVALID = "invalid"


@dataclass(frozen=True)
class PriceResult:
    value: float | None
    classification: PriceClass

    @property
    def positive(self) -> float | None:
        return self.value if self.classification is PriceClass.OK else None


def fold_text(value: str) -> str:
    """Case-, diacritic- and Turkish-dotless-i-insensitive form of *value*."""

    text = value.replace("ı", "i").replace("İ", "I")
    text = unicodedata.normalize("NFKD", text)
    text = _COMBINING.sub("", text)
    text = re.sub(r"[_-]+", " ", text.casefold())
    return re.sub(r"\s+", " ", text).strip()


def _parse_decimal(text: str | None) -> Decimal | None:
    if not text:
        return None

    match = _NUMBER_PATTERN.search(text)
    if not match:
        return None

    number = re.sub(r"[\s']", "", match.group("number")).rstrip(".,")
    if "," in number and "." in number:
        if number.rfind(",") > number.rfind("."):
            number = number.replace(".", "").replace(",", ".")
        else:
            number = number.replace(",", "")
    elif "," in number:
        groups = number.split(",")
        if len(groups) > 2 or len(groups[-1]) == 3:
            number = "".join(groups)
        else:
            number = number.replace(",", ".")
    elif number.count(".") > 1:
        number = number.replace(".", "")

    try:
        value = Decimal(number)
    except InvalidOperation:
        return None
    return -value if match.group("sign") else value


def normalize_price(text: str | None) -> PriceResult:
    """Parse a raw price string and classify it.

    >>> normalize_price("1,234.50")
    PriceResult(value=1234.5, classification=<PriceClass.OK: 'ok'>)
    """

    value = _parse_decimal(text)
    if value is None:
        return PriceResult(None, PriceClass.INVALID)
    if value <= 0:
        return PriceResult(float(value), PriceClass.ZERO_OR_NEGATIVE)
    return PriceResult(float(value), PriceClass.OK)


def to_eur(price: float, rate: float) -> float:
    """Convert *price* with *rate*, rounded half-up to cents."""

    converted = Decimal(str(price)) * Decimal(str(rate))
    return float(converted.quantize(_CENT, rounding=ROUND_HALF_UP))


def format_price(value: float) -> str:
    return str(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def resolve_usd_to_eur_rate(value: Any) -> float:
    """Return a usable USD->EUR rate, falling back to 1.0 on nonsense values."""

    try:
        rate = float(value)
    except (TypeError, ValueError):
        return 1.0
    if rate != rate or rate <= 0:
        return 1.0
    if rate < RATE_MIN or rate > RATE_MAX:
        LOGGER.warning(
            "USD -> EUR rate looks wrong (%s); falling back to 1. Set a realistic rate.",
            rate,
        )
        return 1.0
    return rate


def _format_dimension(raw: str) -> str:
    value = Decimal(raw.replace(",", "."))
    return format(value.normalize(), "f")


def normalize_size_label(text: str | None) -> str | None:
    """Canonicalise ``80x150cm``-style labels to ``80 x 150 cm``.

    Labels without a dimension pattern are returned whitespace-collapsed.
    """

    if not text:
        return None
    cleaned = re.sub(r"\s+", " ", text).strip()
    if not cleaned:
        return None
    match = SIZE_PATTERN.search(_UNIT_PATTERN.sub("", cleaned))
    if not match:
        return cleaned
    return f"{_format_dimension(match.group(1))} x {_format_dimension(match.group(2))} cm"


def parse_size_area(label: str | None) -> float:
    if not label:
        return 0.0
    match = SIZE_PATTERN.search(_UNIT_PATTERN.sub("", label))
    if not match:
        return 0.0
    width = Decimal(match.group(1).replace(",", "."))
    height = Decimal(match.group(2).replace(",", "."))
    return float(width * height)


def is_special_size_label(value: str | None) -> bool:
    """True for the made-to-order sentinel (``Özel Ölçü`` in any spelling)."""

    if not value:
        return False
    return fold_text(value) in SPECIAL_SIZE_LABELS


def is_size_value(value: str | None) -> bool:
    if not value or not value.strip():
        return False
    if is_special_size_label(value):
        return True
    return SIZE_PATTERN.search(value) is not None


def is_size_option_name(value: str | None) -> bool:
    if not value:
        return False
    folded = fold_text(value)
    return any(marker in folded for marker in SIZE_OPTION_MARKERS)


def normalize_flag(value: str | None) -> bool:
    text = (value or "").strip().lower()
    if not text:
        return False
    if text in _TRUE_FLAGS:
        return True
    if text in _FALSE_FLAGS:
        return False
    return "evet" in text


def parse_stock_status(value: str | None) -> bool:
    """Interpret the vendor's stock status text (numeric or Turkish/English words)."""

    text = (value or "").strip().lower()
    if not text:
        return False

    numeric = _LEADING_NUMBER.match(text.replace(",", "."))
    if numeric:
        return float(numeric.group(0)) > 0

    if "out" in text:
        return False
    if "yok" in text or "tukendi" in text or "tükendi" in text:
        return False
    if "var" in text or "stok" in text:
        return True
    if "in stock" in text or "available" in text:
        return True
    return False


__all__ = [
    "PriceClass",
    "PriceResult",
    "SIZE_PATTERN",
    "fold_text",
    "format_price",
    "is_size_option_name",
    "is_size_value",
    "is_special_size_label",
    "normalize_flag",
    "normalize_price",
    "normalize_size_label",
    "parse_size_area",
    "parse_stock_status",
    "resolve_usd_to_eur_rate",
    "to_eur",
]
