"""Custom exception types for catalog-sync."""

from __future__ import annotations

from typing import Any, Optional


class CatalogSyncError(Exception):
    """Base class for engine errors carrying optional feed context."""

    default_message = "Catalog sync error."

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        product_code: Optional[str] = None,
        url: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.message = message or self.default_message
        self.product_code = product_code
        self.url = url
        self.context = context
        super().__init__(self.message)

    def __str__(self) -> str:
        context_parts: list[str] = []
        if self.product_code:
            context_parts.append(f"product={self.product_code}")
        if self.url:
            context_parts.append(f"url={self.url}")
        for key, value in self.context.items():
            if value is not None:
                context_parts.append(f"{key}={value}")
        context = ", ".join(context_parts)
        return f"{self.message} ({context})" if context else self.message


class ParseError(CatalogSyncError):
    """Raised when the feed byte stream is not well-formed XML."""

    default_message = "XML parse error."


class FeedFetchError(CatalogSyncError):
    """Raised when the feed cannot be obtained from its transport."""

    default_message = "Failed to fetch feed."


class NeedAuthError(FeedFetchError):
    """Raised when the feed endpoint answers with a challenge page instead of XML."""

    default_message = "Feed endpoint requires verification."


class LockContentionError(CatalogSyncError):
    """Raised when another live run already holds the run lock."""

    default_message = "Another sync run is already active."


class RecordValidationError(CatalogSyncError):
    """Raised for a feed record that cannot be reconciled (skipped, non-fatal)."""

    default_message = "Invalid product record."


class RecordPersistError(CatalogSyncError):
    """Raised when a single record's store lookup or write fails (non-fatal)."""

    default_message = "Product import failed."


class SweepError(CatalogSyncError):
    """Raised when hiding products missing from the feed fails (non-fatal)."""

    default_message = "Failed to deactivate missing products."


__all__ = [
    "CatalogSyncError",
    "FeedFetchError",
    "LockContentionError",
    "NeedAuthError",
    "ParseError",
    "RecordPersistError",
    "RecordValidationError",
    "SweepError",
]
