"""Run-level accounting: totals, price changes, top errors and checkpoints."""

from __future__ import annotations

import traceback
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from catalog_sync.logging_config import get_logger
from catalog_sync.models import Classification, PriceChange, Visibility
from catalog_sync.report import Reporter

LOGGER = get_logger(__name__)

PROGRESS_EVERY = 25
MAX_TOP_ERRORS = 10


@dataclass
class RunTotals:
    products_found: int = 0
    products_parsed: int = 0
    variants_found: int = 0
    variants_parsed: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deactivated: int = 0
    hidden_no_price: int = 0
    price_on_request: int = 0
    errors_count: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class RunLedger:
    """Observes every stage of a run and decides when to checkpoint.

    Only the first ``max_top_errors`` errors are kept in memory; all of them
    are streamed to the reporter's error log.
    """

    reporter: Reporter | None = None
    progress_every: int = PROGRESS_EVERY
    max_top_errors: int = MAX_TOP_ERRORS
    totals: RunTotals = field(default_factory=RunTotals)
    price_changes: list[PriceChange] = field(default_factory=list)
    top_errors: list[dict[str, Any]] = field(default_factory=list)
    # rows hidden by the sweep; part of totals.deactivated but never parsed
    swept: int = 0

    def __post_init__(self) -> None:
        self._last_checkpoint = 0

    def log(self, message: str) -> None:
        if self.reporter is not None:
            self.reporter.log(message)
        else:
            LOGGER.info(message)

    def record_error(
        self,
        message: str,
        *,
        product_code: str | None = None,
        url: str | None = None,
        context: dict[str, Any] | None = None,
        exc: BaseException | None = None,
    ) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "message": message,
        }
        if product_code:
            entry["product_code"] = product_code
        if url:
            entry["url"] = url
        if context:
            entry["context"] = context
        if exc is not None:
            entry.setdefault("context", {})["error"] = str(exc)
            entry["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

        self.totals.errors_count += 1
        if len(self.top_errors) < self.max_top_errors:
            self.top_errors.append({k: v for k, v in entry.items() if k != "stack"})
        if self.reporter is not None:
            self.reporter.write_error(entry)
        self.log(f"Error: {message}" + (f" [{product_code}]" if product_code else ""))
        return entry

    def record_found(self) -> None:
        self.totals.products_found += 1

    def record_variants(self, found: int, parsed: int) -> None:
        self.totals.variants_found += found
        self.totals.variants_parsed += parsed

    def record_visibility(self, visibility: Visibility) -> None:
        if visibility is Visibility.INACTIVE:
            self.totals.deactivated += 1
        elif visibility is Visibility.PRICE_ON_REQUEST:
            self.totals.price_on_request += 1
        elif visibility is Visibility.HIDDEN_NO_PRICE:
            self.totals.hidden_no_price += 1

    def record_classification(self, classification: Classification) -> None:
        if classification is Classification.CREATED:
            self.totals.created += 1
        elif classification is Classification.UPDATED:
            self.totals.updated += 1
        else:
            self.totals.unchanged += 1

    def record_price_change(self, product_code: str, old_price: str, new_price: str) -> None:
        self.price_changes.append(PriceChange(product_code, old_price, new_price))

    def record_deactivated(self, count: int) -> None:
        self.totals.deactivated += count
        self.swept += count

    def record_processed(self) -> bool:
        """Count one attempted product; returns True when a checkpoint is due."""

        self.totals.products_parsed += 1
        parsed = self.totals.products_parsed
        if parsed % self.progress_every == 0:
            self.log(
                f"Progress: parsed {parsed}, created {self.totals.created}, "
                f"updated {self.totals.updated}, hidden {self.totals.hidden_no_price}, "
                f"price-on-request {self.totals.price_on_request}."
            )
        if parsed - self._last_checkpoint >= self.progress_every:
            self._last_checkpoint = parsed
            return True
        return False

    def price_changes_as_dicts(self) -> list[dict[str, str]]:
        return [asdict(change) for change in self.price_changes]


__all__ = ["MAX_TOP_ERRORS", "PROGRESS_EVERY", "RunLedger", "RunTotals"]
