"""Run orchestration: lock, stream, reconcile, sweep and finalize."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from catalog_sync.content import TaxonomyMapper
from catalog_sync.errors import (
    LockContentionError,
    NeedAuthError,
    RecordPersistError,
    RecordValidationError,
    SweepError,
)
from catalog_sync.extractors.feed_parser import FeedExtractor
from catalog_sync.feed import FeedSource
from catalog_sync.ledger import PROGRESS_EVERY, RunLedger, RunTotals
from catalog_sync.lock import RunLock
from catalog_sync.logging_config import get_logger
from catalog_sync.messages import Messages
from catalog_sync.models import RawProduct, RunStatus
from catalog_sync.reconcile import ProductReconciler
from catalog_sync.report import Reporter
from catalog_sync.storage.store import CatalogStore, RunRecorder

LOGGER = get_logger(__name__)

DEFAULT_QUEUE_SIZE = 100


@dataclass
class SyncConfig:
    dry_run: bool = False
    parse_only: bool = False
    limit: Optional[int] = None
    usd_to_eur_rate: float = 1.0
    queue_size: int = DEFAULT_QUEUE_SIZE
    progress_every: int = PROGRESS_EVERY
    debug_sku: Optional[str] = None
    locale: str = "en"
    run_id: Optional[int] = None


@dataclass
class RunResult:
    run_id: Optional[int]
    status: RunStatus
    summary: str
    hint: Optional[str]
    totals: RunTotals
    duration_ms: int
    price_changes: list[dict[str, str]] = field(default_factory=list)
    top_errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.SUCCESS


@dataclass(frozen=True)
class _EndOfFeed:
    error: Optional[BaseException] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncEngine:
    """Drives one sync run from feed bytes to a terminal run record.

    A producer task parses the feed into a bounded queue; the consumer
    reconciles products in document order. Lock release, the report write
    and the terminal run update happen whatever the outcome.
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        feed: FeedSource,
        store: Optional[CatalogStore] = None,
        runs: Optional[RunRecorder] = None,
        reporter: Optional[Reporter] = None,
        lock: Optional[RunLock] = None,
        mapper: Optional[TaxonomyMapper] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config
        self.feed = feed
        self.store = store
        self.runs = runs
        self.reporter = reporter
        self.lock = lock
        self.messages = Messages(config.locale)
        self._clock = clock or _utcnow
        self.reconciler = ProductReconciler(
            None if config.parse_only else store,
            rate=config.usd_to_eur_rate,
            mapper=mapper,
            dry_run=config.dry_run,
            parse_only=config.parse_only,
            debug_sku=config.debug_sku,
            clock=self._clock,
        )

    async def run(self) -> RunResult:
        started_at = self._clock()
        ledger = RunLedger(self.reporter, progress_every=max(1, self.config.progress_every))
        run_id = await self._start_run(started_at)
        ledger.log(
            f"Sync run {run_id or '-'} started: feed={self.feed.location} "
            f"dry_run={self.config.dry_run} parse_only={self.config.parse_only} "
            f"limit={self.config.limit or '-'} rate={self.config.usd_to_eur_rate}"
        )

        fatal: Optional[BaseException] = None
        acquired = False
        try:
            if self.lock is not None:
                self.lock.acquire()
                acquired = True
            fatal = await self._pump(ledger, run_id)
            if self._should_sweep(fatal, ledger):
                await self._sweep(ledger)
        except LockContentionError as exc:
            fatal = exc
            ledger.log(f"Lock is held by another run: {exc}")
        except Exception as exc:
            fatal = exc
            ledger.record_error("Sync aborted", exc=exc)
            raise
        finally:
            if acquired and self.lock is not None:
                self.lock.release()
            result = await self._finalize(run_id, started_at, ledger, fatal)
        return result

    async def _start_run(self, started_at: datetime) -> Optional[int]:
        if self.runs is None:
            return self.config.run_id
        report_paths: dict[str, str] = {}
        if self.reporter is not None:
            report_paths = {
                "report_dir": str(self.reporter.run_dir),
                "report_json_path": str(self.reporter.json_path),
                "report_md_path": str(self.reporter.md_path),
            }
        return await self.runs.start(
            started_at=started_at,
            summary=self.messages.start(
                dry_run=self.config.dry_run, parse_only=self.config.parse_only
            ),
            report_paths=report_paths,
            run_id=self.config.run_id,
        )

    async def _produce(self, queue: asyncio.Queue, ledger: RunLedger) -> None:
        extractor = FeedExtractor()
        error: Optional[BaseException] = None
        try:
            async for chunk in self.feed.chunks():
                for product in extractor.feed(chunk):
                    ledger.record_found()
                    await queue.put(product)
            for product in extractor.close():
                ledger.record_found()
                await queue.put(product)
            LOGGER.debug("Feed exhausted after %s bytes", extractor.bytes_read)
        except Exception as exc:
            error = exc
            # Products closed before the failing byte are still reconciled.
            for product in extractor.state.take_completed():
                ledger.record_found()
                await queue.put(product)
            ledger.record_error(
                "Feed processing failed",
                url=getattr(exc, "url", None) or self.feed.location,
                context={"bytes_read": extractor.bytes_read},
                exc=exc,
            )
        await queue.put(_EndOfFeed(error))

    async def _pump(self, ledger: RunLedger, run_id: Optional[int]) -> Optional[BaseException]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, self.config.queue_size))
        producer = asyncio.create_task(self._produce(queue, ledger))
        limit = self.config.limit
        processed = 0
        try:
            while True:
                item = await queue.get()
                if isinstance(item, _EndOfFeed):
                    return item.error
                await self._consume(item, ledger, run_id)
                processed += 1
                if limit and processed >= limit:
                    ledger.log(f"Limit of {limit} products reached; stopping.")
                    return None
        finally:
            if not producer.done():
                producer.cancel()
            await asyncio.gather(producer, return_exceptions=True)

    async def _consume(self, product: RawProduct, ledger: RunLedger, run_id: Optional[int]) -> None:
        try:
            outcome = await self.reconciler.reconcile(product)
        except (RecordValidationError, RecordPersistError) as exc:
            ledger.record_error(
                exc.message,
                product_code=exc.product_code or product.id,
                url=product.url,
                context={key: value for key, value in exc.context.items() if value is not None},
                exc=exc,
            )
        except Exception as exc:
            ledger.record_error("Product import failed", product_code=product.id, url=product.url, exc=exc)
        else:
            ledger.record_variants(outcome.variants_found, outcome.variants_parsed)
            ledger.record_visibility(outcome.visibility)
            if outcome.classification is not None:
                ledger.record_classification(outcome.classification)
            if outcome.price_changed:
                ledger.record_price_change(outcome.product_code, outcome.previous_price or "", outcome.price)

        if ledger.record_processed():
            await self._checkpoint(run_id, ledger)

    async def _checkpoint(self, run_id: Optional[int], ledger: RunLedger) -> None:
        if self.runs is None:
            return
        try:
            await self.runs.checkpoint(run_id, ledger.totals, len(ledger.price_changes))
        except Exception as exc:
            LOGGER.warning("Run checkpoint failed: %s", exc)

    def _should_sweep(self, fatal: Optional[BaseException], ledger: RunLedger) -> bool:
        return (
            fatal is None
            and not self.config.limit
            and not self.config.dry_run
            and not self.config.parse_only
            and self.store is not None
            and ledger.totals.products_found > 0
        )

    async def _sweep(self, ledger: RunLedger) -> None:
        assert self.store is not None
        seen = self.reconciler.seen_codes
        try:
            hidden = await self.store.bulk_hide(seen)
        except Exception as exc:
            error = SweepError(seen=len(seen))
            ledger.record_error(error.message, context=error.context, exc=exc)
            return
        ledger.record_deactivated(hidden)
        ledger.log(f"Sweep hid {hidden} previously visible products missing from the feed.")

    def _outcome(
        self, fatal: Optional[BaseException], ledger: RunLedger
    ) -> tuple[RunStatus, str, Optional[str], str]:
        rate_note = self.messages.get("rate_note", rate=self.config.usd_to_eur_rate)
        if isinstance(fatal, LockContentionError):
            return (
                RunStatus.FAILED,
                self.messages.get("locked"),
                self.messages.get("locked_hint"),
                self.messages.get("locked_note"),
            )
        if isinstance(fatal, NeedAuthError):
            return (
                RunStatus.NEED_AUTH,
                self.messages.get("need_auth"),
                self.messages.get("need_auth_hint"),
                rate_note,
            )
        if fatal is not None:
            return (
                RunStatus.FAILED,
                self.messages.get("failed"),
                self.messages.get("failed_hint"),
                rate_note,
            )
        summary = self.messages.done(
            ledger.totals.as_dict(), dry_run=self.config.dry_run, parse_only=self.config.parse_only
        )
        return RunStatus.SUCCESS, summary, None, rate_note

    async def _finalize(
        self,
        run_id: Optional[int],
        started_at: datetime,
        ledger: RunLedger,
        fatal: Optional[BaseException],
    ) -> RunResult:
        finished_at = self._clock()
        duration_ms = max(0, int((finished_at - started_at).total_seconds() * 1000))
        status, summary, hint, note = self._outcome(fatal, ledger)
        totals = ledger.totals
        price_changes = ledger.price_changes_as_dicts()

        if self.reporter is not None:
            report = {
                "status": status.value,
                "started_at": started_at.isoformat(),
                "finished_at": finished_at.isoformat(),
                "duration_ms": duration_ms,
                "config": asdict(self.config),
                "totals": totals.as_dict(),
                "swept": ledger.swept,
                "note": note,
                "price_changed": price_changes,
                "top_errors": list(ledger.top_errors),
            }
            try:
                self.reporter.write_report(report)
                ledger.log("Report saved.")
            except OSError as exc:
                LOGGER.error("Failed to write run report: %s", exc)

        ledger.log(f"Summary: {summary}")
        if hint:
            ledger.log(f"Hint: {hint}")

        if self.runs is not None:
            try:
                await self.runs.finish(
                    run_id,
                    status=status,
                    summary=summary,
                    hint=hint,
                    finished_at=finished_at,
                    duration_ms=duration_ms,
                    totals=totals,
                    price_changed_count=len(price_changes),
                )
            except Exception as exc:
                LOGGER.error("Failed to persist terminal run status: %s", exc)

        LOGGER.info("Sync run %s finished with status %s", run_id or "-", status.value)
        return RunResult(
            run_id=run_id,
            status=status,
            summary=summary,
            hint=hint,
            totals=totals,
            duration_ms=duration_ms,
            price_changes=price_changes,
            top_errors=list(ledger.top_errors),
        )


__all__ = ["RunResult", "SyncConfig", "SyncEngine"]
