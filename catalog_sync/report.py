"""Per-run report artifacts: run log, error log, JSON and Markdown reports."""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Protocol

from catalog_sync.logging_config import get_logger

LOGGER = get_logger(__name__)


class Reporter(Protocol):
    run_dir: Path
    json_path: Path
    md_path: Path

    def log(self, message: str) -> None: ...

    def write_error(self, entry: dict[str, Any]) -> None: ...

    def write_report(self, report: dict[str, Any]) -> None: ...


def _atomic_write(path: Path, content: str) -> None:
    with NamedTemporaryFile(
        mode="w", encoding="utf-8", dir=str(path.parent), delete=False
    ) as handle:
        handle.write(content)
        handle.flush()
        os.fsync(handle.fileno())
        tmp_name = handle.name
    os.replace(tmp_name, path)


def priced_count(totals: dict[str, int], swept: int = 0) -> int:
    """Visible priced products among those parsed in this run."""

    inactive_in_feed = max(0, totals.get("deactivated", 0) - swept)
    return max(
        0,
        totals.get("products_parsed", 0)
        - inactive_in_feed
        - totals.get("hidden_no_price", 0)
        - totals.get("price_on_request", 0),
    )


def format_markdown(report: dict[str, Any]) -> str:
    totals: dict[str, int] = report.get("totals", {})
    duration_s = round((report.get("duration_ms") or 0) / 1000)
    lines = [
        "# XML catalog sync report",
        "",
        f"Status: {report.get('status', '')}",
        f"Started: {report.get('started_at', '')}",
        f"Finished: {report.get('finished_at', '')}",
        f"Duration: {duration_s}s",
        "",
        "## Totals",
        f"- Products found: {totals.get('products_found', 0)}",
        f"- Products parsed: {totals.get('products_parsed', 0)}",
        f"- Variants found: {totals.get('variants_found', 0)}",
        f"- Variants parsed: {totals.get('variants_parsed', 0)}",
        f"- Created: {totals.get('created', 0)}",
        f"- Updated: {totals.get('updated', 0)}",
        f"- Unchanged: {totals.get('unchanged', 0)}",
        f"- Deactivated: {totals.get('deactivated', 0)}",
        f"- Swept (missing from feed): {report.get('swept') or 0}",
        f"- Priced: {priced_count(totals, report.get('swept') or 0)}",
        f"- Price on request: {totals.get('price_on_request', 0)}",
        f"- Hidden (no price): {totals.get('hidden_no_price', 0)}",
        f"- Errors: {totals.get('errors_count', 0)}",
        "",
    ]
    if report.get("note"):
        lines.extend(["## Note", f"- {report['note']}", ""])

    lines.append("## Price changes")
    changes = report.get("price_changed") or []
    if not changes:
        lines.append("- none")
    for change in changes:
        old_price = change["old_price"] or "(hidden)"
        new_price = change["new_price"] or "(hidden)"
        lines.append(f"- {change['product_code']}: {old_price} -> {new_price}")
    lines.append("")

    lines.append("## Top errors")
    errors = report.get("top_errors") or []
    if not errors:
        lines.append("- none")
    for error in errors:
        location = f" ({error['product_code']})" if error.get("product_code") else ""
        lines.append(f"- {error['message']}{location}")
    lines.append("")
    return "\n".join(lines)


class FileReporter:
    """Writes artifacts into ``<report_dir>/<YYYY-MM-DD_HHMMSS>/``."""

    def __init__(self, report_dir: str | Path, config: dict[str, Any] | None = None) -> None:
        base_dir = Path(report_dir).resolve()
        base_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y-%m-%d_%H%M%S")
        run_dir = base_dir / stamp
        suffix = 1
        while run_dir.exists():
            suffix += 1
            run_dir = base_dir / f"{stamp}_{suffix}"
        run_dir.mkdir(parents=True)

        self.run_dir = run_dir
        self.log_path = run_dir / "run.log"
        self.errors_path = run_dir / "errors.jsonl"
        self.json_path = run_dir / "report.json"
        self.md_path = run_dir / "report.md"
        self.log_path.write_text("", encoding="utf-8")
        self.errors_path.write_text("", encoding="utf-8")

        self.log(f"Report directory: {run_dir}")
        if config is not None:
            self.log(f"Config: {json.dumps(config, ensure_ascii=False, default=str)}")

    def log(self, message: str) -> None:
        line = f"[{datetime.now(timezone.utc).isoformat()}] {message}"
        with self.log_path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
        LOGGER.info(message)

    def write_error(self, entry: dict[str, Any]) -> None:
        with self.errors_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")

    def write_report(self, report: dict[str, Any]) -> None:
        _atomic_write(self.json_path, json.dumps(report, ensure_ascii=False, indent=2, default=str))
        _atomic_write(self.md_path, format_markdown(report))


__all__ = ["FileReporter", "Reporter", "format_markdown", "priced_count"]
