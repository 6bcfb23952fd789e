"""Command-line interface entry point for catalog-sync."""

from __future__ import annotations

import argparse
import asyncio
from copy import deepcopy
import logging
import os
from pathlib import Path
from typing import Any, Iterable, Mapping
from urllib.parse import urlsplit, urlunsplit

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from dotenv import load_dotenv

from catalog_sync.content import TaxonomyMapper
from catalog_sync.engine import RunResult, SyncConfig, SyncEngine
from catalog_sync.feed import open_feed_source
from catalog_sync.lock import PidFileLock
from catalog_sync.logging_config import get_logger, set_level
from catalog_sync.normalizers import resolve_usd_to_eur_rate
from catalog_sync.report import FileReporter
from catalog_sync.storage.db import get_engine, init_db_safe, make_session
from catalog_sync.storage.store import SqlCatalogStore, SqlRunRecorder

LOGGER = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).with_name("config.yml")

DEFAULT_CONFIG: dict[str, Any] = {
    "feed": {
        "url": "",
        "file": "",
        "timeout_seconds": 60,
        "chunk_size": 65536,
        "retries": 3,
    },
    "pricing": {"usd_to_eur_rate": 1.0},
    "output": {
        "sqlite_path": "catalog.sqlite",
        "report_dir": "reports/catalog-sync",
    },
    "sync": {
        "queue_size": 100,
        "progress_every": 25,
        "debug_sku": "",
    },
    "taxonomy": {"mapping_path": ""},
    "schedule": {"minutes": 360},
    "locale": "en",
}

ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "CATALOG_SYNC_FEED_URL": ("feed", "url"),
    "CATALOG_SYNC_FEED_FILE": ("feed", "file"),
    "CATALOG_SYNC_REPORT_DIR": ("output", "report_dir"),
    "CATALOG_SYNC_USD_TO_EUR_RATE": ("pricing", "usd_to_eur_rate"),
}


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the application."""

    parser = argparse.ArgumentParser(
        description="Import the vendor XML catalog feed into the storefront database."
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sync instead of on a schedule.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Look up and classify every product without writing to the database.",
    )
    parser.add_argument(
        "--parse-only",
        action="store_true",
        help="Parse and normalize the feed without touching the catalog at all.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        help="Stop after this many products (disables the missing-product sweep).",
    )
    parser.add_argument("--file", dest="feed_file", type=str, help="Read the feed from a local XML file.")
    parser.add_argument("--feed-url", type=str, help="Override the feed URL.")
    parser.add_argument("--report-dir", type=str, help="Directory for per-run reports and the lock file.")
    parser.add_argument("--config", type=str, help="Path to a YAML configuration file.")
    parser.add_argument(
        "--run-id",
        type=int,
        help="Adopt a run record created beforehand by the admin surface.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")

    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.limit is not None and args.limit <= 0:
        parser.error("--limit must be a positive integer")
    if args.dry_run and args.parse_only:
        parser.error("--dry-run and --parse-only are mutually exclusive")
    if args.dry_run or args.parse_only or args.limit:
        args.once = True
    return args


def _deep_merge(default: Any, override: Any) -> Any:
    if not isinstance(default, dict) or not isinstance(override, dict):
        return deepcopy(override)

    merged: dict[str, Any] = deepcopy(default)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


def _load_config(path: Path) -> dict[str, Any]:
    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    else:
        LOGGER.warning("Configuration file %s not found; using defaults", path)
        data = {}

    return _deep_merge(DEFAULT_CONFIG, data) if data else deepcopy(DEFAULT_CONFIG)


def _apply_env_overrides(config: dict[str, Any], environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    environ = os.environ if environ is None else environ
    for variable, (section, key) in ENV_OVERRIDES.items():
        value = (environ.get(variable) or "").strip()
        if value:
            config.setdefault(section, {})[key] = value
    return config


def _apply_cli_overrides(config: dict[str, Any], args: argparse.Namespace) -> dict[str, Any]:
    if args.feed_file:
        config["feed"]["file"] = args.feed_file
    if args.feed_url:
        config["feed"]["url"] = args.feed_url
        if not args.feed_file:
            config["feed"]["file"] = ""
    if args.report_dir:
        config["output"]["report_dir"] = args.report_dir
    return config


def _resolve_run_id(args: argparse.Namespace, environ: Mapping[str, str] | None = None) -> int | None:
    if args.run_id:
        return args.run_id
    raw = ((os.environ if environ is None else environ).get("CATALOG_SYNC_RUN_ID") or "").strip()
    if not raw:
        return None
    try:
        run_id = int(raw)
    except ValueError:
        LOGGER.warning("Ignoring non-numeric CATALOG_SYNC_RUN_ID=%r", raw)
        return None
    return run_id if run_id > 0 else None


def _sanitize_url(url: str) -> str:
    if not url:
        return url
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def _sanitize_config(config: dict[str, Any], args: argparse.Namespace) -> dict[str, Any]:
    feed = config.get("feed", {})
    return {
        "feed_url": _sanitize_url(str(feed.get("url") or "")),
        "feed_file": feed.get("file") or None,
        "report_dir": config.get("output", {}).get("report_dir"),
        "dry_run": args.dry_run,
        "parse_only": args.parse_only,
        "limit": args.limit,
        "locale": config.get("locale"),
    }


def build_sync_config(
    args: argparse.Namespace,
    config: dict[str, Any],
    *,
    run_id: int | None = None,
) -> SyncConfig:
    sync_conf = config.get("sync", {})
    return SyncConfig(
        dry_run=args.dry_run,
        parse_only=args.parse_only,
        limit=args.limit,
        usd_to_eur_rate=resolve_usd_to_eur_rate(config.get("pricing", {}).get("usd_to_eur_rate")),
        queue_size=int(sync_conf.get("queue_size") or 100),
        progress_every=int(sync_conf.get("progress_every") or 25),
        debug_sku=(str(sync_conf.get("debug_sku") or "").strip() or None),
        locale=str(config.get("locale") or "en"),
        run_id=run_id,
    )


async def _run_cycle(
    args: argparse.Namespace,
    config: dict[str, Any],
    session_factory,
    mapper: TaxonomyMapper,
    *,
    run_id: int | None = None,
) -> RunResult:
    feed_conf = config.get("feed", {})
    report_dir = Path(config["output"]["report_dir"])
    reporter = FileReporter(report_dir, _sanitize_config(config, args))
    feed = open_feed_source(
        file_path=feed_conf.get("file") or None,
        url=feed_conf.get("url") or None,
        chunk_size=int(feed_conf.get("chunk_size") or 65536),
        timeout=float(feed_conf.get("timeout_seconds") or 60),
        retries=int(feed_conf.get("retries") or 3),
    )
    engine = SyncEngine(
        build_sync_config(args, config, run_id=run_id),
        feed=feed,
        store=SqlCatalogStore(session_factory),
        runs=SqlRunRecorder(session_factory),
        reporter=reporter,
        lock=PidFileLock.in_dir(report_dir),
        mapper=mapper,
    )
    result = await engine.run()
    LOGGER.info(
        "Run %s: status=%s found=%d parsed=%d created=%d updated=%d unchanged=%d errors=%d report=%s",
        result.run_id,
        result.status.value,
        result.totals.products_found,
        result.totals.products_parsed,
        result.totals.created,
        result.totals.updated,
        result.totals.unchanged,
        result.totals.errors_count,
        reporter.run_dir,
    )
    return result


async def _async_main(argv: Iterable[str] | None = None) -> RunResult | None:
    args = parse_args(argv)
    if args.debug:
        set_level(logging.DEBUG)
    LOGGER.info(
        "Parsed arguments: once=%s dry_run=%s parse_only=%s limit=%s file=%s",
        args.once,
        args.dry_run,
        args.parse_only,
        args.limit,
        args.feed_file,
    )

    load_dotenv()

    config = _load_config(Path(args.config) if args.config else DEFAULT_CONFIG_PATH)
    _apply_env_overrides(config)
    _apply_cli_overrides(config, args)
    if not (config["feed"].get("file") or config["feed"].get("url")):
        raise SystemExit("No feed configured: pass --file or --feed-url, or set feed.url")

    engine = get_engine(config.get("output", {}).get("sqlite_path", "catalog.sqlite"))
    init_db_safe(engine)
    LOGGER.info("Database initialized (existing tables preserved)")
    session_factory = make_session(engine)
    mapper = TaxonomyMapper.from_file(config.get("taxonomy", {}).get("mapping_path"))

    result = await _run_cycle(args, config, session_factory, mapper, run_id=_resolve_run_id(args))
    if args.once:
        return result

    interval_minutes = int(config.get("schedule", {}).get("minutes", 360) or 360)
    if interval_minutes <= 0:
        interval_minutes = 360

    scheduler = AsyncIOScheduler()

    async def scheduled_cycle() -> None:
        try:
            await _run_cycle(args, config, session_factory, mapper)
        except Exception:
            LOGGER.exception("Scheduled sync run failed")

    scheduler.add_job(scheduled_cycle, "interval", minutes=interval_minutes, max_instances=1)
    scheduler.start()
    LOGGER.info("Scheduler started with interval=%s minutes", interval_minutes)

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        LOGGER.info("Shutdown signal received; stopping scheduler")
    finally:
        scheduler.shutdown(wait=False)
    return None


def main(argv: Iterable[str] | None = None) -> None:
    try:
        result = asyncio.run(_async_main(argv))
    except KeyboardInterrupt:  # pragma: no cover - interactive safety
        LOGGER.info("Interrupted by user")
        return
    if result is not None and not result.ok:
        LOGGER.error("Sync finished with status %s: %s", result.status.value, result.summary)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
