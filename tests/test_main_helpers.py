import json

import pytest
import yaml
from sqlalchemy import select

from catalog_sync.main import (
    DEFAULT_CONFIG,
    _apply_cli_overrides,
    _apply_env_overrides,
    _deep_merge,
    _load_config,
    _resolve_run_id,
    _sanitize_url,
    build_sync_config,
    main,
    parse_args,
)
from catalog_sync.storage.db import get_engine, make_session
from catalog_sync.storage.models_sql import CatalogProduct, SyncRun

from conftest import feed_xml, product_xml

ENV_VARS = (
    "CATALOG_SYNC_FEED_URL",
    "CATALOG_SYNC_FEED_FILE",
    "CATALOG_SYNC_REPORT_DIR",
    "CATALOG_SYNC_USD_TO_EUR_RATE",
    "CATALOG_SYNC_RUN_ID",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_parse_args_modes_force_single_run() -> None:
    args = parse_args(["--dry-run", "--file", "feed.xml"])
    assert args.dry_run is True
    assert args.once is True
    assert args.feed_file == "feed.xml"

    assert parse_args([]).once is False
    assert parse_args(["--limit", "5"]).once is True


def test_parse_args_rejects_bad_values() -> None:
    with pytest.raises(SystemExit):
        parse_args(["--limit", "0"])
    with pytest.raises(SystemExit):
        parse_args(["--dry-run", "--parse-only"])


def test_deep_merge_keeps_defaults() -> None:
    merged = _deep_merge(DEFAULT_CONFIG, {"feed": {"url": "https://example.com/feed.xml"}, "locale": "ru"})

    assert merged["feed"]["url"] == "https://example.com/feed.xml"
    assert merged["feed"]["chunk_size"] == DEFAULT_CONFIG["feed"]["chunk_size"]
    assert merged["locale"] == "ru"
    assert DEFAULT_CONFIG["feed"]["url"] == ""


def test_load_config_missing_file_uses_defaults(tmp_path) -> None:
    config = _load_config(tmp_path / "missing.yml")

    assert config == DEFAULT_CONFIG
    assert config is not DEFAULT_CONFIG


def test_env_then_cli_overrides() -> None:
    config = _deep_merge(DEFAULT_CONFIG, {})
    _apply_env_overrides(
        config,
        {
            "CATALOG_SYNC_FEED_URL": "https://env.example.com/feed.xml",
            "CATALOG_SYNC_USD_TO_EUR_RATE": "0.9",
            "CATALOG_SYNC_REPORT_DIR": " ",
        },
    )
    assert config["feed"]["url"] == "https://env.example.com/feed.xml"
    assert config["pricing"]["usd_to_eur_rate"] == "0.9"
    assert config["output"]["report_dir"] == DEFAULT_CONFIG["output"]["report_dir"]

    _apply_cli_overrides(config, parse_args(["--report-dir", "out", "--feed-url", "https://cli.example.com/f.xml"]))
    assert config["feed"]["url"] == "https://cli.example.com/f.xml"
    assert config["output"]["report_dir"] == "out"

    sync_config = build_sync_config(parse_args(["--parse-only"]), config, run_id=4)
    assert sync_config.usd_to_eur_rate == 0.9
    assert sync_config.parse_only is True
    assert sync_config.run_id == 4


def test_rate_guard_applies_to_config() -> None:
    config = _deep_merge(DEFAULT_CONFIG, {"pricing": {"usd_to_eur_rate": 40}})

    assert build_sync_config(parse_args([]), config).usd_to_eur_rate == 1.0


def test_resolve_run_id() -> None:
    assert _resolve_run_id(parse_args(["--run-id", "12"]), {}) == 12
    assert _resolve_run_id(parse_args([]), {"CATALOG_SYNC_RUN_ID": "5"}) == 5
    assert _resolve_run_id(parse_args([]), {"CATALOG_SYNC_RUN_ID": "abc"}) is None
    assert _resolve_run_id(parse_args([]), {}) is None


def test_sanitize_url_drops_credentials_in_query() -> None:
    assert _sanitize_url("https://example.com/feed.xml?token=secret") == "https://example.com/feed.xml"
    assert _sanitize_url("") == ""


def _write_config(tmp_path) -> tuple:
    sqlite_path = tmp_path / "catalog.sqlite"
    report_dir = tmp_path / "reports"
    config_path = tmp_path / "config.yml"
    config_path.write_text(
        yaml.safe_dump(
            {
                "output": {"sqlite_path": str(sqlite_path), "report_dir": str(report_dir)},
                "pricing": {"usd_to_eur_rate": 0.9},
            }
        ),
        encoding="utf-8",
    )
    return config_path, sqlite_path, report_dir


def test_main_runs_once_from_file(tmp_path) -> None:
    config_path, sqlite_path, report_dir = _write_config(tmp_path)
    feed_path = tmp_path / "feed.xml"
    feed_path.write_bytes(feed_xml(product_xml("1")))

    main(["--once", "--config", str(config_path), "--file", str(feed_path)])

    session_factory = make_session(get_engine(str(sqlite_path)))
    with session_factory() as session:
        product = session.execute(select(CatalogProduct)).scalar_one()
        run = session.execute(select(SyncRun)).scalar_one()
    assert product.price == "90.00"
    assert run.status == "SUCCESS"
    reports = list(report_dir.glob("*/report.json"))
    assert len(reports) == 1
    assert json.loads(reports[0].read_text(encoding="utf-8"))["config"]["usd_to_eur_rate"] == 0.9


def test_main_exits_non_zero_on_failure(tmp_path) -> None:
    config_path, _, _ = _write_config(tmp_path)

    with pytest.raises(SystemExit) as excinfo:
        main(["--once", "--config", str(config_path), "--file", str(tmp_path / "missing.xml")])

    assert excinfo.value.code == 1
