"""Short localized run summaries and hints shown on the admin surface."""

from __future__ import annotations

from typing import Any

DEFAULT_LOCALE = "en"

CATALOGS: dict[str, dict[str, str]] = {
    "en": {
        "start": "Sync started.",
        "start_dry_run": "Sync started (dry-run, no database writes).",
        "start_parse_only": "Sync started (parse-only).",
        "done": (
            "Sync finished. Found {products_found}, created {created}, "
            "updated {updated}, deactivated {deactivated}."
        ),
        "done_dry_run": (
            "Dry-run finished. Found {products_found}, created {created}, "
            "updated {updated}, deactivated {deactivated}."
        ),
        "done_parse_only": (
            "Parse-only finished. Found {products_found}, processed {products_parsed}, "
            "variants {variants_found}."
        ),
        "errors_suffix": "Errors: {errors_count}.",
        "failed": "Sync finished with an error.",
        "failed_hint": "Check access to the XML feed and the run log.",
        "need_auth": "Feed endpoint asked for verification instead of returning XML.",
        "need_auth_hint": "Open the feed URL in a browser, pass the check and retry.",
        "locked": "Sync not started: another run is in progress.",
        "locked_hint": "Wait for the previous sync to finish and retry later.",
        "locked_note": "Run skipped: an active process holds the lock.",
        "rate_note": "Feed prices are in USD. Converted to EUR at rate {rate}.",
    },
    "ru": {
        "start": "Синхронизация запущена.",
        "start_dry_run": "Синхронизация запущена (dry-run, без записи в БД).",
        "start_parse_only": "Синхронизация запущена (parse-only).",
        "done": (
            "Синхронизация завершена. Найдено {products_found}, создано {created}, "
            "обновлено {updated}, деактивировано {deactivated}."
        ),
        "done_dry_run": (
            "Dry-run завершен. Найдено {products_found}, создано {created}, "
            "обновлено {updated}, деактивировано {deactivated}."
        ),
        "done_parse_only": (
            "Parse-only завершен. Найдено {products_found}, обработано {products_parsed}, "
            "вариантов {variants_found}."
        ),
        "errors_suffix": "Ошибок: {errors_count}.",
        "failed": "Синхронизация завершилась с ошибкой.",
        "failed_hint": "Проверьте доступ к XML фиду и журнал запуска.",
        "need_auth": "Фид запросил проверку вместо XML.",
        "need_auth_hint": "Откройте ссылку на фид в браузере, пройдите проверку и повторите запуск.",
        "locked": "Синхронизация не запущена: уже выполняется другой процесс.",
        "locked_hint": "Дождитесь завершения предыдущей синхронизации и попробуйте снова.",
        "locked_note": "Запуск не выполнен: обнаружен активный процесс.",
        "rate_note": "Цены в фиде USD. Конвертация в EUR по курсу {rate}.",
    },
}


class Messages:
    """Formats catalog entries for one locale, falling back to English."""

    def __init__(self, locale: str | None = None) -> None:
        code = (locale or DEFAULT_LOCALE).lower().split("-")[0].split("_")[0]
        self.locale = code if code in CATALOGS else DEFAULT_LOCALE
        self._catalog = CATALOGS[self.locale]

    def get(self, key: str, **values: Any) -> str:
        template = self._catalog.get(key) or CATALOGS[DEFAULT_LOCALE][key]
        return template.format(**values)

    def start(self, *, dry_run: bool, parse_only: bool) -> str:
        if parse_only:
            return self.get("start_parse_only")
        if dry_run:
            return self.get("start_dry_run")
        return self.get("start")

    def done(self, totals: dict[str, int], *, dry_run: bool, parse_only: bool) -> str:
        key = "done_parse_only" if parse_only else "done_dry_run" if dry_run else "done"
        summary = self.get(key, **totals)
        if totals.get("errors_count"):
            summary = f"{summary} {self.get('errors_suffix', **totals)}"
        return summary


__all__ = ["CATALOGS", "DEFAULT_LOCALE", "Messages"]
