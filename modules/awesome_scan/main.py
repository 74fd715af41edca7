from __future__ import annotations

from typing import Any

from modules._shared.logging_bridge import activity as log_activity
from service.alerts import build_dispatcher
from service.notifications import NotificationEmitter
from service.store import KeyValueStore

from .lib import adapters, render
from .lib.config import ConfigError, Settings
from .lib.engine import ScanOrchestrator
from .lib.models import ScanOutcome
from .lib.saved_lists import SavedListStore


def run(**kwargs: Any) -> tuple[str, dict]:
    """
    Entry point for the 'awesome_scan' module.

    Accepts kwargs (from scheduler/runner/CLI), including:
      source_url: str                     # GitHub list repo, e.g. https://github.com/sindresorhus/awesome
      github_token_env: str = "GITHUB_TOKEN"
      saved_list_id: str                  # rescan a saved list and update it in place
      save_as: str                        # save the result as a new named list
      export_path / export_format         # also write JSON or CSV
      adapter / adapter_params            # "github" (default) or "stub"
      delay_seconds: float = 0.1
      sqlite_path: str

    Returns:
      (html: str, meta: dict). Partial results (rate limited, some items
      skipped) still return; the terminal error is raised only when no
      records were obtained at all.
    """
    settings = Settings.from_env_and_kwargs(kwargs)
    store = KeyValueStore(settings.sqlite_path)
    lists = SavedListStore(store)

    source_url = settings.source_url
    if settings.saved_list_id:
        saved = lists.get(settings.saved_list_id)
        if saved is None:
            raise ConfigError(f"No saved list with id {settings.saved_list_id!r}")
        source_url = saved.url

    log_activity({
        "component": "awesome_scan.main",
        "op": "start",
        "source_url": source_url,
        "adapter": settings.adapter,
        "saved_list_id": settings.saved_list_id,
        "save_as": settings.save_as,
        "authenticated": bool(settings.github_token_env),
    })

    emitter = NotificationEmitter(history=None, dispatcher=build_dispatcher(settings.alerts))
    adapter = adapters.get(settings.adapter)(**settings.adapter_kwargs())
    try:
        orchestrator = ScanOrchestrator(
            adapter,
            alert=emitter.alert,
            delay_seconds=settings.delay_seconds,
            enrich=not settings.skip_enrichment,
        )
        outcome = orchestrator.scan(source_url)
    finally:
        adapter.close()

    records = outcome.result.records
    if not records and outcome.error is not None:
        raise outcome.error

    meta: dict[str, Any] = {
        "source_url": source_url,
        "total": len(records),
        "skipped": len(outcome.skipped),
        "rate_limited": outcome.rate_limited,
        "error": str(outcome.error) if outcome.error else None,
        "enrichment_error": str(outcome.enrichment_error) if outcome.enrichment_error else None,
        "scanned_at": outcome.result.scanned_at,
    }

    if settings.saved_list_id:
        saved = lists.update(settings.saved_list_id, records, last_scanned=outcome.result.scanned_at)
        meta["saved_list_id"] = saved.id
    elif settings.save_as:
        saved = lists.save(settings.save_as, source_url, records, last_scanned=outcome.result.scanned_at)
        meta["saved_list_id"] = saved.id

    if settings.export_path:
        meta["export_format"] = render.write_export(records, settings.export_path, settings.export_format)
        meta["export_path"] = settings.export_path

    meta["message"] = _summary_message(outcome)
    meta["subject"] = f"Awesome Scan: {len(records)} repositories from {source_url}"

    html = render.wrap_document(
        render.build_tables(records),
        heading=f"Awesome Scan: {source_url}",
        intro=meta["message"],
    )
    return html, meta


def _summary_message(outcome: ScanOutcome) -> str:
    n = len(outcome.result.records)
    msg = f"{n} repositories"
    if outcome.skipped:
        msg += f", {len(outcome.skipped)} skipped"
    if outcome.rate_limited:
        msg += " (stopped early: rate limited)"
    if outcome.enrichment_error:
        msg += "; added-to-list dates unavailable"
    return msg
