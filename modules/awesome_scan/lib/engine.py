"""
Batch scan orchestrator.

Three phases, strictly sequential:
  1. discovery   adapter.enumerate_work_items(source_url)
  2. details     adapter.fetch_detail(item) per item, fixed delay between calls
  3. enrichment  adapter.fetch_enrichment(source_url, items), best effort

Error policy:
  - zero discovered items          -> NoItemsFound
  - rate limit during discovery    -> RateLimited (empty result)
  - other discovery failure        -> ScanFailed
  - rate limit during details      -> one alert, stop, keep partial -> RateLimited
  - other detail failure           -> DetailFetchFailed logged, item skipped
  - nothing fetched, not limited   -> ScanFailed + alert
  - enrichment failure             -> EnrichmentFailed on the outcome (soft alert if rate limited)
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import replace

from modules._shared import logging_bridge
from service.errors import (
    DetailFetchFailed,
    EnrichmentFailed,
    NoItemsFound,
    RateLimited,
    RateLimitedError,
    ScanFailed,
)
from service.store import now_iso

from .adapters.base import ScanAdapter
from .models import Repository, ScanOutcome, ScanProgress, ScanResult, WorkItem

DEFAULT_DELAY_SECONDS = 0.1

AlertFn = Callable[[str, str], None]
ProgressFn = Callable[[ScanProgress], None]


def apply_enrichment(records: list[Repository], dates: Mapping[str, str]) -> list[Repository]:
    """
    Return a new list with `added_to_list_at` filled from `dates` ({full_name: ts}).
    Names match case-insensitively; records without a date keep their value.
    Nothing else about a record changes, so re-applying the same map is a no-op.
    """
    by_name = {str(k).lower(): v for k, v in (dates or {}).items()}
    out: list[Repository] = []
    for rec in records:
        ts = by_name.get(rec.full_name.lower())
        out.append(replace(rec, added_to_list_at=ts) if ts else rec)
    return out


def _no_alert(title: str, body: str) -> None:
    return None


class ScanOrchestrator:
    def __init__(
        self,
        adapter: ScanAdapter,
        *,
        alert: AlertFn | None = None,
        delay_seconds: float = DEFAULT_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        on_progress: ProgressFn | None = None,
        enrich: bool = True,
    ) -> None:
        self.adapter = adapter
        self.enrich = enrich
        self._alert = alert or _no_alert
        self.delay_seconds = max(0.0, float(delay_seconds))
        self._sleep = sleep
        self._on_progress = on_progress
        self.progress = ScanProgress(current=0, total=0)

    # ---- Public API ----
    def scan(self, source_url: str) -> ScanOutcome:
        t0 = time.perf_counter_ns()
        result = ScanResult(source_url=source_url)
        outcome = ScanOutcome(result=result)
        self.progress = ScanProgress(current=0, total=0)

        # ---- phase 1: discovery ----
        try:
            items = self.adapter.enumerate_work_items(source_url)
        except RateLimitedError as e:
            outcome.rate_limited = True
            outcome.error = RateLimited(str(e))
            self._alert(f"{self.adapter.service_name} Rate Limit Reached", self.adapter.rate_limit_hint)
            return self._finish(outcome, t0, discovered=0)
        except Exception as e:
            outcome.error = ScanFailed(f"Could not list items in {source_url}: {e}")
            return self._finish(outcome, t0, discovered=0)

        if not items:
            outcome.error = NoItemsFound(f"No items found in {source_url}")
            return self._finish(outcome, t0, discovered=0)

        # ---- phase 2: details ----
        total = len(items)
        self._publish(ScanProgress(current=0, total=total))
        records: list[Repository] = []

        for i, item in enumerate(items):
            try:
                rec = self.adapter.fetch_detail(item)
            except RateLimitedError as e:
                outcome.rate_limited = True
                outcome.error = RateLimited(f"Rate limited after {len(records)} of {total} items: {e}")
                self._alert(f"{self.adapter.service_name} Rate Limit Reached", self.adapter.rate_limit_hint)
                break
            except Exception as e:
                failure = DetailFetchFailed(f"{item.full_name}: {e}")
                outcome.skipped.append(failure)
                logging_bridge.error({
                    "component": "awesome_scan.engine",
                    "op": "detail_fetch_failed",
                    "item": item.full_name,
                    "error": repr(e),
                })
            else:
                records.append(replace(rec, category=item.category))
                self._publish(ScanProgress(current=i + 1, total=total, current_item=item.full_name))

            if self.delay_seconds:
                self._sleep(self.delay_seconds)

        if not records and not outcome.rate_limited:
            outcome.error = ScanFailed(f"Failed to fetch any of {total} items from {source_url}")
            self._alert(
                "Scan Failed",
                f"Failed to fetch repository information. You may have hit the "
                f"{self.adapter.service_name} API rate limit.",
            )

        # ---- phase 3: enrichment (best effort) ----
        if records and self.enrich:
            records = self._enrich(outcome, source_url, items, records)

        result.records = records
        return self._finish(outcome, t0, discovered=total)

    # ---- internals ----
    def _enrich(
        self,
        outcome: ScanOutcome,
        source_url: str,
        items: list[WorkItem],
        records: list[Repository],
    ) -> list[Repository]:
        try:
            dates = self.adapter.fetch_enrichment(source_url, items)
        except RateLimitedError as e:
            outcome.enrichment_error = EnrichmentFailed(str(e))
            self._alert(
                "Rate Limit Warning",
                'Could not fetch "added to list" dates due to rate limiting. Repository data is still available.',
            )
            return records
        except Exception as e:
            outcome.enrichment_error = EnrichmentFailed(str(e))
            logging_bridge.error({
                "component": "awesome_scan.engine",
                "op": "enrichment_failed",
                "source_url": source_url,
                "error": repr(e),
            })
            return records
        return apply_enrichment(records, dates)

    def _publish(self, progress: ScanProgress) -> None:
        self.progress = progress
        if self._on_progress is not None:
            self._on_progress(progress)

    def _finish(self, outcome: ScanOutcome, t0: int, *, discovered: int) -> ScanOutcome:
        outcome.result.scanned_at = now_iso()
        logging_bridge.activity({
            "component": "awesome_scan.engine",
            "op": "summary",
            "source_url": outcome.result.source_url,
            "adapter": self.adapter.kind,
            "discovered": discovered,
            "fetched": len(outcome.result.records),
            "skipped": len(outcome.skipped),
            "rate_limited": outcome.rate_limited,
            "error": type(outcome.error).__name__ if outcome.error else None,
            "enrichment_error": str(outcome.enrichment_error) if outcome.enrichment_error else None,
            "total_us": int((time.perf_counter_ns() - t0) // 1000),
        })
        return outcome
