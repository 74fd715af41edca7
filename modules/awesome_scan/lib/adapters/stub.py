from __future__ import annotations

from typing import Any

from service.errors import FetchError, RateLimitedError

from ..models import UNCATEGORIZED, Repository, WorkItem
from .base import ScanAdapter
from .registry import register


def _raise(kind: str, what: str) -> None:
    if kind == "rate_limit":
        raise RateLimitedError(f"stub rate limit at {what}", status=403)
    raise FetchError(f"stub failure at {what}", status=500)


@register
class StubScanAdapter(ScanAdapter):
    """
    A zero-network adapter used for tests and dry-runs.

    Params:
      - items: list[{owner, name, category?}]          discovered work items
      - failures: {full_name: "error" | "rate_limit"}  per-item detail failures
      - discovery_error: "error" | "rate_limit"        fail phase 1
      - enrichment: {full_name: timestamp}             enrichment payload
      - enrichment_error: "error" | "rate_limit"       fail phase 3

    Details are synthesized: id = 1-based discovery position.
    """

    kind = "stub"
    service_name = "Stub"

    def __init__(
        self,
        items: list[dict[str, Any]] | None = None,
        failures: dict[str, str] | None = None,
        discovery_error: str | None = None,
        enrichment: dict[str, str] | None = None,
        enrichment_error: str | None = None,
        **_: Any,
    ) -> None:
        self.items = [
            WorkItem(owner=str(d["owner"]), name=str(d["name"]), category=str(d.get("category") or UNCATEGORIZED))
            for d in (items or [])
            if isinstance(d, dict) and d.get("owner") and d.get("name")
        ]
        self.failures = dict(failures or {})
        self.discovery_error = discovery_error
        self.enrichment = dict(enrichment or {})
        self.enrichment_error = enrichment_error
        self.detail_calls: list[str] = []

    def enumerate_work_items(self, source_url: str) -> list[WorkItem]:
        if self.discovery_error:
            _raise(self.discovery_error, source_url)
        return list(self.items)

    def fetch_detail(self, item: WorkItem) -> Repository:
        self.detail_calls.append(item.full_name)
        failure = self.failures.get(item.full_name)
        if failure:
            _raise(failure, item.full_name)
        position = next((i for i, it in enumerate(self.items, start=1) if it.full_name == item.full_name), 0)
        return Repository(
            id=position,
            name=item.name,
            full_name=item.full_name,
            html_url=f"https://example.invalid/{item.full_name}",
            description=f"{item.name} (stub)",
        )

    def fetch_enrichment(self, source_url: str, items: list[WorkItem]) -> dict[str, str]:
        if self.enrichment_error:
            _raise(self.enrichment_error, "enrichment")
        return dict(self.enrichment)
