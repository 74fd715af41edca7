from __future__ import annotations

from abc import ABC, abstractmethod

from ..models import Repository, WorkItem


class ScanAdapter(ABC):
    """
    Remote side of a batch scan.

    Contract:
      - enumerate_work_items(source_url) lists what to fetch, in discovery order.
      - fetch_detail(item) returns ONE record; the orchestrator calls it sequentially.
      - fetch_enrichment(source_url, items) returns {full_name: timestamp}.
      - Every failure is raised as service.errors.FetchError; exhausted rate
        budgets as RateLimitedError. The orchestrator never inspects messages.
      - Do NOT send alerts, print, or sleep between calls.
    """

    # Concrete subclasses MUST set this to a stable string, e.g. "github", "stub"
    kind: str = ""

    # Human-facing wording for alerts
    service_name: str = "Remote"
    rate_limit_hint: str = "Wait for the rate limit window to reset and scan again."

    @abstractmethod
    def enumerate_work_items(self, source_url: str) -> list[WorkItem]:
        raise NotImplementedError

    @abstractmethod
    def fetch_detail(self, item: WorkItem) -> Repository:
        raise NotImplementedError

    def fetch_enrichment(self, source_url: str, items: list[WorkItem]) -> dict[str, str]:
        """Optional; adapters without a bulk timestamp source return nothing."""
        return {}

    def close(self) -> None:
        """Release network resources; no-op by default."""
