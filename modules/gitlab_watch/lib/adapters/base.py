from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class CollectionAdapter(ABC):
    """
    Remote side of a poll cycle.

    Contract:
      - fetch_collection(kind, state_filter) returns the CURRENT records of one
        kind ("merge_requests", "issues", "pipelines") matching the filter.
        Pipelines are always requested with "all"; the poller narrows them.
      - Failures raise service.errors.FetchError (RateLimitedError for an
        exhausted rate budget), including a payload that does not parse.
        Never return a partial list silently.
    """

    kind: str = ""

    @abstractmethod
    def fetch_collection(self, kind: str, state_filter: str) -> list[Any]:
        raise NotImplementedError

    def close(self) -> None:
        """Release network resources; no-op by default."""
