# service/errors.py
"""
Error taxonomy shared by the scan engine, the pollers and the notification layer.

Adapter-level errors (raised at the remote boundary):
  - FetchError           any failed remote call
  - RateLimitedError     the remote refused the call because of its rate budget

Operation-level errors (one terminal error per scan/poll, or recorded and absorbed):
  - NoItemsFound, RateLimited, ScanFailed        terminal scan outcomes
  - DetailFetchFailed, EnrichmentFailed          absorbed inside a scan
  - PollFetchFailed                              terminal for one poll cycle
  - DeliveryFailed                               alert dispatch only, never propagated
  - StoreCorrupt                                 malformed persisted data (treated as empty)
"""

from __future__ import annotations


class FetchError(Exception):
    """Raised by an adapter when a remote call fails."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class RateLimitedError(FetchError):
    """Raised by an adapter when the remote signals an exhausted rate budget."""


class ScanError(Exception):
    """Base class for scan outcomes reported back to the caller."""


class NoItemsFound(ScanError):
    """Discovery returned zero work items. Not retryable with the same source."""


class RateLimited(ScanError):
    """The scan stopped early on a rate limit. Partial results are preserved."""


class ScanFailed(ScanError):
    """Nothing could be fetched (discovery failed or every detail fetch failed)."""


class DetailFetchFailed(ScanError):
    """One work item could not be fetched; the scan skipped it."""


class EnrichmentFailed(ScanError):
    """The optional enrichment call failed; primary results are unaffected."""


class PollFetchFailed(Exception):
    """A poll cycle could not fetch its collection; the baseline was left untouched."""


class DeliveryFailed(Exception):
    """An alert could not be shown to the user."""


class StoreCorrupt(ValueError):
    """A persisted blob could not be decoded."""
