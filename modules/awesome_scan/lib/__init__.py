# modules/awesome_scan/lib/__init__.py
from __future__ import annotations

# Importing the adapters package registers the built-in adapters.
from . import adapters as _adapters
from .config import ConfigError, Settings
from .engine import ScanOrchestrator, apply_enrichment
from .models import Repository, SavedList, ScanOutcome, ScanProgress, ScanResult, WorkItem
from .saved_lists import SavedListStore

__all__ = [
    "ConfigError",
    "Repository",
    "SavedList",
    "SavedListStore",
    "ScanOrchestrator",
    "ScanOutcome",
    "ScanProgress",
    "ScanResult",
    "Settings",
    "WorkItem",
    "apply_enrichment",
]
