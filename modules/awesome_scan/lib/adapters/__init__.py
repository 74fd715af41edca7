from __future__ import annotations

# Import for the @register side effect.
from . import github as _github
from . import stub as _stub
from .base import ScanAdapter
from .registry import all_kinds, get, register

__all__ = ["ScanAdapter", "all_kinds", "get", "register"]
