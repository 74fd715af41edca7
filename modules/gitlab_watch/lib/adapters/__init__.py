from __future__ import annotations

# Import for the @register side effect.
from . import gitlab as _gitlab
from . import stub as _stub
from .base import CollectionAdapter
from .registry import all_kinds, get, register

__all__ = ["CollectionAdapter", "all_kinds", "get", "register"]
