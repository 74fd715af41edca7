from __future__ import annotations

from .base import ScanAdapter

# Global in-process registry: kind -> adapter class
_REGISTRY: dict[str, type[ScanAdapter]] = {}


def register(cls: type[ScanAdapter]) -> type[ScanAdapter]:
    """
    Class decorator to register a scan adapter.
    Requires cls.kind to be a non-empty string.
    """
    kind = getattr(cls, "kind", "") or ""
    if not isinstance(kind, str) or not kind.strip():
        raise ValueError(f"Cannot register adapter {cls!r}: missing/empty 'kind'.")
    key = kind.strip().lower()
    if key in _REGISTRY and _REGISTRY[key] is not cls:
        raise ValueError(f"Adapter kind {key!r} already registered to {_REGISTRY[key]!r}.")
    _REGISTRY[key] = cls
    return cls


def get(kind: str) -> type[ScanAdapter]:
    """Look up an adapter class by kind (case-insensitive). Raises KeyError."""
    key = (kind or "").strip().lower()
    if key not in _REGISTRY:
        raise KeyError(f"No scan adapter registered for kind {kind!r}.")
    return _REGISTRY[key]


def all_kinds() -> dict[str, type[ScanAdapter]]:
    return dict(_REGISTRY)
