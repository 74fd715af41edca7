from __future__ import annotations

from .base import CollectionAdapter

# Global in-process registry: kind -> adapter class
_REGISTRY: dict[str, type[CollectionAdapter]] = {}


def register(cls: type[CollectionAdapter]) -> type[CollectionAdapter]:
    kind = getattr(cls, "kind", "") or ""
    if not isinstance(kind, str) or not kind.strip():
        raise ValueError(f"Cannot register adapter {cls!r}: missing/empty 'kind'.")
    key = kind.strip().lower()
    if key in _REGISTRY and _REGISTRY[key] is not cls:
        raise ValueError(f"Adapter kind {key!r} already registered to {_REGISTRY[key]!r}.")
    _REGISTRY[key] = cls
    return cls


def get(kind: str) -> type[CollectionAdapter]:
    key = (kind or "").strip().lower()
    if key not in _REGISTRY:
        raise KeyError(f"No collection adapter registered for kind {kind!r}.")
    return _REGISTRY[key]


def all_kinds() -> dict[str, type[CollectionAdapter]]:
    return dict(_REGISTRY)
