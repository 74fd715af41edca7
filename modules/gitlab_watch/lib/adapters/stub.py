from __future__ import annotations

from typing import Any

from service.errors import FetchError, RateLimitedError

from ..models import KIND_PIPELINES, MODELS
from .base import CollectionAdapter
from .registry import register


@register
class StubCollectionAdapter(CollectionAdapter):
    """
    A zero-network adapter used for tests and dry-runs.

    Params:
      - collections: {kind: [api-shaped dicts]}   what each fetch returns
      - errors: {kind: "error" | "rate_limit"}     make a kind's fetch fail

    Non-"all" filters are applied client-side on `state` for MRs and issues.
    Pipelines come back whole, like the GitLab adapter returns them. Tests can
    swap data between cycles with set_collection().
    """

    kind = "stub"

    def __init__(
        self,
        collections: dict[str, list[dict[str, Any]]] | None = None,
        errors: dict[str, str] | None = None,
        **_: Any,
    ) -> None:
        self.collections = {k: list(v) for k, v in (collections or {}).items()}
        self.errors = dict(errors or {})
        self.calls: list[tuple[str, str]] = []

    def set_collection(self, kind: str, rows: list[dict[str, Any]]) -> None:
        self.collections[kind] = list(rows)

    def fetch_collection(self, kind: str, state_filter: str) -> list[Any]:
        self.calls.append((kind, state_filter))
        failure = self.errors.get(kind)
        if failure == "rate_limit":
            raise RateLimitedError(f"stub rate limit for {kind}", status=429)
        if failure:
            raise FetchError(f"stub failure for {kind}", status=500)

        model = MODELS[kind]
        try:
            records = [model.from_api(d) for d in self.collections.get(kind, [])]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise FetchError(f"stub {kind} row is malformed: {e!r}") from e
        if state_filter and state_filter != "all" and kind != KIND_PIPELINES:
            records = [r for r in records if r.state == state_filter]
        return records
