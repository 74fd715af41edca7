from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from service.errors import DetailFetchFailed, EnrichmentFailed, ScanError

UNCATEGORIZED = "Uncategorized"


@dataclass(frozen=True)
class WorkItem:
    """One repository link discovered in a list README."""

    owner: str
    name: str
    category: str = UNCATEGORIZED

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class License:
    key: str
    name: str
    spdx_id: str | None = None

    @classmethod
    def from_api(cls, d: dict[str, Any] | None) -> License | None:
        if not d:
            return None
        if not isinstance(d, dict):
            raise TypeError(f"license must be an object, got {type(d).__name__}")
        return cls(key=str(d.get("key") or ""), name=str(d.get("name") or ""), spdx_id=d.get("spdx_id"))


@dataclass(frozen=True)
class Repository:
    """
    A fetched repository. `id` is the stable identity; the counters and
    timestamps are the mutable state. `category` is copied from the WorkItem
    and `added_to_list_at` is filled in by enrichment.
    """

    id: int
    name: str
    full_name: str
    html_url: str
    description: str | None = None
    homepage: str | None = None
    stargazers_count: int = 0
    forks_count: int = 0
    open_issues_count: int = 0
    language: str | None = None
    license: License | None = None
    topics: tuple[str, ...] = ()
    created_at: str | None = None
    updated_at: str | None = None
    category: str | None = None
    added_to_list_at: str | None = None

    @property
    def identity(self) -> int:
        return self.id

    @classmethod
    def from_api(cls, d: dict[str, Any]) -> Repository:
        return cls(
            id=int(d["id"]),
            name=str(d.get("name") or ""),
            full_name=str(d.get("full_name") or ""),
            html_url=str(d.get("html_url") or ""),
            description=d.get("description"),
            homepage=d.get("homepage") or None,
            stargazers_count=int(d.get("stargazers_count") or 0),
            forks_count=int(d.get("forks_count") or 0),
            open_issues_count=int(d.get("open_issues_count") or 0),
            language=d.get("language"),
            license=License.from_api(d.get("license")),
            topics=tuple(d.get("topics") or ()),
            created_at=d.get("created_at"),
            updated_at=d.get("updated_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "full_name": self.full_name,
            "html_url": self.html_url,
            "description": self.description,
            "homepage": self.homepage,
            "stargazers_count": self.stargazers_count,
            "forks_count": self.forks_count,
            "open_issues_count": self.open_issues_count,
            "language": self.language,
            "license": (
                {"key": self.license.key, "name": self.license.name, "spdx_id": self.license.spdx_id}
                if self.license
                else None
            ),
            "topics": list(self.topics),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "category": self.category,
            "added_to_list_at": self.added_to_list_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Repository:
        if not isinstance(d, dict):
            raise TypeError(f"repository entry must be an object, got {type(d).__name__}")
        repo = cls.from_api(d)
        return replace(repo, category=d.get("category"), added_to_list_at=d.get("added_to_list_at"))


@dataclass(frozen=True)
class ScanProgress:
    current: int
    total: int
    current_item: str | None = None


@dataclass
class ScanResult:
    """Records in discovery order, plus the time the scan finished."""

    source_url: str
    records: list[Repository] = field(default_factory=list)
    scanned_at: str | None = None


@dataclass
class ScanOutcome:
    """
    What a scan hands back: always a result (possibly partial or empty) and at
    most one terminal error. Absorbed per-item failures are listed in `skipped`.
    """

    result: ScanResult
    error: ScanError | None = None
    rate_limited: bool = False
    enrichment_error: EnrichmentFailed | None = None
    skipped: list[DetailFetchFailed] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class SavedList:
    id: str
    name: str
    url: str
    repositories: tuple[Repository, ...]
    last_scanned: str
    repository_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "repositories": [r.to_dict() for r in self.repositories],
            "last_scanned": self.last_scanned,
            "repository_count": self.repository_count,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SavedList:
        if not isinstance(d, dict):
            raise TypeError(f"saved list entry must be an object, got {type(d).__name__}")
        raw_repos = d.get("repositories") or []
        if not isinstance(raw_repos, list):
            raise TypeError("saved list repositories must be an array")
        repos = tuple(Repository.from_dict(r) for r in raw_repos)
        return cls(
            id=str(d["id"]),
            name=str(d.get("name") or ""),
            url=str(d.get("url") or ""),
            repositories=repos,
            last_scanned=str(d.get("last_scanned") or ""),
            repository_count=int(d.get("repository_count") or len(repos)),
        )
