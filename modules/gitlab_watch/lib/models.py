from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any

KIND_MERGE_REQUESTS = "merge_requests"
KIND_ISSUES = "issues"
KIND_PIPELINES = "pipelines"


def _author_name(d: dict[str, Any]) -> str:
    author = d.get("author") or {}
    if isinstance(author, dict):
        return str(author.get("name") or author.get("username") or "")
    return str(author)


class _Record:
    """Shared (de)serialization for the frozen record dataclasses below."""

    @property
    def identity(self) -> int:
        return self.id  # type: ignore[attr-defined]

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)  # type: ignore[call-overload]
        for k, v in out.items():
            if isinstance(v, tuple):
                out[k] = list(v)
        return out

    @classmethod
    def from_dict(cls, d: dict[str, Any]):
        if not isinstance(d, dict):
            raise TypeError(f"{cls.__name__} entry must be an object, got {type(d).__name__}")
        names = {f.name for f in fields(cls)}  # type: ignore[arg-type]
        kw = {k: v for k, v in d.items() if k in names}
        if "labels" in kw and isinstance(kw["labels"], list):
            kw["labels"] = tuple(kw["labels"])
        return cls(**kw)


@dataclass(frozen=True)
class MergeRequest(_Record):
    id: int
    iid: int
    project_id: int
    title: str
    state: str
    author: str = ""
    source_branch: str = ""
    target_branch: str = ""
    draft: bool = False
    web_url: str = ""
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_api(cls, d: dict[str, Any]) -> MergeRequest:
        return cls(
            id=int(d["id"]),
            iid=int(d.get("iid") or 0),
            project_id=int(d.get("project_id") or 0),
            title=str(d.get("title") or ""),
            state=str(d.get("state") or ""),
            author=_author_name(d),
            source_branch=str(d.get("source_branch") or ""),
            target_branch=str(d.get("target_branch") or ""),
            draft=bool(d.get("draft") or d.get("work_in_progress") or False),
            web_url=str(d.get("web_url") or ""),
            created_at=d.get("created_at"),
            updated_at=d.get("updated_at"),
        )


@dataclass(frozen=True)
class Issue(_Record):
    id: int
    iid: int
    project_id: int
    title: str
    state: str
    author: str = ""
    labels: tuple[str, ...] = ()
    web_url: str = ""
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_api(cls, d: dict[str, Any]) -> Issue:
        return cls(
            id=int(d["id"]),
            iid=int(d.get("iid") or 0),
            project_id=int(d.get("project_id") or 0),
            title=str(d.get("title") or ""),
            state=str(d.get("state") or ""),
            author=_author_name(d),
            labels=tuple(str(x) for x in d.get("labels") or ()),
            web_url=str(d.get("web_url") or ""),
            created_at=d.get("created_at"),
            updated_at=d.get("updated_at"),
        )


@dataclass(frozen=True)
class Pipeline(_Record):
    id: int
    iid: int
    project_id: int
    status: str
    ref: str = ""
    sha: str = ""
    web_url: str = ""
    project_name: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_api(cls, d: dict[str, Any], *, project_name: str | None = None) -> Pipeline:
        return cls(
            id=int(d["id"]),
            iid=int(d.get("iid") or 0),
            project_id=int(d.get("project_id") or 0),
            status=str(d.get("status") or ""),
            ref=str(d.get("ref") or ""),
            sha=str(d.get("sha") or ""),
            web_url=str(d.get("web_url") or ""),
            project_name=project_name,
            created_at=d.get("created_at"),
            updated_at=d.get("updated_at"),
        )


@dataclass(frozen=True)
class Job(_Record):
    id: int
    name: str
    status: str
    stage: str = ""
    web_url: str = ""
    duration: float | None = None

    @classmethod
    def from_api(cls, d: dict[str, Any]) -> Job:
        duration = d.get("duration")
        return cls(
            id=int(d["id"]),
            name=str(d.get("name") or ""),
            status=str(d.get("status") or ""),
            stage=str(d.get("stage") or ""),
            web_url=str(d.get("web_url") or ""),
            duration=float(duration) if duration is not None else None,
        )


MODELS: dict[str, type[_Record]] = {
    KIND_MERGE_REQUESTS: MergeRequest,
    KIND_ISSUES: Issue,
    KIND_PIPELINES: Pipeline,
}
