from __future__ import annotations

import csv
import io
import json
import os

from modules._shared.utils import esc

from .models import UNCATEGORIZED, Repository

CSV_HEADER = [
    "Name",
    "Full Name",
    "Description",
    "Category",
    "Stars",
    "Forks",
    "Language",
    "License",
    "Updated At",
    "Added to List",
    "URL",
]


def group_by_category(records: list[Repository]) -> dict[str, list[Repository]]:
    """Categories in first-seen order; records keep discovery order inside each."""
    out: dict[str, list[Repository]] = {}
    for r in records:
        out.setdefault(r.category or UNCATEGORIZED, []).append(r)
    return out


def build_tables(records: list[Repository]) -> str:
    """
    One section per category:
      <h3>{category}</h3>
      <table> Repository | Stars | Language | Description </table>
    """
    sections: list[str] = []
    for category, items in group_by_category(records).items():
        rows: list[str] = []
        for r in items:
            link_html = f'<a href="{esc(r.html_url)}">{esc(r.full_name)}</a>'
            rows.append(
                f"<tr><td>{link_html}</td><td>{r.stargazers_count}</td>"
                f"<td>{esc(r.language or '')}</td><td>{esc(r.description or '')}</td></tr>"
            )
        table_html = (
            "<table border='1' cellspacing='0' cellpadding='6'>"
            "<tr><th>Repository</th><th>Stars</th><th>Language</th><th>Description</th></tr>"
            + "".join(rows)
            + "</table>"
        )
        sections.append(f"<h3>{esc(category)}</h3>\n{table_html}")
    return "\n".join(sections)


def wrap_document(content_html: str, *, heading: str | None = None, intro: str | None = None) -> str:
    parts: list[str] = ["<div>"]
    if heading:
        parts.append(f"<h2>{esc(heading)}</h2>")
    if intro:
        parts.append(f"<p>{esc(intro)}</p>")
    parts.append(content_html)
    parts.append("</div>")
    return "\n".join(parts)


# ---- export -------------------------------------------------------------------


def to_json(records: list[Repository]) -> str:
    return json.dumps([r.to_dict() for r in records], ensure_ascii=False, indent=2)


def to_csv(records: list[Repository]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for r in records:
        writer.writerow([
            r.name,
            r.full_name,
            r.description or "",
            r.category or "",
            r.stargazers_count,
            r.forks_count,
            r.language or "",
            r.license.name if r.license else "",
            r.updated_at or "",
            r.added_to_list_at or "",
            r.html_url,
        ])
    return buf.getvalue()


def export_format_for(path: str, fmt: str | None = None) -> str:
    """Explicit format wins; otherwise the file extension decides (default json)."""
    if fmt:
        f = fmt.strip().lower()
    else:
        f = os.path.splitext(path)[1].lstrip(".").lower() or "json"
    if f not in ("json", "csv"):
        raise ValueError(f"Unsupported export format {f!r}; use 'json' or 'csv'.")
    return f


def write_export(records: list[Repository], path: str, fmt: str | None = None) -> str:
    """Write records to `path`; returns the format used."""
    f = export_format_for(path, fmt)
    text = to_csv(records) if f == "csv" else to_json(records)
    d = os.path.dirname(os.path.abspath(path))
    os.makedirs(d, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as fh:
        fh.write(text)
    return f
