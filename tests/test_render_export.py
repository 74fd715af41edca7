# tests/test_render_export.py
import csv
import io
import json

import pytest

from modules.awesome_scan.lib import render
from modules.awesome_scan.lib.models import License, Repository


def _records():
    return [
        Repository(
            id=1,
            name="tool",
            full_name="acme/tool",
            html_url="https://github.com/acme/tool",
            description="Fast <grep> & friends",
            stargazers_count=120,
            language="Rust",
            license=License(key="mit", name="MIT License", spdx_id="MIT"),
            category="Command Line",
            added_to_list_at="2020-01-01T00:00:00Z",
        ),
        Repository(id=2, name="db", full_name="acme/db", html_url="https://github.com/acme/db", category="Databases"),
        Repository(id=3, name="cli2", full_name="acme/cli2", html_url="https://github.com/acme/cli2", category="Command Line"),
        Repository(id=4, name="loose", full_name="acme/loose", html_url="https://github.com/acme/loose"),
    ]


def test_group_by_category_keeps_first_seen_order():
    groups = render.group_by_category(_records())

    assert list(groups) == ["Command Line", "Databases", "Uncategorized"]
    assert [r.id for r in groups["Command Line"]] == [1, 3]


def test_build_tables_escapes_text():
    html = render.build_tables(_records())

    assert html.index("<h3>Command Line</h3>") < html.index("<h3>Databases</h3>")
    assert "Fast &lt;grep&gt; &amp; friends" in html
    assert '<a href="https://github.com/acme/tool">acme/tool</a>' in html


def test_wrap_document_optional_parts():
    doc = render.wrap_document("<p>x</p>", heading="Scan", intro="2 repositories")

    assert doc.startswith("<div>")
    assert "<h2>Scan</h2>" in doc and "<p>2 repositories</p>" in doc
    assert render.wrap_document("body") == "<div>\nbody\n</div>"


def test_json_export_carries_all_fields():
    data = json.loads(render.to_json(_records()))

    assert data[0]["license"] == {"key": "mit", "name": "MIT License", "spdx_id": "MIT"}
    assert data[0]["added_to_list_at"] == "2020-01-01T00:00:00Z"
    assert data[1]["license"] is None
    assert [d["full_name"] for d in data] == ["acme/tool", "acme/db", "acme/cli2", "acme/loose"]


def test_csv_export_header_and_rows():
    rows = list(csv.reader(io.StringIO(render.to_csv(_records()))))

    assert rows[0] == render.CSV_HEADER
    assert rows[1][:5] == ["tool", "acme/tool", "Fast <grep> & friends", "Command Line", "120"]
    assert rows[1][7] == "MIT License"
    assert rows[2][7] == ""
    assert len(rows) == 5


@pytest.mark.parametrize(
    "path,fmt,expected",
    [("out.csv", None, "csv"), ("out.json", None, "json"), ("out", None, "json"), ("out.txt", "CSV", "csv")],
)
def test_export_format_for(path, fmt, expected):
    assert render.export_format_for(path, fmt) == expected


def test_export_format_rejects_unknown():
    with pytest.raises(ValueError):
        render.export_format_for("out.xml")


def test_write_export_creates_directories(tmp_path):
    target = tmp_path / "exports" / "list.csv"

    fmt = render.write_export(_records(), str(target))

    assert fmt == "csv"
    assert target.read_text(encoding="utf-8").splitlines()[0].startswith("Name,Full Name")
