from __future__ import annotations

import csv
import json
from pathlib import Path

from core import SectionKind
from sources.catalog import load_work_items, read_id_list, row_to_item


def _write_jsonl(path: Path, rows) -> Path:
    lines = [row if isinstance(row, str) else json.dumps(row) for row in rows]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def test_row_to_item_reads_aliases_and_existing_sections() -> None:
    item = row_to_item(
        {
            "slug": "acme",
            "displayName": "Acme Academy",
            "sourceURL": " https://acme.example.com ",
            "aboutContent": "<p>Kept.</p>",
            "faqcontent": '[{"question": "Q?", "answerHtml": "<p>A.</p>"}]',
        }
    )
    assert item.id == "acme"
    assert item.display_name == "Acme Academy"
    assert item.source_url == "https://acme.example.com"
    assert item.existing_fields[SectionKind.ABOUT] == "<p>Kept.</p>"
    assert item.existing_fields[SectionKind.FAQ] == [{"question": "Q?", "answerHtml": "<p>A.</p>"}]
    assert item.missing_fields() == [SectionKind.DETAILS, SectionKind.REDEEM, SectionKind.TERMS]


def test_row_without_id_or_name_is_dropped() -> None:
    assert row_to_item({"name": "No id"}) is None
    assert row_to_item({"id": "no-name", "name": "  "}) is None


def test_load_jsonl_dedups_and_skips_malformed_lines(tmp_path: Path) -> None:
    path = _write_jsonl(
        tmp_path / "items.jsonl",
        [
            {"id": "a", "name": "Alpha", "url": "https://a.example.com"},
            "{not json",
            {"id": "b", "name": "Beta"},
            {"id": "a", "name": "Alpha again"},
            ["not", "a", "row"],
        ],
    )
    items = load_work_items(path)
    assert [item.id for item in items] == ["a", "b"]
    assert items[0].display_name == "Alpha"


def test_load_filters_by_ids_and_limit(tmp_path: Path) -> None:
    path = _write_jsonl(tmp_path / "items.jsonl", [{"id": f"item-{i}", "name": f"Item {i}"} for i in range(6)])
    assert [item.id for item in load_work_items(path, only_ids={"item-4", "item-1"})] == ["item-1", "item-4"]
    assert [item.id for item in load_work_items(path, limit=2)] == ["item-0", "item-1"]


def test_load_csv(tmp_path: Path) -> None:
    path = tmp_path / "items.csv"
    with path.open("w", encoding="utf-8", newline="") as fh:
        writer = csv.DictWriter(fh, fieldnames=["id", "name", "url", "aboutcontent", "faqcontent"])
        writer.writeheader()
        writer.writerow({"id": "c", "name": "Gamma", "url": "https://c.example.com", "aboutcontent": "", "faqcontent": ""})

    items = load_work_items(path)
    assert len(items) == 1
    assert items[0].source_url == "https://c.example.com"
    assert items[0].missing_fields() == list(SectionKind)


def test_read_id_list_ignores_blanks_and_comments(tmp_path: Path) -> None:
    path = tmp_path / "ids.txt"
    path.write_text("# retry these\nalpha\n\nbeta  # flaky\n  gamma\n", encoding="utf-8")
    assert read_id_list(path) == {"alpha", "beta", "gamma"}
