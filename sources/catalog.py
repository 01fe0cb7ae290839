"""Work item loading from JSONL or CSV catalog exports."""

from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set

from core import SectionKind, WorkItem, section_from_wire


logger = logging.getLogger(__name__)

_ID_KEYS = ("id", "slug", "item_id")
_NAME_KEYS = ("display_name", "displayName", "name", "title")
_URL_KEYS = ("source_url", "sourceURL", "sourceUrl", "url", "website")


def _first(row: Dict[str, Any], keys) -> str:
    for key in keys:
        value = row.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def _coerce_faq(value: Any) -> Any:
    if isinstance(value, str) and value.strip().startswith("["):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return value
        return parsed if isinstance(parsed, list) else value
    return value


def row_to_item(row: Dict[str, Any]) -> Optional[WorkItem]:
    item_id = _first(row, _ID_KEYS)
    name = _first(row, _NAME_KEYS)
    if not item_id or not name:
        return None
    existing: Dict[SectionKind, Any] = {}
    for key, value in row.items():
        kind = section_from_wire(key)
        if kind is None or value is None:
            continue
        existing[kind] = _coerce_faq(value) if kind == SectionKind.FAQ else value
    return WorkItem(id=item_id, display_name=name, source_url=_first(row, _URL_KEYS), existing_fields=existing)


def _iter_rows(path: Path) -> Iterator[Dict[str, Any]]:
    if path.suffix.lower() == ".csv":
        with path.open("r", encoding="utf-8", newline="") as fh:
            yield from csv.DictReader(fh)
        return
    with path.open("r", encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            text = line.strip()
            if not text:
                continue
            try:
                row = json.loads(text)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed input line %d", lineno)
                continue
            if isinstance(row, dict):
                yield row


def load_work_items(path: Path, *, only_ids: Optional[Set[str]] = None, limit: int = 0) -> List[WorkItem]:
    """Load unique work items (first occurrence of an id wins)."""
    items: List[WorkItem] = []
    seen: Set[str] = set()
    for row in _iter_rows(Path(path)):
        item = row_to_item(row)
        if item is None or item.id in seen:
            continue
        if only_ids is not None and item.id not in only_ids:
            continue
        seen.add(item.id)
        items.append(item)
        if limit and len(items) >= limit:
            break
    return items


def read_id_list(path: Path) -> Set[str]:
    """One id per line; blank lines and ``#`` comments ignored."""
    ids: Set[str] = set()
    with Path(path).open("r", encoding="utf-8") as fh:
        for line in fh:
            text = line.split("#", 1)[0].strip()
            if text:
                ids.add(text)
    return ids
