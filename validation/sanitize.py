"""Markup sanitization for generated sections."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Tuple

from core import FaqEntry

from .text import strip_tags


ALLOWED_TAGS = frozenset({"p", "ul", "ol", "li", "strong", "em"})
_TAG_ALIASES = {"b": "strong", "i": "em"}

_EXECUTABLE_BLOCK_RES = [
    re.compile(r"<script\b[^>]*>.*?</script\s*>", flags=re.IGNORECASE | re.DOTALL),
    re.compile(r"<style\b[^>]*>.*?</style\s*>", flags=re.IGNORECASE | re.DOTALL),
    re.compile(r"<(iframe|object|embed|noscript|template)\b[^>]*>.*?</\1\s*>", flags=re.IGNORECASE | re.DOTALL),
    re.compile(r"<!--.*?-->", flags=re.DOTALL),
]
_TAG_RE = re.compile(r"<\s*(/?)\s*([a-zA-Z][a-zA-Z0-9]*)\b[^>]*?(/?)\s*>")
_INVISIBLE_RE = re.compile("[\u200b-\u200f\u202a-\u202e\u2060-\u2064\ufeff\u00ad]")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_NBSP_RE = re.compile(r"(?:\u00a0|&nbsp;|&#160;)", flags=re.IGNORECASE)
_SCRIPT_URI_RE = re.compile(r"\b(?:javascript|vbscript)\s*:", flags=re.IGNORECASE)
_REPEAT_PUNCT_RE = re.compile(r"([!?.,;:])\1+")
_SPACE_BEFORE_PUNCT_RE = re.compile(r"\s+([!?.,;:])")
_WS_RE = re.compile(r"\s+")
_LIST_OPEN_RE = re.compile(r"<(?:ul|ol)>", flags=re.IGNORECASE)


def _normalize_tag(match: re.Match, stats: Dict[str, int]) -> str:
    closing, name = match.group(1), match.group(2).lower()
    name = _TAG_ALIASES.get(name, name)
    if name not in ALLOWED_TAGS:
        stats["dropped_tags"] += 1
        return " "
    if match.group(0) != f"<{closing}{name}>":
        stats["stripped_attributes"] += 1
    return f"<{closing}{name}>"


def _wrap_bare_items(html: str) -> str:
    if "<li>" not in html or _LIST_OPEN_RE.search(html):
        return html
    return re.sub(r"((?:<li>.*?</li>\s*)+)", r"<ul>\1</ul>", html, flags=re.DOTALL)


def sanitize_html(raw: Any) -> Tuple[str, Dict[str, int]]:
    """Return (clean markup, counters of what was removed)."""
    stats = {"removed_blocks": 0, "dropped_tags": 0, "stripped_attributes": 0, "invisible_chars": 0}
    text = str(raw or "")

    for pattern in _EXECUTABLE_BLOCK_RES:
        text, count = pattern.subn(" ", text)
        stats["removed_blocks"] += count

    text, count = _INVISIBLE_RE.subn("", text)
    stats["invisible_chars"] += count
    text, count = _CONTROL_RE.subn("", text)
    stats["invisible_chars"] += count
    text = _NBSP_RE.sub(" ", text)

    text = _TAG_RE.sub(lambda m: _normalize_tag(m, stats), text)
    text = _SCRIPT_URI_RE.sub("", text)

    text = _WS_RE.sub(" ", text)
    text = re.sub(r"\s*(</?(?:p|ul|ol|li)>)\s*", r"\1", text)
    text = _SPACE_BEFORE_PUNCT_RE.sub(r"\1", text)
    text = _REPEAT_PUNCT_RE.sub(r"\1", text)
    text = re.sub(r"<(p|li|strong|em)></\1>", "", text)
    text = _wrap_bare_items(text)
    return text.strip(), stats


def sanitize_faq(raw_entries: List[Any]) -> Tuple[List[FaqEntry], Dict[str, int]]:
    """Questions become plain text; answers keep the allowed markup and sit in a paragraph."""
    totals = {"removed_blocks": 0, "dropped_tags": 0, "stripped_attributes": 0, "invisible_chars": 0}
    entries: List[FaqEntry] = []
    for raw in raw_entries:
        question = strip_tags(sanitize_html(raw.get("question"))[0])
        answer_raw = raw.get("answerHtml", raw.get("answer_html", raw.get("answer")))
        answer, stats = sanitize_html(answer_raw)
        for key, value in stats.items():
            totals[key] += value
        if answer and not answer.startswith("<"):
            answer = f"<p>{answer}</p>"
        entries.append(FaqEntry(question=question, answer_html=answer))
    return entries, totals
