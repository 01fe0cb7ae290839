"""Primary/secondary keyword matching."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Pattern, Sequence

from .text import strip_tags


_TRADEMARK_RE = re.compile(r"[™®©]")
_WS_RE = re.compile(r"\s+")
_AND_ALIAS = r"(?:&|&amp;|and)"


def normalize_name(name: str) -> str:
    return _WS_RE.sub(" ", _TRADEMARK_RE.sub("", str(name or ""))).strip()


def _phrase_pattern(phrase: str) -> str:
    parts: List[str] = []
    for word in normalize_name(phrase).split(" "):
        if word.lower() in {"&", "and", "&amp;"}:
            parts.append(_AND_ALIAS)
        else:
            parts.append(re.escape(word))
    return r"\s+".join(parts)


def _bounded(body: str) -> Pattern[str]:
    return re.compile(rf"(?<![a-z0-9]){body}(?![a-z0-9])", re.IGNORECASE)


def _pluralizable(phrase_pattern: str) -> str:
    return phrase_pattern + "s?"


def _normalize_haystack(text: str) -> str:
    return _TRADEMARK_RE.sub("", strip_tags(text))


@dataclass(frozen=True)
class KeywordSet:
    """Compiled keyword patterns for one item."""

    primary: Pattern[str]
    secondary: Sequence[Pattern[str]]
    primary_phrase: str

    def primary_count(self, text: str) -> int:
        return len(self.primary.findall(_normalize_haystack(text)))

    def secondary_count(self, text: str) -> int:
        haystack = _normalize_haystack(text)
        return sum(len(pattern.findall(haystack)) for pattern in self.secondary)


def build_keywords(display_name: str, primary_suffix: str, secondary_templates: Sequence[str]) -> KeywordSet:
    name = normalize_name(display_name)
    primary_body = _pluralizable(_phrase_pattern(f"{name} {primary_suffix}"))
    secondary: List[Pattern[str]] = []
    for template in secondary_templates:
        phrase = template.replace("{name}", name)
        body = _phrase_pattern(phrase)
        if template.rstrip().endswith(("code", "offer")):
            body = _pluralizable(body)
        secondary.append(_bounded(body))
    return KeywordSet(
        primary=_bounded(primary_body),
        secondary=tuple(secondary),
        primary_phrase=f"{name} {primary_suffix}",
    )


_SYNONYM = r"(?:promo\s*codes?|coupons?(?:\s*codes?)?|discounts?(?:\s*codes?)?|voucher\s*codes?|vouchers?)"
SYNONYM_CHAIN_RE = re.compile(rf"\b{_SYNONYM}(?:\s*[,/]?\s*\b{_SYNONYM}\b)+", re.IGNORECASE)


def has_synonym_chain(text: str) -> bool:
    return bool(SYNONYM_CHAIN_RE.search(strip_tags(text)))
