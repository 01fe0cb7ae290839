"""Tokenization and text statistics shared by guardrails and originality checks."""

from __future__ import annotations

import html as html_lib
import math
import re
from typing import Iterable, List, Set, Tuple


_TAG_RE = re.compile(r"<[^>]+>")
_TOKEN_RE = re.compile(r"[a-z0-9]+")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_PARAGRAPH_RE = re.compile(r"<p\b[^>]*>(.*?)</p>", re.IGNORECASE | re.DOTALL)
_LIST_ITEM_RE = re.compile(r"<li\b[^>]*>(.*?)</li>", re.IGNORECASE | re.DOTALL)


def strip_tags(text: str) -> str:
    value = _TAG_RE.sub(" ", str(text or ""))
    return re.sub(r"\s+", " ", html_lib.unescape(value)).strip()


def tokens(text: str) -> List[str]:
    """Lower-case alphanumeric tokens of tag-stripped text."""
    return _TOKEN_RE.findall(strip_tags(text).lower())


def word_count(text: str) -> int:
    return len(tokens(text))


def paragraphs(html: str) -> List[str]:
    return [m.group(1) for m in _PARAGRAPH_RE.finditer(str(html or ""))]


def list_items(html: str) -> List[str]:
    return [m.group(1) for m in _LIST_ITEM_RE.finditer(str(html or ""))]


def sentences(text: str) -> List[str]:
    plain = strip_tags(text)
    return [s for s in (part.strip() for part in _SENTENCE_SPLIT_RE.split(plain)) if s and tokens(s)]


def sentence_lengths(text: str) -> List[int]:
    return [len(tokens(s)) for s in sentences(text)]


def mean_stdev(values: Iterable[int]) -> Tuple[float, float]:
    """Population mean and standard deviation (0, 0 for no values)."""
    data = list(values)
    if not data:
        return 0.0, 0.0
    mean = sum(data) / len(data)
    variance = sum((v - mean) ** 2 for v in data) / len(data)
    return mean, math.sqrt(variance)


def shingles(text: str, n: int = 3) -> Set[str]:
    words = tokens(text)
    if n <= 0:
        return set()
    if len(words) < n:
        return {" ".join(words)} if words else set()
    return {" ".join(words[i : i + n]) for i in range(len(words) - n + 1)}


def jaccard(a: Set[str], b: Set[str]) -> float:
    if not a and not b:
        return 0.0
    inter = len(a & b)
    return inter / max(1, len(a) + len(b) - inter)
