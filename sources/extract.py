"""Structured evidence extraction from HTML."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import Dict, List

from bs4 import BeautifulSoup


MAX_PARAGRAPHS = 120
MAX_BULLETS = 80
MAX_FAQ_PAIRS = 15
MAX_PRICE_TOKENS = 20
TEXT_SAMPLE_LIMIT = 12000

_WS_RE = re.compile(r"\s+")
_PRICE_RE = re.compile(r"(?:£|\$|€)\s?\d{1,3}(?:[.,]\d{3})*(?:[.,]\d{2})?")


def _clean(text: str) -> str:
    return _WS_RE.sub(" ", str(text or "")).strip()


@dataclass
class ExtractedPage:
    title: str = ""
    h1: str = ""
    paragraphs: List[str] = field(default_factory=list)
    bullets: List[str] = field(default_factory=list)
    faq_pairs: List[Dict[str, str]] = field(default_factory=list)
    price_tokens: List[str] = field(default_factory=list)
    text_sample: str = ""

    @property
    def block_count(self) -> int:
        return len(self.paragraphs) + len(self.bullets)

    @property
    def blocks(self) -> List[str]:
        return self.bullets + self.paragraphs

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.text_sample.encode("utf-8")).hexdigest()


def _faq_pairs(soup: BeautifulSoup) -> List[Dict[str, str]]:
    pairs: List[Dict[str, str]] = []
    for node in soup.find_all(["h3", "dt"]):
        answer_node = node.find_next_sibling()
        if answer_node is None or answer_node.name not in {"p", "dd"}:
            continue
        question = _clean(node.get_text(" ", strip=True))
        answer = _clean(answer_node.get_text(" ", strip=True))
        if question and answer:
            pairs.append({"question": question, "answer": answer})
        if len(pairs) >= MAX_FAQ_PAIRS:
            break
    return pairs


def extract_page(html: str) -> ExtractedPage:
    """Pull title, paragraphs, list items, FAQ pairs and a bounded text sample."""
    soup = BeautifulSoup(str(html or ""), "lxml")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()

    title = _clean(soup.title.get_text(" ", strip=True)) if soup.title else ""
    h1_node = soup.find("h1")
    h1 = _clean(h1_node.get_text(" ", strip=True)) if h1_node else ""

    paragraphs = [t for t in (_clean(p.get_text(" ", strip=True)) for p in soup.find_all("p")) if t]
    bullets = [t for t in (_clean(li.get_text(" ", strip=True)) for li in soup.find_all("li")) if t]

    text_sample = _clean(soup.get_text(" ", strip=True))[:TEXT_SAMPLE_LIMIT]
    prices = _PRICE_RE.findall(text_sample)[:MAX_PRICE_TOKENS]

    return ExtractedPage(
        title=title,
        h1=h1,
        paragraphs=paragraphs[:MAX_PARAGRAPHS],
        bullets=bullets[:MAX_BULLETS],
        faq_pairs=_faq_pairs(soup),
        price_tokens=prices,
        text_sample=text_sample,
    )


def extract_text(text: str) -> ExtractedPage:
    """Plain-text bodies: blank-line separated chunks count as paragraphs."""
    body = str(text or "")
    chunks = [_clean(chunk) for chunk in re.split(r"\n\s*\n", body)]
    paragraphs = [chunk for chunk in chunks if chunk]
    text_sample = _clean(body)[:TEXT_SAMPLE_LIMIT]
    return ExtractedPage(
        title=paragraphs[0][:200] if paragraphs else "",
        paragraphs=paragraphs[:MAX_PARAGRAPHS],
        price_tokens=_PRICE_RE.findall(text_sample)[:MAX_PRICE_TOKENS],
        text_sample=text_sample,
    )
