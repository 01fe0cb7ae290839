"""Evidence sources: URL guard, extraction, fetcher and catalog input."""

from .catalog import load_work_items
from .evidence_fetcher import EvidenceFetcher, raise_for_flags
from .extract import ExtractedPage, extract_page, extract_text
from .url_guard import canonicalize_url, check_url

__all__ = [
    "EvidenceFetcher",
    "raise_for_flags",
    "ExtractedPage",
    "extract_page",
    "extract_text",
    "canonicalize_url",
    "check_url",
    "load_work_items",
]
