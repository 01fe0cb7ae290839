"""Guardrails for generated copy."""

from .engine import ValidationEngine, ensure_closing_cta
from .keywords import KeywordSet, build_keywords, has_synonym_chain
from .policy import Band, RelaxationFactors, SectionPolicy, ValidationPolicy, relaxation_from_settings
from .rules import COMMON_RULES, STRUCTURE_RULES, STYLE_RULES
from .sanitize import sanitize_faq, sanitize_html
from .text import jaccard, shingles, tokens

__all__ = [
    "ValidationEngine",
    "ensure_closing_cta",
    "KeywordSet",
    "build_keywords",
    "has_synonym_chain",
    "Band",
    "RelaxationFactors",
    "SectionPolicy",
    "ValidationPolicy",
    "relaxation_from_settings",
    "COMMON_RULES",
    "STRUCTURE_RULES",
    "STYLE_RULES",
    "sanitize_faq",
    "sanitize_html",
    "jaccard",
    "shingles",
    "tokens",
]
