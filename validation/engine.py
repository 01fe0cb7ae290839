"""Ordered guardrail evaluation over a generation candidate."""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Set

from core import (
    PRIMARY_SECTION,
    SECTION_SPECS,
    EvidenceRecord,
    GenerationResult,
    RuleOutcome,
    SectionKind,
    SectionShape,
    ValidationVerdict,
    WorkItem,
)

from .keywords import build_keywords, normalize_name
from .policy import ValidationPolicy
from .rules import COMMON_RULES, STRUCTURE_RULES, STYLE_RULES, RuleContext, SectionInput
from .sanitize import sanitize_faq, sanitize_html
from .text import sentences, tokens


logger = logging.getLogger(__name__)

CLOSING_CTAS = [
    "Check the plan details on the page before you check out.",
    "Compare what each plan includes before you decide.",
    "Review the listed terms before you commit to a plan.",
    "Explore the available options and pick the plan that fits you.",
]
_CTA_RE = re.compile(r"^(?:check|compare|review|explore|visit|see|confirm|start|join)\b", re.IGNORECASE)


def ensure_closing_cta(about_html: str, seed: str) -> str:
    """Append a deterministic call-to-action when the last sentence does not carry one."""
    parts = sentences(about_html)
    last = parts[-1] if parts else ""
    if _CTA_RE.search(last.strip()):
        return about_html
    index = int(hashlib.sha1(str(seed).encode("utf-8")).hexdigest(), 16) % len(CLOSING_CTAS)
    cta = CLOSING_CTAS[index]
    if about_html.endswith("</p>"):
        return about_html[: -len("</p>")] + " " + cta + "</p>"
    return f"{about_html} {cta}".strip()


def _shape_ok(kind: SectionKind, value: Any) -> Optional[str]:
    """Return an error message when ``value`` has the wrong type for ``kind``."""
    if value is None:
        return "missing"
    spec = SECTION_SPECS[kind]
    if spec.shape == SectionShape.TEXT:
        if not isinstance(value, str):
            return f"expected text, got {type(value).__name__}"
        if not value.strip():
            return "empty"
        return None
    if not isinstance(value, list):
        return f"expected list, got {type(value).__name__}"
    for index, entry in enumerate(value):
        if not isinstance(entry, dict):
            return f"entry {index + 1} is not an object"
        answer = entry.get("answerHtml", entry.get("answer_html", entry.get("answer")))
        if not isinstance(entry.get("question"), str) or not isinstance(answer, str):
            return f"entry {index + 1} needs question and answerHtml strings"
    return None


class ValidationEngine:
    """Runs shape, sanitize, structure, keyword, grounding, anti-spam and style rules."""

    def __init__(self, policy: Optional[ValidationPolicy] = None) -> None:
        self.policy = policy or ValidationPolicy()

    def _context(self, item: WorkItem, evidence: EvidenceRecord) -> RuleContext:
        evidence_text = " ".join([evidence.title, evidence.text_sample, *evidence.blocks])
        return RuleContext(
            policy=self.policy,
            keywords=build_keywords(item.display_name, self.policy.primary_suffix, self.policy.secondary_templates),
            evidence_tokens=frozenset(tokens(evidence_text)),
            evidence_text=evidence_text.lower(),
            evidence_host=evidence.host,
            name_tokens=frozenset(tokens(normalize_name(item.display_name))),
        )

    def validate(
        self,
        result: GenerationResult,
        *,
        item: WorkItem,
        evidence: EvidenceRecord,
        preserved: Optional[Iterable[SectionKind]] = None,
    ) -> ValidationVerdict:
        keep: Set[SectionKind] = set(item.populated_fields() if preserved is None else preserved)
        generated = [kind for kind in SectionKind if kind not in keep]
        preserved_content = {kind: item.existing_fields[kind] for kind in SectionKind if kind in keep}

        shape: List[RuleOutcome] = []
        for kind in generated:
            problem = _shape_ok(kind, result.sections.get(kind))
            shape.append(RuleOutcome(rule_id="shape", section=kind, passed=problem is None, detail=problem or ""))
        if not all(outcome.passed for outcome in shape):
            return ValidationVerdict(outcomes=shape, content=dict(preserved_content), preserved=sorted(keep, key=_order))

        outcomes: List[RuleOutcome] = list(shape)
        inputs: Dict[SectionKind, SectionInput] = {}
        for kind in generated:
            raw = result.sections[kind]
            if SECTION_SPECS[kind].shape == SectionShape.ENTRIES:
                entries, stats = sanitize_faq(raw)
                raw_text = " ".join(
                    f"{e.get('question', '')} {e.get('answerHtml', e.get('answer_html', e.get('answer', '')))}"
                    for e in raw
                )
                inputs[kind] = SectionInput(kind=kind, raw=raw_text, html="", entries=entries)
            else:
                clean, stats = sanitize_html(raw)
                if kind == PRIMARY_SECTION and self.policy.ensure_closing_cta:
                    clean = ensure_closing_cta(clean, item.id)
                inputs[kind] = SectionInput(kind=kind, raw=str(raw), html=clean)
            changed = {key: value for key, value in stats.items() if value}
            outcomes.append(
                RuleOutcome(
                    rule_id="sanitize",
                    section=kind,
                    passed=True,
                    detail=", ".join(f"{key}={value}" for key, value in changed.items()),
                )
            )

        ctx = self._context(item, evidence)
        for kind in generated:
            outcomes.extend(STRUCTURE_RULES[kind](inputs[kind], ctx))
        for rule in COMMON_RULES:
            for kind in generated:
                outcomes.extend(rule(inputs[kind], ctx))
        for kind in generated:
            outcomes.extend(STYLE_RULES[kind](inputs[kind], ctx))

        content: Dict[SectionKind, Any] = dict(preserved_content)
        for kind in generated:
            section = inputs[kind]
            content[kind] = section.entries if kind == SectionKind.FAQ else section.html

        verdict = ValidationVerdict(outcomes=outcomes, content=content, preserved=sorted(keep, key=_order))
        if not verdict.passed:
            logger.debug("Item %s failed %s", item.id, verdict.failed_rule_ids)
        return verdict


_KIND_ORDER = {kind: index for index, kind in enumerate(SectionKind)}


def _order(kind: SectionKind) -> int:
    return _KIND_ORDER[kind]
