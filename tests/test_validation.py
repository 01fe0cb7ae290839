from __future__ import annotations

from typing import Any, Dict, List

import pytest

from core import GenerationResult, SectionKind, section_from_wire
from factories import build_evidence, build_payload, make_item
from validation import (
    RelaxationFactors,
    ValidationEngine,
    ValidationPolicy,
    build_keywords,
    ensure_closing_cta,
    has_synonym_chain,
    jaccard,
    sanitize_faq,
    sanitize_html,
    shingles,
    tokens,
)
from validation.text import mean_stdev, sentence_lengths


def _result(payload: Dict[str, Any]) -> GenerationResult:
    return GenerationResult(sections={section_from_wire(key): value for key, value in payload.items()})


def _failed(payload: Dict[str, Any], **kwargs) -> List[str]:
    verdict = ValidationEngine(kwargs.pop("policy", None)).validate(
        _result(payload), item=kwargs.pop("item", make_item()), evidence=kwargs.pop("evidence", build_evidence())
    )
    return verdict.failed_rule_ids


def test_fixture_payload_passes_every_rule() -> None:
    verdict = ValidationEngine().validate(_result(build_payload()), item=make_item(), evidence=build_evidence())
    assert verdict.failed_rule_ids == []
    assert verdict.passed
    assert set(verdict.content) == set(SectionKind)
    assert verdict.content[SectionKind.FAQ][0].question == "How do the weekly lessons work?"


def test_shape_failures_stop_before_other_rules() -> None:
    payload = build_payload()
    payload["faqcontent"] = "not a list"
    del payload["termscontent"]

    verdict = ValidationEngine().validate(_result(payload), item=make_item(), evidence=build_evidence())
    assert verdict.failed_rule_ids == ["shape[terms]", "shape[faq]"]
    assert {outcome.rule_id for outcome in verdict.outcomes} == {"shape"}


def test_all_failing_rules_are_reported_together() -> None:
    payload = build_payload()
    payload["promodetailscontent"] = payload["promodetailscontent"].replace("<li>Use", "<li>Acme Academy promo code. Use")
    payload["termscontent"] = payload["termscontent"] + "<p>Guaranteed savings always.</p>"

    failed = _failed(payload)
    assert "keywords.primary_outside[details]" in failed
    assert "spam.certainty[terms]" in failed
    assert "style.imperative[details]" in failed


def test_primary_keyword_must_sit_once_in_first_paragraph() -> None:
    payload = build_payload()
    about = payload["aboutcontent"]
    payload["aboutcontent"] = about.replace("The Acme Academy promo code unlocks", "The Acme Academy course unlocks")
    failed = _failed(payload)
    assert "keywords.primary_placement[about]" in failed


def test_primary_keyword_matches_plurals_and_trademarks() -> None:
    kw = build_keywords("Acme™ Academy", "promo code", [])
    assert kw.primary_count("Two Acme Academy promo codes and one ACME ACADEMY PROMO CODE.") == 2
    assert kw.primary_count("Acme Academy promo coder") == 0


def test_grounding_flags_content_absent_from_evidence() -> None:
    payload = build_payload()
    evidence = build_evidence(text_sample="unrelated words only", blocks=["nothing relevant here"], title="Other")
    failed = _failed(payload, evidence=evidence)
    assert "grounding.overlap[about]" in failed
    assert "grounding.overlap[details]" in failed


def test_platform_mention_requires_platform_host() -> None:
    payload = build_payload()
    payload["termscontent"] = payload["termscontent"].replace("<li>", "<li>Whop ", 1)

    assert "grounding.platform[terms]" in _failed(payload)
    hosted = build_evidence(url="https://whop.com/acme-academy")
    assert "grounding.platform[terms]" not in _failed(payload, evidence=hosted)


def test_verified_claim_needs_evidence_support() -> None:
    payload = build_payload()
    payload["termscontent"] = payload["termscontent"].replace("<li>", "<li>Verified ", 1)
    assert "grounding.verified_claim[terms]" in _failed(payload)

    evidence = build_evidence(text_sample=build_evidence().text_sample + " verified seller")
    assert "grounding.verified_claim[terms]" not in _failed(payload, evidence=evidence)


def test_links_are_flagged() -> None:
    payload = build_payload()
    payload["termscontent"] = payload["termscontent"].replace("</ul>", '<li><a href="https://x.io">x</a></li></ul>')
    failed = _failed(payload)
    assert "spam.links[terms]" in failed


def test_links_in_faq_questions_are_flagged() -> None:
    payload = build_payload()
    question = payload["faqcontent"][0]["question"]
    payload["faqcontent"][0]["question"] = f'{question} <a href="https://x.example">here</a>'
    assert "spam.links[faq]" in _failed(payload)


def test_duplicate_faq_questions_are_flagged() -> None:
    payload = build_payload()
    payload["faqcontent"][1]["question"] = payload["faqcontent"][0]["question"]
    assert "spam.duplicates[faq]" in _failed(payload)


def test_synonym_chain_detection() -> None:
    assert has_synonym_chain("Use this promo code, coupon code today")
    assert has_synonym_chain("discount / voucher")
    assert not has_synonym_chain("The promo code unlocks weekly lessons")


def test_imperative_openers_required_for_steps() -> None:
    payload = build_payload()
    payload["howtoredeemcontent"] = payload["howtoredeemcontent"].replace("<li>Open", "<li>Lessons")
    assert "style.imperative[redeem]" in _failed(payload)


def test_redeem_must_be_an_ordered_list() -> None:
    payload = build_payload()
    payload["howtoredeemcontent"] = payload["howtoredeemcontent"].replace("<ol>", "<ul>").replace("</ol>", "</ul>")
    assert "structure.ordered_list[redeem]" in _failed(payload)


def test_flat_cadence_fails_style_check() -> None:
    filler = " ".join(["lessons"] * 15)
    first = "The Acme Academy promo code unlocks " + " ".join(["lessons"] * 10) + "."
    middle = f"Weekly {filler}."
    about = f"<p>{first} {middle} {middle} {middle}</p><p>{middle} {middle} {middle} Explore {filler}.</p>"
    lengths = sentence_lengths(about)
    assert lengths == [16] * 8
    assert mean_stdev(lengths) == (16.0, 0.0)
    payload = build_payload()
    payload["aboutcontent"] = about
    assert "style.cadence[about]" in _failed(payload)


def test_preserved_sections_are_returned_unchanged() -> None:
    existing_about = "<p>Hand written  copy <b>kept</b> as is.</p>"
    item = make_item(existing={SectionKind.ABOUT: existing_about})
    payload = build_payload()
    del payload["aboutcontent"]

    verdict = ValidationEngine().validate(_result(payload), item=item, evidence=build_evidence())
    assert verdict.passed, verdict.failed_rule_ids
    assert verdict.content[SectionKind.ABOUT] == existing_about
    assert verdict.preserved == [SectionKind.ABOUT]
    assert all(outcome.section != SectionKind.ABOUT for outcome in verdict.outcomes)


def test_relaxed_policy_widens_bands() -> None:
    strict = ValidationPolicy()
    relaxed = strict.relaxed(RelaxationFactors(word_widen=0.25, count_slack=1, grounding_min_overlap=0.2))
    about = relaxed.section(SectionKind.ABOUT)
    assert about.words.min == 90 and about.words.max == 225
    assert about.paragraphs.min == 1 and about.paragraphs.max == 4
    assert relaxed.grounding_min_overlap == pytest.approx(0.2)
    assert relaxed.relaxed_mode is True
    assert strict.section(SectionKind.ABOUT).words.max == 180

    payload = build_payload()
    extra = "<li>Track notes weekly.</li><li>Review goals monthly.</li>"
    payload["termscontent"] = payload["termscontent"].replace("</ul>", extra + "</ul>")
    assert "structure.items[terms]" in _failed(payload)
    assert "structure.items[terms]" not in _failed(payload, policy=relaxed)


def test_sanitize_html_strips_unsafe_markup() -> None:
    raw = (
        '<div class="x"><script>alert(1)</script><p style="color:red" onclick="go()">Hi\u200b there !!</p>'
        '<b>bold</b><a href="javascript:alert(1)">link</a></div>'
    )
    clean, stats = sanitize_html(raw)
    assert "<script" not in clean and "alert(1)" not in clean
    assert "<p>Hi there!</p>" in clean
    assert "<strong>bold</strong>" in clean
    assert "<a" not in clean and "javascript:" not in clean
    assert stats["removed_blocks"] == 1
    assert stats["invisible_chars"] == 1
    assert stats["stripped_attributes"] >= 1


def test_sanitize_wraps_bare_list_items() -> None:
    clean, _ = sanitize_html("<li>One</li><li>Two</li>")
    assert clean == "<ul><li>One</li><li>Two</li></ul>"


def test_sanitize_faq_normalizes_entries() -> None:
    entries, _ = sanitize_faq([{"question": "<b>Is it live?</b>", "answer": "Yes, every week."}])
    assert entries[0].question == "Is it live?"
    assert entries[0].answer_html == "<p>Yes, every week.</p>"


def test_closing_cta_is_deterministic_and_idempotent() -> None:
    html = "<p>Weekly lessons for beginners. Live sessions every Monday.</p>"
    first = ensure_closing_cta(html, "item-1")
    assert first == ensure_closing_cta(html, "item-1")
    assert first != html
    assert ensure_closing_cta(first, "item-1") == first


def test_text_helpers() -> None:
    assert tokens("<p>Hello, World &amp; 42!</p>") == ["hello", "world", "42"]
    a = shingles("one two three four")
    assert a == {"one two three", "two three four"}
    assert jaccard(a, a) == 1.0
    assert jaccard(set(), set()) == 0.0
