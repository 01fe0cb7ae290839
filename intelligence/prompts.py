"""
Generation Prompts
System and user prompts for listing copy, plus targeted repair prompts.
"""
import json
from typing import List, Optional

from core import SECTION_SPECS, GenerationRequest, SectionKind, Tier
from validation.keywords import normalize_name
from validation.policy import ValidationPolicy


MAX_CHUNK_CHARS = 500
MAX_EVIDENCE_CHARS = 8000
MAX_EVIDENCE_CHUNKS = 300


SYSTEM_PROMPT = """You write search-friendly HTML copy blocks for catalog offer pages.

## Ground rules
1. Use ONLY the EVIDENCE you are given. Never invent prices, features, dates or guarantees.
2. When a detail is missing from the evidence, leave it out or say "confirm at checkout".
3. Mention the platform only when the prompt says the source is hosted on it.
4. Use the word "verified" only when the prompt says the evidence contains it.
5. Avoid boilerplate and vary call-to-action phrasing between listings.
6. Never include links, URLs, or absolute claims (guaranteed, always, never, best price, cheapest, 100%).

## Formatting
- HTML strings may use only <p>, <ul>, <ol>, <li>, <strong>, <em>.
- Vary sentence length; write at a grade 8-10 reading level.
- Output one valid JSON object and nothing else (no markdown fences, no commentary).
"""


SECTION_BRIEFS = {
    SectionKind.ABOUT: (
        "{paragraphs} short <p> paragraphs, {words} words. The first paragraph contains "
        "\"{primary}\" exactly once; no other section may contain it. At least 3 sentences "
        "averaging 13-22 words with varied length. End with a short call to action."
    ),
    SectionKind.DETAILS: (
        "One <ul> with {items} bullets, {words} words in total. Start every bullet with an "
        "action verb (Use, Apply, Choose, Review, ...)."
    ),
    SectionKind.REDEEM: (
        "One <ol> with {items} steps of {item_words} words each. Start every step with an "
        "action verb (Click, Copy, Apply, Confirm, Visit, ...)."
    ),
    SectionKind.TERMS: (
        "One <ul> with {items} concise bullets, {words} words in total, covering expiry, "
        "usage limits or eligibility when the evidence mentions them."
    ),
    SectionKind.FAQ: (
        "JSON array of {items} objects {{\"question\": \"...\", \"answerHtml\": \"<p>...</p>\"}}. "
        "Each answer is {item_words} words of complete sentences. Use at least 3 different "
        "question openers (How, What, Can, Is, Where, Do, ...). No duplicate questions."
    ),
}


USER_PROMPT = """Write copy for this listing using ONLY the EVIDENCE below.

## Listing
id: {item_id}
displayName: {display_name}
sourceUrl: {source_url}

## Keywords
- Primary: "{primary}" (exactly once, in the first paragraph of aboutcontent)
- Secondary (optional, at most {secondary_cap} combined per section): {secondary}
- {platform_rule}
- {verified_rule}

## Sections to write
{briefs}

## Evidence (ordered, truncated)
{evidence}

Return one JSON object with exactly these keys: {keys}.
"""


REPAIR_PROMPT = """Your previous answer for "{display_name}" broke these rules:
{failures}

## Previous answer
{previous}

Fix ONLY the problems listed above and keep everything else as close to the previous
answer as possible. Keep using only the evidence from the first message.
Return one JSON object with exactly these keys: {keys}.
"""


ESCALATION_NOTE = (
    "\nA previous attempt could not satisfy every rule. Take extra care with word counts, "
    "list sizes and keyword placement."
)


def evidence_chunks(request: GenerationRequest) -> List[str]:
    """Title, blocks and FAQ pairs, each capped and bounded in total."""
    evidence = request.evidence
    raw = [evidence.title, *evidence.blocks]
    raw.extend(f"Q: {pair.get('question', '')} A: {pair.get('answer', '')}" for pair in evidence.faq_pairs)
    if evidence.price_tokens:
        raw.append("Prices seen: " + ", ".join(evidence.price_tokens))

    chunks: List[str] = []
    running = 0
    for text in raw[:MAX_EVIDENCE_CHUNKS]:
        text = str(text or "").strip()
        if not text:
            continue
        if running >= MAX_EVIDENCE_CHARS:
            break
        capped = text[:MAX_CHUNK_CHARS]
        chunks.append(capped)
        running += len(capped)
    return chunks


def _band(band) -> str:
    return f"{int(band.min)}-{int(band.max)}" if band else "a few"


def _brief(kind: SectionKind, policy: ValidationPolicy, primary: str) -> str:
    spec = policy.section(kind)
    text = SECTION_BRIEFS[kind].format(
        paragraphs=_band(spec.paragraphs),
        items=_band(spec.items),
        words=_band(spec.words),
        item_words=_band(spec.item_words),
        primary=primary,
    )
    return f"- {SECTION_SPECS[kind].wire_key}: {text}"


def _keys(request: GenerationRequest) -> str:
    return ", ".join(SECTION_SPECS[kind].wire_key for kind in request.missing_fields)


def build_user_prompt(request: GenerationRequest, policy: Optional[ValidationPolicy] = None) -> str:
    policy = policy or ValidationPolicy()
    name = normalize_name(request.display_name)
    primary = f"{name} {policy.primary_suffix}".strip()
    phrases = [template.replace("{name}", name) for template in policy.secondary_templates]
    secondary = ", ".join(f'"{phrase}"' for phrase in phrases)

    evidence = request.evidence
    host = evidence.host
    on_platform = bool(host) and (host == policy.platform_host or host.endswith("." + policy.platform_host))
    if on_platform:
        platform_rule = f'The source is on {policy.platform_host}; you may mention "{policy.platform_name}" once.'
    else:
        platform_rule = f'Do not mention "{policy.platform_name}"; the source is not hosted there.'

    chunks = evidence_chunks(request)
    joined = " ".join(chunks).lower()
    if "verified" in joined or "verification" in joined:
        verified_rule = 'The evidence says "verified"; you may use it where accurate.'
    else:
        verified_rule = 'Avoid the words "verified" and "verification".'

    prompt = USER_PROMPT.format(
        item_id=request.item_id,
        display_name=name,
        source_url=evidence.final_url or evidence.source_url,
        primary=primary,
        secondary_cap=policy.secondary_cap,
        secondary=secondary,
        platform_rule=platform_rule,
        verified_rule=verified_rule,
        briefs="\n".join(_brief(kind, policy, primary) for kind in request.missing_fields),
        evidence="\n".join(f"[{index}] {chunk}" for index, chunk in enumerate(chunks, 1)),
        keys=_keys(request),
    )
    if request.tier == Tier.ESCALATED and request.repair is None:
        prompt += ESCALATION_NOTE
    return prompt


def build_repair_prompt(request: GenerationRequest) -> str:
    """Name only the violated rules and carry the previous JSON."""
    repair = request.repair
    lines = []
    for outcome in repair.failures if repair else []:
        detail = f": {outcome.detail}" if outcome.detail else ""
        lines.append(f"- {outcome.label}{detail}")
    previous = json.dumps(repair.previous if repair else {}, ensure_ascii=False, indent=2)
    return REPAIR_PROMPT.format(
        display_name=normalize_name(request.display_name),
        failures="\n".join(lines) or "- output was not valid JSON with the requested keys",
        previous=previous,
        keys=_keys(request),
    )
