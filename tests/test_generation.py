from __future__ import annotations

import json

import pytest

from config import GenerationSettings
from core import GenerationRequest, RepairInstruction, RuleOutcome, SectionKind, Tier
from factories import ScriptedLLM, build_evidence, build_payload
from intelligence import GenerationClient, build_user_prompt, evidence_chunks, extract_json_object, is_transient
from intelligence.llm import AnthropicLLM, OpenAILLM, get_llm
from utils.exceptions import ConfigurationError, GenerationError


class ProviderError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"provider answered {status_code}")
        self.status_code = status_code


async def _no_sleep(_: float) -> None:
    return None


def _request(**overrides) -> GenerationRequest:
    fields = dict(
        item_id="acme-academy",
        display_name="Acme Academy",
        missing_fields=list(SectionKind),
        evidence=build_evidence(),
    )
    fields.update(overrides)
    return GenerationRequest(**fields)


def _client(primary: ScriptedLLM, escalated: ScriptedLLM = None, **kwargs) -> GenerationClient:
    return GenerationClient(
        primary,
        escalated,
        pricing={Tier.PRIMARY: (0.001, 0.002), Tier.ESCALATED: (0.01, 0.02)},
        sleep=_no_sleep,
        **kwargs,
    )


def test_is_transient() -> None:
    assert is_transient(ProviderError(429))
    assert is_transient(ProviderError(503))
    assert not is_transient(ProviderError(400))
    assert is_transient(TimeoutError())
    assert is_transient(RuntimeError("Rate limit reached for requests"))
    assert not is_transient(ValueError("bad prompt"))


def test_extract_json_object_is_lenient() -> None:
    assert extract_json_object('{"a": 1}') == {"a": 1}
    assert extract_json_object('Sure!\n```json\n{"a": {"b": 2}}\n```') == {"a": {"b": 2}}
    assert extract_json_object("[1, 2]") is None
    assert extract_json_object("no json here") is None
    assert extract_json_object("") is None


@pytest.mark.asyncio
async def test_generate_parses_sections_and_prices_usage() -> None:
    llm = ScriptedLLM([build_payload()], prompt_tokens=2000, completion_tokens=1000)
    client = _client(llm)

    result = await client.generate(_request())

    assert set(result.sections) == set(SectionKind)
    assert result.tier_used == Tier.PRIMARY
    assert result.usage.input_tokens == 2000
    assert result.usage.cost == pytest.approx(2 * 0.001 + 1 * 0.002)
    assert client.calls == 1


@pytest.mark.asyncio
async def test_generate_keeps_only_requested_sections() -> None:
    llm = ScriptedLLM([{**build_payload(), "unexpected": "x"}])
    result = await _client(llm).generate(_request(missing_fields=[SectionKind.TERMS, SectionKind.FAQ]))
    assert set(result.sections) == {SectionKind.TERMS, SectionKind.FAQ}


@pytest.mark.asyncio
async def test_unparseable_output_yields_empty_sections() -> None:
    llm = ScriptedLLM(["I cannot help with that."])
    result = await _client(llm).generate(_request())
    assert result.sections == {}
    assert result.raw_text == "I cannot help with that."
    assert result.usage.cost > 0


@pytest.mark.asyncio
async def test_transient_errors_are_retried() -> None:
    llm = ScriptedLLM([ProviderError(429), ProviderError(502), build_payload()])
    client = _client(llm, max_retries=3)
    result = await client.generate(_request())
    assert result.sections
    assert client.calls == 3


@pytest.mark.asyncio
async def test_persistent_rate_limit_raises_generation_error() -> None:
    llm = ScriptedLLM([ProviderError(429)] * 3)
    with pytest.raises(GenerationError) as info:
        await _client(llm, max_retries=3).generate(_request())
    assert info.value.rate_limited is True
    assert info.value.provider == "fake"


@pytest.mark.asyncio
async def test_permanent_errors_are_not_retried() -> None:
    llm = ScriptedLLM([ProviderError(400), build_payload()])
    client = _client(llm, max_retries=3)
    with pytest.raises(GenerationError) as info:
        await client.generate(_request())
    assert info.value.rate_limited is False
    assert client.calls == 1


@pytest.mark.asyncio
async def test_escalated_tier_uses_second_model() -> None:
    primary = ScriptedLLM([], model="small")
    escalated = ScriptedLLM([build_payload()], model="large")
    result = await _client(primary, escalated).generate(_request(tier=Tier.ESCALATED))

    assert result.tier_used == Tier.ESCALATED
    assert result.model == "large"
    assert primary.calls == []
    assert result.usage.cost == pytest.approx(1 * 0.01 + 0.5 * 0.02)
    assert "previous attempt could not satisfy" in escalated.calls[0][-1].content


@pytest.mark.asyncio
async def test_repair_prompt_lists_failures_and_previous_answer() -> None:
    llm = ScriptedLLM([build_payload()])
    repair = RepairInstruction(
        failures=[
            RuleOutcome(rule_id="structure.words", section=SectionKind.TERMS, passed=False, detail="words 40 (allowed 80-120)")
        ],
        previous={"termscontent": "<ul><li>Short.</li></ul>"},
    )
    await _client(llm).generate(_request(missing_fields=[SectionKind.TERMS], repair=repair))

    prompt = llm.calls[0][-1].content
    assert "- structure.words[terms]: words 40 (allowed 80-120)" in prompt
    assert json.dumps("<ul><li>Short.</li></ul>") in prompt
    assert "Return one JSON object with exactly these keys: termscontent." in prompt


def test_user_prompt_mentions_keywords_platform_and_evidence() -> None:
    prompt = build_user_prompt(_request())
    assert '"Acme Academy promo code"' in prompt
    assert '"save on Acme Academy"' in prompt
    assert 'Do not mention "Whop"' in prompt
    assert 'Avoid the words "verified"' in prompt
    assert "[1] Acme Academy" in prompt
    assert "aboutcontent, promodetailscontent, howtoredeemcontent, termscontent, faqcontent" in prompt

    hosted = build_user_prompt(_request(evidence=build_evidence(url="https://whop.com/acme")))
    assert 'you may mention "Whop" once' in hosted


def test_evidence_chunks_are_bounded() -> None:
    blocks = ["x" * 900] * 40
    request = _request(evidence=build_evidence(blocks=blocks, block_count=len(blocks)))
    chunks = evidence_chunks(request)
    assert all(len(chunk) <= 500 for chunk in chunks)
    assert sum(len(chunk) for chunk in chunks) <= 8000 + 500


def test_get_llm_builds_each_provider_lazily() -> None:
    settings = GenerationSettings(provider="anthropic", openai_api_key="k1", anthropic_api_key="k2")
    escalated = get_llm(tier=Tier.ESCALATED, settings=settings)
    assert isinstance(escalated, AnthropicLLM)
    assert escalated.model == "claude-3-5-sonnet-20241022"

    primary = get_llm(provider="openai", settings=settings, model="gpt-test")
    assert isinstance(primary, OpenAILLM)
    assert primary.model == "gpt-test"
    assert primary.timeout == settings.timeout_seconds

    with pytest.raises(ConfigurationError):
        get_llm(provider="unknown", settings=settings)
