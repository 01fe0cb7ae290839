"""Generation client: prompt building, provider calls with retry, lenient JSON parsing."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from core import GenerationRequest, GenerationResult, Tier, Usage, section_from_wire
from utils.exceptions import GenerationError
from validation.policy import ValidationPolicy

from .llm import BaseLLM, LLMResponse, Message, get_llm
from .prompts import SYSTEM_PROMPT, build_repair_prompt, build_user_prompt


logger = logging.getLogger(__name__)

_TRANSIENT_RE = re.compile(r"\b(429|5\d\d)\b|rate.?limit|overloaded|temporarily unavailable", re.IGNORECASE)

# USD per 1k tokens: (input, output)
Pricing = Dict[Tier, Tuple[float, float]]


def is_transient(exc: BaseException) -> bool:
    """Rate-limit and 5xx provider errors are worth another attempt."""
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return True
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status == 429 or status >= 500
    return bool(_TRANSIENT_RE.search(str(exc)))


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Parse the whole text, else the span from the first ``{`` to the last ``}``."""
    raw = str(text or "").strip()
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
        return parsed if isinstance(parsed, dict) else None
    except json.JSONDecodeError:
        pass
    start, end = raw.find("{"), raw.rfind("}")
    if start < 0 or end <= start:
        return None
    try:
        parsed = json.loads(raw[start : end + 1])
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


class GenerationClient:
    """
    Turns a ``GenerationRequest`` into a ``GenerationResult``.

    One ``BaseLLM`` per tier. Transient failures are retried with jittered backoff;
    anything left over surfaces as ``GenerationError``. Unparseable output is not an
    error: the result simply has no sections and shape validation rejects it.
    """

    def __init__(
        self,
        primary: BaseLLM,
        escalated: Optional[BaseLLM] = None,
        *,
        pricing: Optional[Pricing] = None,
        policy: Optional[ValidationPolicy] = None,
        max_retries: int = 3,
        backoff_initial: float = 1.0,
        backoff_max: float = 8.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._llms: Dict[Tier, BaseLLM] = {Tier.PRIMARY: primary, Tier.ESCALATED: escalated or primary}
        self.pricing: Pricing = pricing or {Tier.PRIMARY: (0.0, 0.0), Tier.ESCALATED: (0.0, 0.0)}
        self.policy = policy or ValidationPolicy()
        self.max_retries = max(1, int(max_retries))
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self._sleep = sleep
        self.calls = 0

    @classmethod
    def from_settings(cls, settings, policy: Optional[ValidationPolicy] = None) -> "GenerationClient":
        """Build both tiers from ``config.GenerationSettings``."""
        return cls(
            get_llm(tier=Tier.PRIMARY, settings=settings),
            get_llm(tier=Tier.ESCALATED, settings=settings),
            pricing={
                Tier.PRIMARY: (settings.primary_input_price, settings.primary_output_price),
                Tier.ESCALATED: (settings.escalated_input_price, settings.escalated_output_price),
            },
            policy=policy,
            max_retries=settings.max_retries,
        )

    def llm_for(self, tier: Tier) -> BaseLLM:
        return self._llms[tier]

    def cost_of(self, tier: Tier, input_tokens: int, output_tokens: int) -> float:
        price_in, price_out = self.pricing.get(tier, (0.0, 0.0))
        return input_tokens / 1000.0 * price_in + output_tokens / 1000.0 * price_out

    def build_messages(self, request: GenerationRequest) -> List[Message]:
        prompt = build_user_prompt(request, self.policy)
        if request.repair is not None:
            prompt = f"{prompt}\n\n{build_repair_prompt(request)}"
        return [Message.system(SYSTEM_PROMPT), Message.user(prompt)]

    async def _complete(self, llm: BaseLLM, messages: List[Message]) -> LLMResponse:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential_jitter(initial=self.backoff_initial, max=self.backoff_max),
            retry=retry_if_exception(is_transient),
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                self.calls += 1
                return await llm.acomplete(messages)
        raise GenerationError("No completion returned", provider=llm.provider)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        llm = self.llm_for(request.tier)
        messages = self.build_messages(request)
        try:
            response = await self._complete(llm, messages)
        except GenerationError:
            raise
        except Exception as exc:
            transient = is_transient(exc)
            logger.warning(
                "Generation failed for %s on %s tier (%s): %s",
                request.item_id,
                request.tier.value,
                "rate limited" if transient else "error",
                exc,
            )
            raise GenerationError(
                f"{llm.provider} generation failed: {exc}",
                provider=llm.provider,
                rate_limited=transient,
                item_id=request.item_id,
                tier=request.tier.value,
            ) from exc

        usage = Usage(
            input_tokens=response.prompt_tokens,
            output_tokens=response.completion_tokens,
            cost=self.cost_of(request.tier, response.prompt_tokens, response.completion_tokens),
        )
        parsed = extract_json_object(response.content)
        if parsed is None:
            logger.info("Unparseable output for %s (%d chars)", request.item_id, len(response.content or ""))
            parsed = {}

        wanted = set(request.missing_fields)
        sections = {}
        for key, value in parsed.items():
            kind = section_from_wire(key)
            if kind is not None and kind in wanted:
                sections[kind] = value

        return GenerationResult(
            sections=sections,
            tier_used=request.tier,
            usage=usage,
            model=response.model or llm.model,
            raw_text=response.content or "",
        )

    async def aclose(self) -> None:
        seen = set()
        for llm in self._llms.values():
            if id(llm) in seen:
                continue
            seen.add(id(llm))
            await llm.aclose()
