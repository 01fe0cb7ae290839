"""
LLM Factory
Build provider wrappers for the two generation tiers.
"""
from typing import Dict, Optional
import logging

from core import Tier
from utils.exceptions import ConfigurationError

from .base import BaseLLM
from .openai_llm import OpenAILLM
from .anthropic_llm import AnthropicLLM


logger = logging.getLogger(__name__)


DEFAULT_MODELS: Dict[str, Dict[Tier, str]] = {
    "openai": {Tier.PRIMARY: "gpt-4o-mini", Tier.ESCALATED: "gpt-4o"},
    "anthropic": {Tier.PRIMARY: "claude-3-5-haiku-20241022", Tier.ESCALATED: "claude-3-5-sonnet-20241022"},
}


def get_llm(
    provider: Optional[str] = None,
    model: Optional[str] = None,
    tier: Tier = Tier.PRIMARY,
    settings=None,
    **kwargs,
) -> BaseLLM:
    """
    Create an LLM wrapper.

    Args:
        provider: openai or anthropic (defaults to settings)
        model: model name (defaults to the tier's configured/default model)
        tier: which tier the model serves
        settings: ``GenerationSettings`` (defaults to the global settings)
        **kwargs: temperature, max_tokens, timeout, base_url

    Example:
        primary = get_llm(tier=Tier.PRIMARY)
        escalated = get_llm(provider="anthropic", tier=Tier.ESCALATED)
    """
    if settings is None:
        from config import get_generation_settings
        settings = get_generation_settings()

    provider = (provider or settings.provider or "openai").strip().lower()
    if provider not in DEFAULT_MODELS:
        raise ConfigurationError(f"Unsupported LLM provider: {provider}")

    configured = settings.primary_model if tier == Tier.PRIMARY else settings.escalated_model
    model = model or configured or DEFAULT_MODELS[provider][tier]

    api_keys = {
        "openai": settings.openai_api_key,
        "anthropic": settings.anthropic_api_key,
    }
    api_key = kwargs.pop("api_key", None) or api_keys.get(provider)

    kwargs.setdefault("temperature", settings.temperature)
    kwargs.setdefault("max_tokens", settings.max_tokens)
    kwargs.setdefault("timeout", settings.timeout_seconds)

    logger.debug("Creating %s LLM for %s tier: %s", provider, tier.value, model)
    if provider == "openai":
        return OpenAILLM(model=model, api_key=api_key, base_url=kwargs.pop("base_url", None), **kwargs)
    return AnthropicLLM(model=model, api_key=api_key, **kwargs)
