"""
LLM Module
Multi-provider LLM wrappers.
"""
from .base import BaseLLM, LLMResponse, Message, MessageRole
from .openai_llm import OpenAILLM
from .anthropic_llm import AnthropicLLM
from .factory import DEFAULT_MODELS, get_llm

__all__ = [
    "BaseLLM",
    "LLMResponse",
    "Message",
    "MessageRole",
    "OpenAILLM",
    "AnthropicLLM",
    "DEFAULT_MODELS",
    "get_llm",
]
