"""
Intelligence Module
Copy generation on top of provider LLM wrappers.
"""
from .generation import GenerationClient, extract_json_object, is_transient
from .llm import BaseLLM, LLMResponse, Message, get_llm
from .prompts import SYSTEM_PROMPT, build_repair_prompt, build_user_prompt, evidence_chunks

__all__ = [
    "GenerationClient",
    "extract_json_object",
    "is_transient",
    "BaseLLM",
    "LLMResponse",
    "Message",
    "get_llm",
    "SYSTEM_PROMPT",
    "build_repair_prompt",
    "build_user_prompt",
    "evidence_chunks",
]
