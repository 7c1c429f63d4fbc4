"""Shared LLM client utilities.

Provides a unified text-generation interface over Anthropic, Google and
OpenAI models, used by the llm step executor.
"""

from recipe_engine.llm.backends import (
    AnthropicBackend,
    GeminiBackend,
    ImageAttachment,
    LLMCallResult,
    ModelBackend,
    OpenAIBackend,
)
from recipe_engine.llm.client import LLMService
from recipe_engine.llm.factory import get_backend, provider_for_model

__all__ = [
    "AnthropicBackend",
    "GeminiBackend",
    "ImageAttachment",
    "LLMCallResult",
    "LLMService",
    "ModelBackend",
    "OpenAIBackend",
    "get_backend",
    "provider_for_model",
]
