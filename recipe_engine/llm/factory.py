"""Model backend factory.

Resolves model IDs to the appropriate backend implementation.
"""

import logging
from typing import Union

from recipe_engine.llm.backends import AnthropicBackend, GeminiBackend, OpenAIBackend

logger = logging.getLogger(__name__)

_OPENAI_PREFIXES = ("gpt-", "o1", "o3", "o4")


def provider_for_model(model_id: str) -> str:
    """Provider name for a model ID ('anthropic', 'gemini', 'openai').

    Raises:
        ValueError: If model_id is not recognized
    """
    if model_id.startswith("claude-"):
        return "anthropic"
    if model_id.startswith("gemini-"):
        return "gemini"
    if model_id.startswith(_OPENAI_PREFIXES):
        return "openai"
    raise ValueError(
        f"Unknown model: '{model_id}'. "
        f"Expected a model ID starting with 'claude-', 'gemini-' or 'gpt-'."
    )


def get_backend(model_id: str) -> Union[AnthropicBackend, GeminiBackend, OpenAIBackend]:
    """Get the appropriate backend for a model ID.

    Args:
        model_id: Full model identifier (e.g. 'claude-sonnet-4-5',
                  'gemini-2.0-flash', 'gpt-5-mini')

    Returns:
        Backend instance for the model

    Raises:
        ValueError: If model_id is not recognized
    """
    provider = provider_for_model(model_id)
    if provider == "anthropic":
        return AnthropicBackend(model_id=model_id)
    if provider == "gemini":
        return GeminiBackend(model_id=model_id)
    return OpenAIBackend(model_id=model_id)
