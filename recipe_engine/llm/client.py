"""Text-generation service used by the llm step executor.

Every text-generation call flows through `LLMService.generate()`:
- backend selection by model ID (factory)
- retry with backoff for transient provider errors
- web-search routing for OpenAI models, with an internal fallback to a
  plain chat call when the search call fails
"""

import logging
import time
from typing import Callable, Optional

from recipe_engine.llm.backends import ImageAttachment, LLMCallResult
from recipe_engine.llm.factory import get_backend

logger = logging.getLogger(__name__)

# Retry settings
MAX_RETRIES = 3
RETRY_DELAYS = [2, 5, 10]  # seconds

_NON_RETRYABLE = (
    "invalid_api_key",
    "authentication",
    "context_length_exceeded",
    "too many tokens",
    "prompt is too long",
    "not set",
)


class LLMService:
    """Provider-agnostic text generation with retries."""

    def __init__(
        self,
        backend_factory: Callable = get_backend,
        sleep: Callable[[float], None] = time.sleep,
        max_retries: int = MAX_RETRIES,
    ):
        self._backend_factory = backend_factory
        self._sleep = sleep
        self._max_retries = max_retries

    def generate(
        self,
        model_id: str,
        user_message: str,
        *,
        system_prompt: str = "",
        images: Optional[list[ImageAttachment]] = None,
        web_search: bool = False,
        max_tokens: int = 8000,
        label: str = "",
    ) -> LLMCallResult:
        backend = self._backend_factory(model_id)

        if web_search and hasattr(backend, "execute_web_search"):
            try:
                return backend.execute_web_search(
                    system_prompt, user_message,
                    max_tokens=max_tokens, images=images, label=label,
                )
            except Exception as e:
                logger.warning(
                    f"[{label}] Web search failed, falling back to plain call: {e}"
                )

        last_error: Optional[Exception] = None
        for attempt in range(self._max_retries):
            if attempt > 0:
                delay = RETRY_DELAYS[min(attempt - 1, len(RETRY_DELAYS) - 1)]
                logger.warning(
                    f"[{label}] Retry {attempt}/{self._max_retries} after {delay}s "
                    f"(previous error: {last_error})"
                )
                self._sleep(delay)

            try:
                result = backend.execute_sync(
                    system_prompt, user_message,
                    max_tokens=max_tokens, images=images, label=label,
                )
                logger.info(
                    f"[{label}] Completed: {result.input_tokens}+{result.output_tokens} tokens, "
                    f"{result.duration_ms}ms"
                )
                return result
            except Exception as e:
                last_error = e
                logger.error(f"[{label}] Attempt {attempt + 1} failed: {e}")
                error_str = str(e).lower()
                if any(marker in error_str for marker in _NON_RETRYABLE):
                    raise

        raise RuntimeError(
            f"[{label}] Failed after {self._max_retries} attempts. Last error: {last_error}"
        ) from last_error
