"""Text-generation backends for the llm recipe step.

One class per provider (Anthropic Claude, Google Gemini, OpenAI), all
returning an LLMCallResult. A backend owns its SDK client, builds the
provider message (with at most one image) and reads token usage back.

The LLM service (client.py) handles provider-agnostic concerns:
- Retry with backoff
- Web-search routing and its fallback
"""

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass
class ImageAttachment:
    """Base64-encoded image sent alongside the user message."""

    base64: str
    mime_type: str = "image/jpeg"


@dataclass
class LLMCallResult:
    """Normalized response from any LLM backend."""

    content: str
    model_id: str
    provider: str
    input_tokens: int
    output_tokens: int
    duration_ms: int
    response_id: Optional[str] = None
    citations: list[dict[str, Any]] = field(default_factory=list)


@runtime_checkable
class ModelBackend(Protocol):
    """Protocol for LLM backend implementations."""

    @property
    def model_id(self) -> str: ...

    @property
    def provider(self) -> str: ...

    def execute_sync(
        self,
        system_prompt: str,
        user_message: str,
        *,
        max_tokens: int,
        images: Optional[list[ImageAttachment]] = None,
        label: str = "",
    ) -> LLMCallResult: ...


def _http_timeout():
    import httpx

    return httpx.Timeout(connect=60.0, read=600.0, write=120.0, pool=60.0)


class AnthropicBackend:
    """Anthropic Claude backend.

    Requires ANTHROPIC_API_KEY environment variable.
    """

    provider = "anthropic"

    def __init__(self, model_id: str = "claude-sonnet-4-5"):
        self._model_id = model_id

    @property
    def model_id(self) -> str:
        return self._model_id

    def _get_client(self):
        from anthropic import Anthropic

        if not os.environ.get("ANTHROPIC_API_KEY"):
            raise RuntimeError(
                "ANTHROPIC_API_KEY not set. Set the environment variable to use Claude."
            )
        return Anthropic(timeout=_http_timeout())

    def execute_sync(
        self,
        system_prompt: str,
        user_message: str,
        *,
        max_tokens: int,
        images: Optional[list[ImageAttachment]] = None,
        label: str = "",
    ) -> LLMCallResult:
        client = self._get_client()
        start_time = time.time()

        content: Any = user_message
        if images:
            content = [
                {
                    "type": "image",
                    "source": {"type": "base64", "media_type": img.mime_type, "data": img.base64},
                }
                for img in images
            ] + [{"type": "text", "text": user_message}]

        kwargs: dict[str, Any] = {
            "model": self._model_id,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": content}],
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        logger.info(
            f"[{label}] Anthropic sync: ~{(len(system_prompt) + len(user_message)) // 4:,} "
            f"input tokens, max_tokens={max_tokens}, images={len(images or [])}"
        )
        response = client.messages.create(**kwargs)
        duration_ms = int((time.time() - start_time) * 1000)

        raw_text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        if not raw_text.strip():
            raise RuntimeError(f"[{label}] Empty response from {self._model_id}")

        return LLMCallResult(
            content=raw_text.strip(),
            model_id=self._model_id,
            provider=self.provider,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            duration_ms=duration_ms,
            response_id=getattr(response, "id", None),
        )


class GeminiBackend:
    """Google Gemini backend.

    Requires GEMINI_API_KEY environment variable.
    Uses the google-genai SDK.
    """

    provider = "gemini"

    def __init__(self, model_id: str = "gemini-2.0-flash"):
        self._model_id = model_id

    @property
    def model_id(self) -> str:
        return self._model_id

    def _get_client(self):
        from google import genai

        api_key = os.environ.get("GEMINI_API_KEY")
        if not api_key:
            raise RuntimeError(
                "GEMINI_API_KEY not set. Set the environment variable to use Gemini."
            )
        return genai.Client(api_key=api_key)

    def execute_sync(
        self,
        system_prompt: str,
        user_message: str,
        *,
        max_tokens: int,
        images: Optional[list[ImageAttachment]] = None,
        label: str = "",
    ) -> LLMCallResult:
        import base64

        from google.genai import types

        client = self._get_client()
        start_time = time.time()

        contents: list[Any] = [
            types.Part.from_bytes(data=base64.b64decode(img.base64), mime_type=img.mime_type)
            for img in images or []
        ]
        contents.append(user_message)

        config_kwargs: dict[str, Any] = {"max_output_tokens": max_tokens}
        if system_prompt:
            config_kwargs["system_instruction"] = system_prompt

        logger.info(
            f"[{label}] Gemini sync: ~{(len(system_prompt) + len(user_message)) // 4:,} "
            f"input tokens, max_tokens={max_tokens}, images={len(images or [])}"
        )
        response = client.models.generate_content(
            model=self._model_id,
            contents=contents,
            config=types.GenerateContentConfig(**config_kwargs),
        )
        duration_ms = int((time.time() - start_time) * 1000)

        raw_text = response.text or ""
        if not raw_text.strip():
            raise RuntimeError(f"[{label}] Empty response from {self._model_id}")

        usage = getattr(response, "usage_metadata", None)
        input_tokens = getattr(usage, "prompt_token_count", None) or len(user_message) // 4
        output_tokens = getattr(usage, "candidates_token_count", None) or len(raw_text) // 4

        return LLMCallResult(
            content=raw_text.strip(),
            model_id=self._model_id,
            provider=self.provider,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=duration_ms,
            response_id=getattr(response, "response_id", None),
        )


class OpenAIBackend:
    """OpenAI backend: chat completions, plus Responses API web search.

    Requires OPENAI_API_KEY environment variable.
    """

    provider = "openai"

    def __init__(self, model_id: str = "gpt-5-mini"):
        self._model_id = model_id

    @property
    def model_id(self) -> str:
        return self._model_id

    def _get_client(self):
        from openai import OpenAI

        if not os.environ.get("OPENAI_API_KEY"):
            raise RuntimeError(
                "OPENAI_API_KEY not set. Set the environment variable to use OpenAI."
            )
        return OpenAI(timeout=_http_timeout())

    def execute_sync(
        self,
        system_prompt: str,
        user_message: str,
        *,
        max_tokens: int,
        images: Optional[list[ImageAttachment]] = None,
        label: str = "",
    ) -> LLMCallResult:
        client = self._get_client()
        start_time = time.time()

        content: Any = user_message
        if images:
            content = [{"type": "text", "text": user_message}] + [
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{img.mime_type};base64,{img.base64}"},
                }
                for img in images
            ]

        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": content})

        logger.info(
            f"[{label}] OpenAI chat: ~{(len(system_prompt) + len(user_message)) // 4:,} "
            f"input tokens, max_tokens={max_tokens}, images={len(images or [])}"
        )
        response = client.chat.completions.create(
            model=self._model_id,
            messages=messages,
            max_completion_tokens=max_tokens,
        )
        duration_ms = int((time.time() - start_time) * 1000)

        raw_text = response.choices[0].message.content or ""
        if not raw_text.strip():
            raise RuntimeError(f"[{label}] Empty response from {self._model_id}")

        return LLMCallResult(
            content=raw_text.strip(),
            model_id=self._model_id,
            provider=self.provider,
            input_tokens=response.usage.prompt_tokens,
            output_tokens=response.usage.completion_tokens,
            duration_ms=duration_ms,
            response_id=response.id,
        )

    def execute_web_search(
        self,
        system_prompt: str,
        user_message: str,
        *,
        max_tokens: int,
        images: Optional[list[ImageAttachment]] = None,
        label: str = "",
    ) -> LLMCallResult:
        """Responses API call with the web_search_preview tool.

        Citations come from url_citation annotations on the output text.
        """
        client = self._get_client()
        start_time = time.time()

        user_content: list[dict[str, Any]] = [{"type": "input_text", "text": user_message}]
        for img in images or []:
            user_content.append(
                {"type": "input_image", "image_url": f"data:{img.mime_type};base64,{img.base64}"}
            )

        logger.info(f"[{label}] OpenAI web search: model={self._model_id}")
        response = client.responses.create(
            model=self._model_id,
            instructions=system_prompt or None,
            input=[{"role": "user", "content": user_content}],
            tools=[{"type": "web_search_preview"}],
            max_output_tokens=max_tokens,
        )
        duration_ms = int((time.time() - start_time) * 1000)

        raw_text = response.output_text or ""
        if not raw_text.strip():
            raise RuntimeError(f"[{label}] Empty web search response from {self._model_id}")

        citations: list[dict[str, Any]] = []
        for item in response.output or []:
            for part in getattr(item, "content", None) or []:
                for annotation in getattr(part, "annotations", None) or []:
                    if getattr(annotation, "type", "") == "url_citation":
                        citations.append(
                            {"url": annotation.url, "title": getattr(annotation, "title", "")}
                        )

        usage = response.usage
        return LLMCallResult(
            content=raw_text.strip(),
            model_id=self._model_id,
            provider=self.provider,
            input_tokens=getattr(usage, "input_tokens", 0) if usage else 0,
            output_tokens=getattr(usage, "output_tokens", 0) if usage else 0,
            duration_ms=duration_ms,
            response_id=response.id,
            citations=citations,
        )
