"""Provider ports: the narrow contracts step executors call.

Concrete adapters live next to this module (fal, soniox, storage,
url_fetcher) and in recipe_engine.llm (TextGenerator) and
recipe_engine.publish (Publisher).
Tests substitute in-memory fakes.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable


@dataclass
class TranscriptionResult:
    text: str
    duration_seconds: float = 0.0
    latency_ms: int = 0


@dataclass
class QueueJob:
    """Handles returned by a queue submit."""

    request_id: str
    status_url: str
    response_url: str


@dataclass
class DownloadedArtifact:
    data: bytes
    content_type: str = "application/octet-stream"


@dataclass
class PublishRequest:
    title: str
    body_html: str
    summary: str = ""
    status: str = "draft"
    featured_image: Optional[DownloadedArtifact] = None
    featured_image_name: str = "featured-image.jpg"


@dataclass
class PublishResult:
    node_id: str
    node_uuid: str
    url: Optional[str]
    status: str
    image_uploaded: bool = False
    image_error: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class Transcriber(Protocol):
    def transcribe(
        self,
        audio: bytes,
        *,
        mime_type: str,
        language: str,
        model: str,
    ) -> TranscriptionResult: ...


@runtime_checkable
class QueueBackend(Protocol):
    """Queue-based generation backend (image and video)."""

    def submit(self, endpoint: str, params: dict[str, Any]) -> QueueJob: ...

    def poll_status(self, status_url: str) -> str: ...

    def fetch_result(self, response_url: str) -> dict[str, Any]: ...

    def download(self, url: str) -> DownloadedArtifact: ...


@runtime_checkable
class ObjectStorage(Protocol):
    def put(self, key: str, data: bytes, content_type: str) -> None: ...

    def get(self, key: str) -> bytes: ...

    def signed_url(self, key: str, ttl_seconds: int = 600) -> str: ...


@runtime_checkable
class Publisher(Protocol):
    def publish(self, request: PublishRequest) -> PublishResult: ...


@runtime_checkable
class UrlFetcher(Protocol):
    def fetch_context(self, message: str) -> str:
        """Context block for URLs found in `message`, or "" if none."""
        ...


@runtime_checkable
class Downloader(Protocol):
    def __call__(self, url: str) -> DownloadedArtifact: ...


@runtime_checkable
class TextGenerator(Protocol):
    """Chat-style text generation (see recipe_engine.llm.LLMService)."""

    def generate(
        self,
        model_id: str,
        user_message: str,
        *,
        system_prompt: str = "",
        images: Optional[list] = None,
        web_search: bool = False,
        max_tokens: int = 8000,
        label: str = "",
    ) -> Any: ...
