"""Soniox async speech-to-text client.

Flow: upload file -> create transcription -> poll until completed ->
fetch transcript. Polling reuses the executor's backoff loop.
"""

import logging
import os
from typing import Optional

import httpx

from recipe_engine.errors import ProviderError
from recipe_engine.executor.poller import (
    TRANSCRIPTION_POLL_POLICY,
    PollPolicy,
    Scheduler,
    SystemScheduler,
    poll_until_complete,
)
from recipe_engine.providers.http import raise_for_provider
from recipe_engine.providers.ports import TranscriptionResult

logger = logging.getLogger(__name__)

SONIOX_BASE = os.environ.get("SONIOX_BASE_URL", "https://api.soniox.com/v1")


class SonioxTranscriber:
    """Transcriber backed by the Soniox REST API.

    Requires SONIOX_API_KEY environment variable (or an explicit api_key).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = SONIOX_BASE,
        client: Optional[httpx.Client] = None,
        scheduler: Optional[Scheduler] = None,
        poll_policy: PollPolicy = TRANSCRIPTION_POLL_POLICY,
    ):
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(connect=30.0, read=300.0, write=300.0, pool=30.0),
        )
        self._scheduler = scheduler or SystemScheduler()
        self._poll_policy = poll_policy

    def _headers(self) -> dict[str, str]:
        api_key = self._api_key or os.environ.get("SONIOX_API_KEY")
        if not api_key:
            raise RuntimeError("SONIOX_API_KEY not set. Set the environment variable to use Soniox.")
        return {"Authorization": f"Bearer {api_key}"}

    def _request(self, method: str, path: str, action: str, **kwargs) -> dict:
        try:
            response = self._client.request(
                method, f"{self.base_url}{path}", headers=self._headers(), **kwargs
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"Soniox {action} failed: {e}", provider="soniox") from e
        raise_for_provider(response, "Soniox", action)
        return response.json()

    def transcribe(
        self,
        audio: bytes,
        *,
        mime_type: str,
        language: str,
        model: str = "stt-async-v4",
    ) -> TranscriptionResult:
        start = self._scheduler.now()

        upload = self._request(
            "POST", "/files", "file upload",
            files={"file": ("audio", audio, mime_type)},
        )
        file_id = upload.get("id")
        if not file_id:
            raise ProviderError(f"Soniox file upload returned no id: {upload}", provider="soniox")

        created = self._request(
            "POST", "/transcriptions", "create transcription",
            json={"file_id": file_id, "model": model, "language_hints": [language]},
        )
        transcription_id = created.get("id")
        if not transcription_id:
            raise ProviderError(
                f"Soniox create transcription returned no id: {created}", provider="soniox"
            )
        logger.info(f"Soniox transcription {transcription_id} created ({len(audio):,} bytes, {language})")

        meta: dict = {}

        def _check() -> str:
            meta.update(self._request("GET", f"/transcriptions/{transcription_id}", "poll"))
            return meta.get("status", "")

        if created.get("status") != "completed":
            poll_until_complete(
                _check,
                self._poll_policy,
                self._scheduler,
                completed=("completed",),
                failed=("error", "failed"),
                timeout_message="Transcription timed out",
                label=f"soniox {transcription_id}",
            )

        transcript = self._request(
            "GET", f"/transcriptions/{transcription_id}/transcript", "get transcript"
        )
        text = transcript.get("text") or "".join(
            t.get("text", "")
            for t in transcript.get("tokens", [])
            if t.get("translation_status") != "translation"
        )

        duration_seconds = (meta.get("audio_duration_ms") or created.get("audio_duration_ms") or 0) / 1000
        latency_ms = int((self._scheduler.now() - start) * 1000)
        return TranscriptionResult(
            text=text,
            duration_seconds=duration_seconds,
            latency_ms=latency_ms,
        )
