"""Tests for the HTTP provider adapters (httpx.MockTransport)."""

import json

import httpx
import pytest

from recipe_engine.errors import ProviderError
from recipe_engine.executor.poller import PollPolicy
from recipe_engine.providers.fal import FalQueueClient
from recipe_engine.providers.http import download_url
from recipe_engine.providers.soniox import SonioxTranscriber
from recipe_engine.providers.storage import LocalObjectStorage
from recipe_engine.providers.url_fetcher import HttpUrlFetcher, extract_urls, html_to_text


def _mock(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


# ── fal.ai ───────────────────────────────────────────────────


def test_fal_queue_flow():
    seen = []

    def handler(request):
        seen.append((request.method, request.url.path, request.headers.get("Authorization")))
        if request.method == "POST":
            return httpx.Response(200, json={
                "request_id": "r1",
                "status_url": "https://queue.fal.run/fal-ai/flux/schnell/requests/r1/status",
                "response_url": "https://queue.fal.run/fal-ai/flux/schnell/requests/r1",
            })
        if request.url.path.endswith("/status"):
            return httpx.Response(200, json={"status": "COMPLETED"})
        return httpx.Response(200, json={"images": [{"url": "https://cdn/x.jpg"}]})

    fal = FalQueueClient(api_key="k", client=_mock(handler))
    job = fal.submit("fal-ai/flux/schnell", {"prompt": "p"})
    assert job.request_id == "r1"
    assert fal.poll_status(job.status_url) == "COMPLETED"
    assert fal.fetch_result(job.response_url)["images"][0]["url"] == "https://cdn/x.jpg"
    assert seen[0] == ("POST", "/fal-ai/flux/schnell", "Key k")


def test_fal_submit_error():
    fal = FalQueueClient(api_key="k", client=_mock(lambda r: httpx.Response(401, text="unauthorized")))
    with pytest.raises(ProviderError, match="401") as exc_info:
        fal.submit("fal-ai/flux/schnell", {})
    assert exc_info.value.status_code == 401


def test_fal_requires_key(monkeypatch):
    monkeypatch.delenv("FAL_KEY", raising=False)
    fal = FalQueueClient(client=_mock(lambda r: httpx.Response(200, json={})))
    with pytest.raises(RuntimeError, match="FAL_KEY"):
        fal.submit("x", {})


# ── Soniox ───────────────────────────────────────────────────


def test_soniox_transcription(scheduler):
    polls = []

    def handler(request):
        path = request.url.path
        if path == "/v1/files":
            return httpx.Response(200, json={"id": "file-1"})
        if path == "/v1/transcriptions":
            body = json.loads(request.content)
            assert body == {"file_id": "file-1", "model": "stt-async-v4", "language_hints": ["sl"]}
            return httpx.Response(200, json={"id": "t1", "status": "queued"})
        if path == "/v1/transcriptions/t1":
            polls.append(path)
            status = "completed" if len(polls) >= 2 else "processing"
            return httpx.Response(200, json={"status": status, "audio_duration_ms": 90_000})
        if path == "/v1/transcriptions/t1/transcript":
            return httpx.Response(200, json={"tokens": [
                {"text": "Dober "}, {"text": "dan"}, {"text": "Hello", "translation_status": "translation"},
            ]})
        return httpx.Response(404)

    transcriber = SonioxTranscriber(
        api_key="k",
        base_url="https://api.soniox.com/v1",
        client=_mock(handler),
        scheduler=scheduler,
        poll_policy=PollPolicy(initial_interval=1.0, multiplier=1.5, max_interval=5.0, timeout=60.0),
    )
    result = transcriber.transcribe(b"audio", mime_type="audio/mpeg", language="sl", model="stt-async-v4")

    assert result.text == "Dober dan"
    assert result.duration_seconds == 90.0
    assert len(polls) == 2
    assert result.latency_ms == 2500


def test_soniox_failed_job(scheduler):
    def handler(request):
        path = request.url.path
        if path == "/v1/files":
            return httpx.Response(200, json={"id": "f"})
        if path == "/v1/transcriptions":
            return httpx.Response(200, json={"id": "t", "status": "queued"})
        return httpx.Response(200, json={"status": "error"})

    transcriber = SonioxTranscriber(api_key="k", client=_mock(handler), scheduler=scheduler)
    with pytest.raises(ProviderError):
        transcriber.transcribe(b"a", mime_type="audio/mpeg", language="sl", model="stt-async-v4")


# ── Downloads and storage ────────────────────────────────────


def test_download_url():
    client = _mock(lambda r: httpx.Response(200, content=b"bytes", headers={"content-type": "image/png; q=1"}))
    artifact = download_url("https://cdn.example/a.png", client=client)
    assert artifact.data == b"bytes"
    assert artifact.content_type == "image/png"


def test_download_error():
    client = _mock(lambda r: httpx.Response(404, text="gone"))
    with pytest.raises(ProviderError, match="404"):
        download_url("https://cdn.example/a.png", client=client)


def test_local_storage(tmp_path):
    storage = LocalObjectStorage(root=tmp_path, public_base_url="https://files.example")
    storage.put("image/output/r/a.jpg", b"jpg", "image/jpeg")
    assert storage.get("image/output/r/a.jpg") == b"jpg"
    assert storage.signed_url("image/output/r/a.jpg").startswith("https://files.example/image/output/r/a.jpg")


# ── URL fetching ─────────────────────────────────────────────


def test_extract_urls():
    text = "See https://a.example/x, and (https://b.example/y). Again https://a.example/x"
    assert extract_urls(text) == ["https://a.example/x", "https://b.example/y"]


def test_html_to_text_prefers_main_content():
    html = (
        "<html><head><title> Page  Title </title><script>var x;</script></head>"
        "<body><nav>menu</nav><article><h1>Head</h1><p>First &amp; second.</p></article></body></html>"
    )
    title, text = html_to_text(html)
    assert title == "Page Title"
    assert text == "# Head\nFirst & second."


def test_html_to_text_decodes_entities():
    title, text = html_to_text(
        "<title>Novice &ndash; &Scaron;port</title>"
        "<main><p>Caf&eacute; &#8211; &#x161;port &hellip;</p></main>"
    )
    assert title == "Novice – Šport"
    assert text == "Café – šport …"


def test_fetch_context_blocks():
    def handler(request):
        if request.url.host == "ok.example":
            return httpx.Response(200, text="<title>OK</title><main><p>Body text</p></main>",
                                  headers={"content-type": "text/html"})
        return httpx.Response(500)

    fetcher = HttpUrlFetcher(client=_mock(handler))
    context = fetcher.fetch_context("Read https://ok.example/a and https://down.example/b")

    assert "[URL: https://ok.example/a] - OK" in context
    assert "Body text" in context
    assert "[URL: https://down.example/b]\n(Failed to fetch: HTTP 500)" in context


def test_fetch_context_without_urls():
    fetcher = HttpUrlFetcher(client=_mock(lambda r: httpx.Response(200)))
    assert fetcher.fetch_context("no links here") == ""
