"""Tests for the individual step executors."""

import json

import pytest
from conftest import FakeQueueBackend, make_recipe

from recipe_engine.errors import PollTimeoutError, ProviderError, StepError
from recipe_engine.executor.context import StepContext
from recipe_engine.executor.schemas import ExecutionInput, InputMode, PublishIntegration
from recipe_engine.executor.steps import execute_step
from recipe_engine.executor.steps.publish import (
    SKIP_NO_CREDENTIALS,
    SKIP_NO_INTEGRATION,
    SKIP_NO_PAYLOAD,
    SKIP_NO_WORKSPACE,
)
from recipe_engine.providers.ports import DownloadedArtifact


def _step(step_type, config=None):
    return make_recipe(("Step", step_type, config or {})).steps[0]


def _context(workspace_id=None, **input_fields):
    return StepContext.from_input(ExecutionInput(**input_fields), "exec-1", workspace_id)


# ── Transcription ────────────────────────────────────────────


def test_transcript_fast_path(deps, transcriber):
    output = execute_step(_step("stt"), _context(transcript_text="hello"), deps)
    assert output.text == "hello"
    assert output.skipped
    assert transcriber.calls == []


def test_long_text_passes_through(deps, transcriber):
    output = execute_step(_step("stt"), _context(text="a pasted article of some length"), deps)
    assert output.text == "a pasted article of some length"
    assert output.skipped
    assert transcriber.calls == []


def test_declared_text_mode_passes_short_text(deps, transcriber):
    output = execute_step(_step("stt"), _context(text="short", input_mode=InputMode.TEXT), deps)
    assert output.text == "short"
    assert transcriber.calls == []


def test_declared_audio_mode_transcribes_even_with_text(deps, storage, transcriber):
    storage.put("audio/in.mp3", b"mp3-bytes", "audio/mpeg")
    context = _context(
        text="a long text that would otherwise pass through",
        input_mode=InputMode.AUDIO,
        audio_storage_key="audio/in.mp3",
    )
    output = execute_step(_step("stt"), context, deps)
    assert output.text == "transcribed speech"
    assert not output.skipped
    assert transcriber.calls[0]["audio"] == b"mp3-bytes"


def test_transcribes_audio_from_storage(deps, storage, store, transcriber):
    storage.put("audio/in.mp3", b"mp3-bytes", "audio/mpeg")
    output = execute_step(_step("stt", {"language": "en"}), _context(audio_storage_key="audio/in.mp3"), deps)

    assert output.text == "transcribed speech"
    assert output.run_id
    call = transcriber.calls[0]
    assert call["mime_type"] == "audio/mpeg"
    assert call["language"] == "en"
    # 60 seconds at $0.0017/minute rounds to 0 cents, but the usage event exists
    assert store.get_run_usage(output.run_id) == (0, "stt-async-v4")


def test_input_language_wins(deps, transcriber):
    execute_step(_step("stt", {"language": "en"}), _context(audio_url="https://a.example/x.wav", language="de"), deps)
    assert transcriber.calls[0]["language"] == "de"
    assert transcriber.calls[0]["audio"] == b"downloaded-audio"
    assert transcriber.calls[0]["mime_type"] == "audio/wav"


def test_no_audio_source(deps):
    with pytest.raises(StepError, match="No audio source"):
        execute_step(_step("stt"), _context(), deps)


def test_blank_transcript_is_an_error(deps, storage, transcriber):
    storage.put("a.mp3", b"x", "audio/mpeg")
    transcriber.text = "   "
    with pytest.raises(ProviderError, match="empty transcript"):
        execute_step(_step("stt"), _context(audio_storage_key="a.mp3"), deps)


# ── Text generation ──────────────────────────────────────────


def test_llm_uses_template_and_system_prompt(deps, text_generator, store):
    context = _context(text="topic")
    context.record(0, '{"complexity": "low"}')
    step = make_recipe(
        ("Classify", "llm", {}),
        ("Write", "llm", {
            "model_id": "gpt-5-mini",
            "system_prompt": "Be brief about {{original_input}}",
            "user_prompt_template": "Topic: {{original_input}} / {{step.0.json}}",
            "max_tokens": 1234,
        }),
    ).steps[1]

    output = execute_step(step, context, deps)

    call = text_generator.calls[0]
    assert call["model_id"] == "gpt-5-mini"
    assert call["user_message"] == 'Topic: topic / {"complexity":"low"}'
    assert call["system_prompt"] == "Be brief about topic"
    assert call["max_tokens"] == 1234
    assert output.text == "generated text"
    assert output.provider_response_id == "resp-1"
    # 1000 in * 0.25 + 500 out * 2.0 per million = $0.00125 -> 0 cents
    assert store.get_run_usage(output.run_id)[1] == "gpt-5-mini"


def test_llm_without_template_uses_running_output(deps, text_generator):
    execute_step(_step("llm", {"model_id": "claude-sonnet-4-5"}), _context(text="raw input"), deps)
    assert text_generator.calls[0]["user_message"] == "raw input"
    assert text_generator.calls[0]["system_prompt"] == ""


def test_web_search_only_for_openai(deps, text_generator):
    execute_step(_step("llm", {"model_id": "gpt-5.2", "web_search": True}), _context(text="q"), deps)
    execute_step(_step("llm", {"model_id": "gemini-2.0-flash", "web_search": True}), _context(text="q"), deps)
    assert [c["web_search"] for c in text_generator.calls] == [True, False]


def test_fetch_urls_prepends_context(deps, text_generator):
    class Fetcher:
        def fetch_context(self, message):
            return "[URL: https://news.example]\nfetched page"

    deps.url_fetcher = Fetcher()
    execute_step(
        _step("llm", {"model_id": "gpt-5-mini", "fetch_urls": True}),
        _context(text="summarize https://news.example"),
        deps,
    )
    assert text_generator.calls[0]["user_message"] == (
        "[URL: https://news.example]\nfetched page\n\nsummarize https://news.example"
    )


def test_input_image_is_attached(deps, storage, text_generator):
    storage.put("in/photo.png", b"\x89PNG", "image/png")
    execute_step(
        _step("llm", {"model_id": "gpt-5-mini"}),
        _context(text="describe", image_storage_key="in/photo.png", image_mime_type="image/png"),
        deps,
    )
    images = text_generator.calls[0]["images"]
    assert len(images) == 1
    assert images[0].mime_type == "image/png"


def test_llm_failure_marks_run_error(deps, text_generator, store):
    text_generator.replies = [RuntimeError("provider down")]
    with pytest.raises(RuntimeError, match="provider down"):
        execute_step(_step("llm", {"model_id": "gpt-5-mini"}), _context(text="x"), deps)
    row = store.db.execute("SELECT status, error_message FROM runs", fetch="one")
    assert row == {"status": "error", "error_message": "provider down"}


# ── Image ────────────────────────────────────────────────────


def test_image_generation_stores_artifact(deps, queue, storage, store):
    output = execute_step(_step("image"), _context(text="a bridge at dawn"), deps)

    data = json.loads(output.text)
    assert data["storageKey"].startswith(f"image/output/{output.run_id}/")
    assert data["storageKey"].endswith(".jpg")
    assert data["imageUrl"] == f"/api/files/{data['imageFileId']}"
    assert (data["width"], data["height"]) == (1024, 576)
    assert storage.objects[data["storageKey"]] == b"\xff\xd8artifact"

    endpoint, params = queue.submitted[0]
    assert endpoint == "fal-ai/flux/schnell"
    assert params["prompt"] == "a bridge at dawn"
    assert params["num_images"] == 1
    assert store.get_run_usage(output.run_id) == (3, "fal-ai/flux/schnell")
    assert store.count_files(output.run_id) == 1


def test_image_requires_prompt(deps, queue):
    with pytest.raises(StepError, match="requires a prompt"):
        execute_step(_step("image"), _context(), deps)
    assert queue.submitted == []


def test_image_timeout_persists_nothing(deps, storage, store):
    deps.queue = FakeQueueBackend(statuses=["IN_PROGRESS"])
    with pytest.raises(PollTimeoutError, match="Image generation timed out"):
        execute_step(_step("image"), _context(text="prompt"), deps)
    assert storage.objects == {}
    assert store.count_files() == 0


def test_image_without_results(deps):
    deps.queue = FakeQueueBackend(result={"images": []})
    with pytest.raises(ProviderError, match="No images"):
        execute_step(_step("image"), _context(text="prompt"), deps)


def test_png_keeps_extension(deps, storage):
    deps.queue = FakeQueueBackend(artifact=DownloadedArtifact(data=b"png", content_type="image/png"))
    data = json.loads(execute_step(_step("image"), _context(text="prompt"), deps).text)
    assert data["storageKey"].endswith(".png")
    assert storage.content_types[data["storageKey"]] == "image/png"


# ── Video ────────────────────────────────────────────────────


def _video_queue():
    return FakeQueueBackend(
        result={"video": {"url": "https://cdn.example/v.mp4", "width": 848, "height": 480,
                          "duration": 6, "fps": 24, "num_frames": 144}},
        artifact=DownloadedArtifact(data=b"mp4", content_type="application/octet-stream"),
    )


def test_text2video(deps, storage, store):
    deps.queue = _video_queue()
    step = _step("video", {"video_operation": "text2video", "video_duration": 40})

    output = execute_step(step, _context(text="drone shot"), deps)

    endpoint, params = deps.queue.submitted[0]
    assert endpoint == "xai/grok-imagine-video/text-to-video"
    assert params["duration"] == 15
    assert params["aspect_ratio"] == "16:9"
    data = json.loads(output.text)
    assert data["frameCount"] == 144
    assert storage.content_types[data["storageKey"]] == "video/mp4"
    # 6 seconds at $0.05 = 30 cents
    assert store.get_run_usage(output.run_id) == (30, "grok-imagine-video-480p")


def test_img2video_signs_input_image(deps):
    deps.queue = _video_queue()
    output = execute_step(
        _step("video", {"video_operation": "img2video"}),
        _context(text="animate", image_storage_key="in/photo.jpg"),
        deps,
    )
    params = deps.queue.submitted[0][1]
    assert params["aspect_ratio"] == "auto"
    assert params["image_url"] == "https://storage.example/in/photo.jpg?ttl=600"
    assert output.run_id


def test_img2video_requires_image(deps):
    with pytest.raises(StepError, match="requires an image"):
        execute_step(_step("video", {"video_operation": "img2video"}), _context(text="x"), deps)


def test_video_requires_prompt(deps):
    with pytest.raises(StepError, match="requires a prompt"):
        execute_step(_step("video"), _context(), deps)


# ── Output format ────────────────────────────────────────────


def test_output_format_step(deps):
    output = execute_step(_step("output_format", {"formats": ["markdown"]}), _context(text="body"), deps)
    assert output.text == "## Markdown\n\nbody"
    assert output.run_id is None


# ── Publish ──────────────────────────────────────────────────


ARTICLE_PAYLOAD = json.dumps({
    "format": "drupal_article",
    "title": "Naslov",
    "subtitle": "Podnaslov",
    "body": "<p>ok</p><script>alert(1)</script>",
    "featuredImage": {"storageKey": "image/output/r/pic.png"},
})


def _publish_context(workspace_id="ws"):
    context = _context(workspace_id=workspace_id, text="t")
    context.record(0, ARTICLE_PAYLOAD)
    return context


def _integrate(store, **overrides):
    values = {"workspace_id": "ws", "base_url": "https://cms.example", "credentials_enc": "enc"}
    values.update(overrides)
    store.save_publish_integration(PublishIntegration(**values))


def test_publish_skips_without_workspace(deps):
    output = execute_step(_step("drupal_publish"), _publish_context(workspace_id=None), deps)
    assert output.text == SKIP_NO_WORKSPACE


def test_publish_skips_without_integration(deps, store):
    assert execute_step(_step("drupal_publish"), _publish_context(), deps).text == SKIP_NO_INTEGRATION
    _integrate(store, is_enabled=False)
    assert execute_step(_step("drupal_publish"), _publish_context(), deps).text == SKIP_NO_INTEGRATION


def test_publish_skips_without_credentials(deps, store):
    _integrate(store, credentials_enc=None)
    assert execute_step(_step("drupal_publish"), _publish_context(), deps).text == SKIP_NO_CREDENTIALS


def test_publish_skips_without_payload(deps, store):
    _integrate(store)
    context = _context(workspace_id="ws", text="t")
    context.record(0, "just prose")
    assert execute_step(_step("drupal_publish"), context, deps).text == SKIP_NO_PAYLOAD


def test_publish_sends_sanitized_article(deps, store, storage, publisher):
    _integrate(store, publish_mode="publish")
    storage.put("image/output/r/pic.png", b"png-bytes", "image/png")

    output = execute_step(_step("drupal_publish"), _publish_context(), deps)

    request = publisher.requests[0]
    assert request.title == "Naslov"
    assert request.body_html == "<p>ok</p>"
    assert request.summary == "Podnaslov"
    assert request.status == "publish"
    assert request.featured_image.data == b"png-bytes"
    assert request.featured_image.content_type == "image/png"
    assert request.featured_image_name == "featured-image.png"

    data = json.loads(output.text)
    assert data["nodeId"] == "42"
    assert data["url"] == "https://cms.example/node/42"
    assert "imageError" not in data


def test_step_mode_overrides_integration(deps, store, publisher):
    _integrate(store, publish_mode="publish")
    execute_step(_step("drupal_publish", {"mode": "draft"}), _publish_context(), deps)
    assert publisher.requests[0].status == "draft"
    # Missing featured image in storage is non-fatal
    assert publisher.requests[0].featured_image is None
