"""Tests for completion notifications."""

import json

import httpx
from conftest import make_recipe

from recipe_engine.executor.notifier import TelegramNotifier, build_completion_text
from recipe_engine.executor.schemas import (
    Execution,
    ExecutionInput,
    ExecutionStatus,
    StepResult,
    StepResultStatus,
)


def _execution(**overrides):
    values = {
        "id": "e1",
        "recipe_id": "r1",
        "recipe_name": "NOVINAR",
        "status": ExecutionStatus.DONE,
        "started_at": "2025-01-01T10:00:00+00:00",
        "finished_at": "2025-01-01T10:00:42+00:00",
        "total_cost_cents": 12,
        "confidence_score": 85,
    }
    values.update(overrides)
    return Execution(**values)


def _article_result():
    payload = {"title": "Most <odprt>", "subtitle": "Podnaslov", "body": "<p>x</p>"}
    return StepResult(
        execution_id="e1", step_index=2, status=StepResultStatus.DONE,
        output_full={"text": json.dumps(payload)},
    )


def test_done_message():
    text = build_completion_text(
        _execution(warning_flag="high_risk", preview_hash="abc123"),
        [_article_result()],
        app_url="https://app.example",
    )
    lines = text.split("\n")
    assert lines[0] == "✅ <b>NOVINAR</b> — done"
    assert lines[1] == "⏱ 42s • 💰 $0.120 • 🟢 85%"
    assert "📰 <b>Most &lt;odprt&gt;</b>" in text
    assert "<i>Podnaslov</i>" in text
    assert "🔴 HIGH RISK" in text
    assert '<a href="https://app.example/preview/abc123">Open preview</a>' in text


def test_error_message_is_truncated_and_escaped():
    execution = _execution(status=ExecutionStatus.ERROR, error_message="<bad> " + "x" * 300)
    text = build_completion_text(execution, [])
    assert text.startswith("❌ <b>NOVINAR</b> — error\n\n&lt;bad&gt; ")
    assert len(text.split("\n\n", 1)[1]) < 220


def test_review_warning_and_no_stats():
    text = build_completion_text(
        _execution(started_at=None, total_cost_cents=0, confidence_score=None, warning_flag="needs_review"),
        [],
    )
    assert text == "✅ <b>NOVINAR</b> — done\n\n⚠️ Needs review"


def _finished_execution(store, status=ExecutionStatus.DONE, chat_id="chat-1"):
    recipe_id = store.save_recipe(make_recipe(("Write", "llm", {}), name="NOVINAR"))
    execution = store.create_execution(recipe_id, ExecutionInput(text="x"), notify_chat_id=chat_id)
    store.mark_running(execution.id)
    store.finish_execution(execution.id, status, error_message="boom", current_step=1)
    return execution.id


def _telegram(store, handler, **kwargs):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return TelegramNotifier(store, bot_token="token", default_chat_id="", app_url="", client=client, **kwargs)


def test_sends_html_message(store):
    sent = []

    def handler(request):
        sent.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"ok": True})

    execution_id = _finished_execution(store)
    _telegram(store, handler).notify(execution_id)

    path, body = sent[0]
    assert path == "/bottoken/sendMessage"
    assert body["chat_id"] == "chat-1"
    assert body["parse_mode"] == "HTML"
    assert body["text"].startswith("✅ <b>NOVINAR</b>")


def test_retries_without_parse_mode(store):
    sent = []

    def handler(request):
        body = json.loads(request.content)
        sent.append(body)
        if "parse_mode" in body:
            return httpx.Response(400, json={"ok": False, "description": "can't parse entities"})
        return httpx.Response(200, json={"ok": True})

    _telegram(store, handler).notify(_finished_execution(store, ExecutionStatus.ERROR))

    assert len(sent) == 2
    assert "parse_mode" not in sent[1]
    assert sent[1]["text"].startswith("❌")


def test_skips_without_chat_or_non_terminal(store):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"ok": True})

    notifier = _telegram(store, handler)
    notifier.notify(_finished_execution(store, chat_id=None))
    notifier.notify(_finished_execution(store, ExecutionStatus.CANCELLED))
    notifier.notify("missing")
    assert calls == []


def test_transport_errors_are_swallowed(store):
    def handler(request):
        raise httpx.ConnectError("unreachable")

    _telegram(store, handler).notify(_finished_execution(store))
