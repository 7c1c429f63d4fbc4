"""Shared fixtures: a SQLite store in tmp_path and in-memory provider fakes."""

import os

# Keep module-level config deterministic regardless of the developer's shell
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["TELEGRAM_CHAT_ID"] = ""

import pytest

from recipe_engine.executor.db import Database
from recipe_engine.executor.schemas import ExecutionInput
from recipe_engine.executor.steps import StepDependencies
from recipe_engine.executor.store import SqlExecutionStore
from recipe_engine.llm.backends import LLMCallResult
from recipe_engine.providers.ports import (
    DownloadedArtifact,
    PublishResult,
    QueueJob,
    TranscriptionResult,
)
from recipe_engine.recipes.schemas import RecipeDefinition


class FakeTextGenerator:
    """Returns scripted replies in order; the last one repeats."""

    def __init__(self, replies=None, input_tokens=1000, output_tokens=500):
        self.replies = list(replies or ["generated text"])
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.calls = []

    def generate(self, model_id, user_message, *, system_prompt="", images=None,
                 web_search=False, max_tokens=8000, label=""):
        self.calls.append({
            "model_id": model_id,
            "user_message": user_message,
            "system_prompt": system_prompt,
            "images": images,
            "web_search": web_search,
            "max_tokens": max_tokens,
        })
        index = min(len(self.calls) - 1, len(self.replies) - 1)
        reply = self.replies[index]
        if isinstance(reply, Exception):
            raise reply
        return LLMCallResult(
            content=reply,
            model_id=model_id,
            provider="fake",
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            duration_ms=120,
            response_id=f"resp-{len(self.calls)}",
        )


class FakeTranscriber:
    def __init__(self, text="transcribed speech", duration_seconds=60.0):
        self.text = text
        self.duration_seconds = duration_seconds
        self.calls = []

    def transcribe(self, audio, *, mime_type, language, model):
        self.calls.append({"audio": audio, "mime_type": mime_type, "language": language, "model": model})
        return TranscriptionResult(text=self.text, duration_seconds=self.duration_seconds, latency_ms=900)


class FakeQueueBackend:
    """Queue backend replaying a list of statuses; the last status repeats."""

    def __init__(self, statuses=None, result=None, artifact=None):
        self.statuses = list(statuses or ["IN_QUEUE", "IN_PROGRESS", "COMPLETED"])
        self.result = result if result is not None else {
            "images": [{"url": "https://cdn.example/img.jpg", "width": 1024, "height": 576,
                        "content_type": "image/jpeg"}],
        }
        self.artifact = artifact or DownloadedArtifact(data=b"\xff\xd8artifact", content_type="image/jpeg")
        self.submitted = []
        self.polls = 0
        self.downloads = []

    def submit(self, endpoint, params):
        self.submitted.append((endpoint, params))
        return QueueJob(
            request_id="req-1",
            status_url="https://queue.example/req-1/status",
            response_url="https://queue.example/req-1",
        )

    def poll_status(self, status_url):
        status = self.statuses[min(self.polls, len(self.statuses) - 1)]
        self.polls += 1
        return status

    def fetch_result(self, response_url):
        return self.result

    def download(self, url):
        self.downloads.append(url)
        return self.artifact


class InMemoryStorage:
    def __init__(self, objects=None):
        self.objects = dict(objects or {})
        self.content_types = {}

    def put(self, key, data, content_type):
        self.objects[key] = data
        self.content_types[key] = content_type

    def get(self, key):
        if key not in self.objects:
            raise FileNotFoundError(key)
        return self.objects[key]

    def signed_url(self, key, ttl_seconds=600):
        return f"https://storage.example/{key}?ttl={ttl_seconds}"


class FakeScheduler:
    """Virtual clock: sleeping advances time instantly."""

    def __init__(self):
        self.time = 0.0
        self.sleeps = []

    def now(self):
        return self.time

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.time += seconds


class FakePublisher:
    def __init__(self, result=None):
        self.requests = []
        self.result = result or PublishResult(
            node_id="42",
            node_uuid="uuid-42",
            url="https://cms.example/node/42",
            status="draft",
            image_uploaded=False,
        )

    def publish(self, request):
        self.requests.append(request)
        return self.result


@pytest.fixture
def store(tmp_path):
    return SqlExecutionStore(Database(url="", sqlite_path=tmp_path / "recipes.db"))


@pytest.fixture
def text_generator():
    return FakeTextGenerator()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def queue():
    return FakeQueueBackend()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def deps(store, text_generator, transcriber, queue, storage, scheduler, publisher):
    return StepDependencies(
        store=store,
        text_generator=text_generator,
        transcriber=transcriber,
        queue=queue,
        storage=storage,
        downloader=lambda url: DownloadedArtifact(data=b"downloaded-audio", content_type="audio/wav"),
        publisher_factory=lambda integration, credentials: publisher,
        scheduler=scheduler,
        decrypt=lambda encrypted: {"username": "editor", "password": "secret"},
    )


def make_recipe(*steps, name="Test recipe"):
    """Recipe from (name, type, config) tuples, indexed in order."""
    return RecipeDefinition.model_validate({
        "name": name,
        "steps": [
            {"index": i, "name": step_name, "type": step_type, "config": config}
            for i, (step_name, step_type, config) in enumerate(steps)
        ],
    })


@pytest.fixture
def create_execution(store):
    """Save a recipe and create a pending execution for it. Returns the execution id."""

    def _create(recipe, workspace_id=None, **input_fields):
        recipe_id = store.save_recipe(recipe)
        execution = store.create_execution(
            recipe_id, ExecutionInput(**input_fields), workspace_id=workspace_id
        )
        return execution.id

    return _create
