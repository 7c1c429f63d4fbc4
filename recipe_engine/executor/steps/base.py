"""Shared plumbing for step executors.

`StepDependencies` bundles the collaborators a step may call. The
runner builds one per process (`StepDependencies.from_env`) and tests
build one from fakes.

`tracked_run` wraps a provider call in a `runs` row: created before the
call, marked done after it, marked error (and re-raised) on failure.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

from recipe_engine.executor.poller import Scheduler, SystemScheduler
from recipe_engine.executor.schemas import PublishIntegration
from recipe_engine.executor.store import ExecutionStore
from recipe_engine.providers.http import download_url
from recipe_engine.providers.ports import (
    Downloader,
    ObjectStorage,
    Publisher,
    QueueBackend,
    TextGenerator,
    Transcriber,
    UrlFetcher,
)

logger = logging.getLogger(__name__)

PublisherFactory = Callable[[PublishIntegration, dict], Publisher]


def drupal_publisher(integration: PublishIntegration, credentials: dict) -> Publisher:
    """Default publisher factory: a Drupal client for the workspace integration."""
    from recipe_engine.publish.drupal import DrupalClient, DrupalConfig

    return DrupalClient(
        DrupalConfig(
            base_url=integration.base_url,
            adapter_type=integration.adapter_type,
            auth_type=integration.auth_type,
            credentials=credentials,
            default_content_type=integration.default_content_type,
            body_format=integration.body_format,
        )
    )


@dataclass
class StepDependencies:
    """Collaborators available to step executors."""

    store: ExecutionStore
    text_generator: TextGenerator
    transcriber: Transcriber
    queue: QueueBackend
    storage: ObjectStorage
    url_fetcher: Optional[UrlFetcher] = None
    downloader: Downloader = download_url
    publisher_factory: PublisherFactory = drupal_publisher
    scheduler: Scheduler = field(default_factory=SystemScheduler)
    decrypt: Optional[Callable[[str], dict]] = None

    @classmethod
    def from_env(cls, store: ExecutionStore, scheduler: Optional[Scheduler] = None) -> "StepDependencies":
        """Production wiring. API keys are read on first use, not here."""
        from recipe_engine.llm.client import LLMService
        from recipe_engine.providers.fal import FalQueueClient
        from recipe_engine.providers.soniox import SonioxTranscriber
        from recipe_engine.providers.storage import get_storage
        from recipe_engine.providers.url_fetcher import HttpUrlFetcher

        scheduler = scheduler or SystemScheduler()
        return cls(
            store=store,
            text_generator=LLMService(),
            transcriber=SonioxTranscriber(scheduler=scheduler),
            queue=FalQueueClient(),
            storage=get_storage(),
            url_fetcher=HttpUrlFetcher(),
            scheduler=scheduler,
        )

    def decrypt_credentials(self, encrypted: str) -> dict:
        if self.decrypt is not None:
            return self.decrypt(encrypted)
        from recipe_engine.publish.crypto import decrypt_credentials

        return decrypt_credentials(encrypted)


@contextmanager
def tracked_run(
    store: ExecutionStore,
    run_type: str,
    provider: str,
    model: str,
    *,
    execution_id: Optional[str],
    step_index: int,
) -> Iterator[str]:
    """Create a run row for one provider call and settle its status."""
    run_id = store.create_run(
        run_type, provider, model, execution_id=execution_id, step_index=step_index
    )
    try:
        yield run_id
    except Exception as e:
        store.update_run(run_id, "error", error_message=str(e) or type(e).__name__)
        raise
    store.update_run(run_id, "done")
