"""Polling loop for queue-based generation backends.

Submit happens elsewhere; this module owns the wait: check status at an
interval that starts small and grows geometrically up to a cap, until the
job reports completion or a hard wall-clock deadline passes.

Time is read and spent through a `Scheduler`, so tests drive the loop on
a virtual clock instead of sleeping.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Protocol

from recipe_engine.errors import PollTimeoutError, ProviderError

logger = logging.getLogger(__name__)


class Scheduler(Protocol):
    """Clock and sleep used by the poller."""

    def now(self) -> float:
        """Monotonic time in seconds."""
        ...

    def sleep(self, seconds: float) -> None: ...


class SystemScheduler:
    """Wall-clock scheduler. `stop()` interrupts any pending sleep."""

    def __init__(self):
        self._stopped = threading.Event()

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if self._stopped.wait(max(0.0, seconds)):
            raise InterruptedError("Scheduler stopped")

    def stop(self) -> None:
        self._stopped.set()


@dataclass(frozen=True)
class PollPolicy:
    """Backoff parameters for one kind of async job (seconds)."""

    initial_interval: float
    multiplier: float
    max_interval: float
    timeout: float


IMAGE_POLL_POLICY = PollPolicy(initial_interval=1.0, multiplier=1.3, max_interval=5.0, timeout=60.0)
VIDEO_POLL_POLICY = PollPolicy(initial_interval=2.0, multiplier=1.2, max_interval=8.0, timeout=280.0)
TRANSCRIPTION_POLL_POLICY = PollPolicy(initial_interval=1.0, multiplier=1.5, max_interval=5.0, timeout=600.0)


def backoff_intervals(policy: PollPolicy) -> Iterator[float]:
    """Infinite, non-decreasing sequence of sleep intervals capped at max_interval."""
    interval = min(policy.initial_interval, policy.max_interval)
    while True:
        yield interval
        interval = min(interval * policy.multiplier, policy.max_interval)


def poll_until_complete(
    check_status: Callable[[], str],
    policy: PollPolicy,
    scheduler: Scheduler,
    *,
    completed: tuple[str, ...] = ("COMPLETED",),
    failed: tuple[str, ...] = ("FAILED", "ERROR"),
    timeout_message: str = "Async job timed out",
    label: str = "",
) -> str:
    """Wait until `check_status()` reports a completed status.

    The loop sleeps first, then checks. No sleep extends past the deadline.

    Returns:
        The completed status string.

    Raises:
        PollTimeoutError: deadline passed without completion
        ProviderError: the job reported a failed status
    """
    start = scheduler.now()
    deadline = start + policy.timeout
    polls = 0

    for interval in backoff_intervals(policy):
        remaining = deadline - scheduler.now()
        if remaining <= 0:
            break

        scheduler.sleep(min(interval, remaining))
        status = check_status()
        polls += 1

        if status in completed:
            elapsed = scheduler.now() - start
            logger.info(f"[{label}] Completed after {polls} polls, {elapsed:.1f}s")
            return status
        if status in failed:
            raise ProviderError(f"{label or 'Async job'} failed with status {status}")

    logger.warning(f"[{label}] Timed out after {polls} polls ({policy.timeout:.0f}s)")
    raise PollTimeoutError(timeout_message)
