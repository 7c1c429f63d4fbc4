"""Error taxonomy shared by step executors and provider adapters.

- StepError: required upstream data is missing (input error). Never retried.
- ProviderError: transport failure, non-2xx response or empty result.
- PollTimeoutError: an async generation job missed its polling deadline.

The execution controller treats all of them the same way (fail the step,
fail the run). The distinction exists for logging and for adapters that
retry provider errors internally.
"""

from typing import Optional


class StepError(Exception):
    """A step cannot run because its inputs are missing or invalid."""


class ProviderError(Exception):
    """An external provider call failed or returned an unusable result."""

    def __init__(
        self,
        message: str,
        provider: str = "",
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class PollTimeoutError(TimeoutError):
    """An async job did not report completion before its deadline."""
