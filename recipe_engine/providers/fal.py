"""fal.ai queue client (image and video generation).

Queue flow: submit -> poll status -> fetch result.
All requests go through https://queue.fal.run/{endpoint}; the submit
response carries the status and response URLs for the later calls.
"""

import logging
import os
from typing import Any, Optional

import httpx

from recipe_engine.errors import ProviderError
from recipe_engine.providers.http import download_url, raise_for_provider
from recipe_engine.providers.ports import DownloadedArtifact, QueueJob

logger = logging.getLogger(__name__)

FAL_QUEUE_BASE = os.environ.get("FAL_QUEUE_BASE", "https://queue.fal.run")


class FalQueueClient:
    """HTTP adapter for the fal.ai queue API.

    Requires FAL_KEY environment variable (or an explicit api_key).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = FAL_QUEUE_BASE,
        client: Optional[httpx.Client] = None,
    ):
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(connect=30.0, read=60.0, write=60.0, pool=30.0),
        )

    def _headers(self) -> dict[str, str]:
        api_key = self._api_key or os.environ.get("FAL_KEY")
        if not api_key:
            raise RuntimeError("FAL_KEY not set. Set the environment variable to use fal.ai.")
        return {"Authorization": f"Key {api_key}", "Content-Type": "application/json"}

    def submit(self, endpoint: str, params: dict[str, Any]) -> QueueJob:
        url = f"{self.base_url}/{endpoint}"
        try:
            response = self._client.post(url, json=params, headers=self._headers())
        except httpx.HTTPError as e:
            raise ProviderError(f"fal.ai submit failed: {e}", provider="fal") from e
        raise_for_provider(response, "fal.ai", "submit")

        data = response.json()
        request_id = data.get("request_id")
        if not request_id:
            raise ProviderError(f"fal.ai submit returned no request_id: {data}", provider="fal")

        logger.info(f"fal.ai submitted {endpoint}: request_id={request_id}")
        return QueueJob(
            request_id=request_id,
            status_url=data.get("status_url") or f"{url}/requests/{request_id}/status",
            response_url=data.get("response_url") or f"{url}/requests/{request_id}",
        )

    def poll_status(self, status_url: str) -> str:
        try:
            response = self._client.get(status_url, params={"logs": 1}, headers=self._headers())
        except httpx.HTTPError as e:
            raise ProviderError(f"fal.ai status failed: {e}", provider="fal") from e
        raise_for_provider(response, "fal.ai", "status")
        status = response.json().get("status", "")
        logger.debug(f"fal.ai status {status_url}: {status}")
        return status

    def fetch_result(self, response_url: str) -> dict[str, Any]:
        try:
            response = self._client.get(response_url, headers=self._headers())
        except httpx.HTTPError as e:
            raise ProviderError(f"fal.ai result failed: {e}", provider="fal") from e
        raise_for_provider(response, "fal.ai", "result")
        return response.json()

    def download(self, url: str) -> DownloadedArtifact:
        return download_url(url, client=self._client)
