"""Shared HTTP helpers for provider adapters."""

import logging
from typing import Optional

import httpx

from recipe_engine.errors import ProviderError
from recipe_engine.providers.ports import DownloadedArtifact

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = httpx.Timeout(connect=30.0, read=300.0, write=30.0, pool=30.0)


def raise_for_provider(response: httpx.Response, provider: str, action: str) -> None:
    """Raise ProviderError for a non-2xx response, with a trimmed body."""
    if response.is_success:
        return
    body = response.text[:500]
    raise ProviderError(
        f"{provider} {action} failed ({response.status_code}): {body}",
        provider=provider,
        status_code=response.status_code,
    )


def download_url(url: str, client: Optional[httpx.Client] = None) -> DownloadedArtifact:
    """Download a binary artifact (audio input, generated image/video)."""
    owns_client = client is None
    client = client or httpx.Client(timeout=DOWNLOAD_TIMEOUT, follow_redirects=True)
    try:
        response = client.get(url)
        raise_for_provider(response, "download", f"GET {url[:100]}")
        content_type = response.headers.get("content-type", "application/octet-stream")
        logger.info(f"Downloaded {len(response.content):,} bytes ({content_type})")
        return DownloadedArtifact(data=response.content, content_type=content_type.split(";")[0])
    except httpx.HTTPError as e:
        raise ProviderError(f"Download failed: {e}", provider="download") from e
    finally:
        if owns_client:
            client.close()
