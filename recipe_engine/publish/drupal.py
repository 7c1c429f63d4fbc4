"""Drupal publish client.

Two adapters:
- jsonapi: core JSON:API module, POST /jsonapi/node/{content_type}
- custom_rest: a site-specific endpoint, POST /morana/publish

Both authenticate with HTTP basic auth or a bearer token, retry 5xx
responses and transport errors (1s, then 3s), and return 4xx responses
without retrying.
"""

import base64
import ipaddress
import logging
import socket
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx

from recipe_engine.errors import ProviderError
from recipe_engine.providers.ports import PublishRequest, PublishResult

logger = logging.getLogger(__name__)

MAX_RETRIES = 2
RETRY_DELAYS = [1, 3]  # seconds

REQUEST_TIMEOUT = httpx.Timeout(10.0)


@dataclass
class DrupalConfig:
    base_url: str
    adapter_type: str = "jsonapi"
    auth_type: str = "basic"
    credentials: dict = field(default_factory=dict)
    default_content_type: str = "article"
    body_format: str = "basic_html"


def _resolve_host(hostname: str) -> list[str]:
    try:
        infos = socket.getaddrinfo(hostname, None)
    except socket.gaierror:
        return []
    return sorted({info[4][0] for info in infos})


def _is_blocked_ip(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped:
        ip = ip.ipv4_mapped
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


def validate_base_url(base_url: str, resolver: Callable[[str], list[str]] = _resolve_host) -> None:
    """Refuse base URLs that point at private or internal addresses.

    Raises:
        ValueError: the host is an internal address or does not resolve
    """
    hostname = httpx.URL(base_url).host
    if not hostname:
        raise ValueError(f"Invalid Drupal base URL: {base_url}")

    try:
        ipaddress.ip_address(hostname)
        addresses = [hostname]
    except ValueError:
        addresses = resolver(hostname)
        if not addresses:
            raise ValueError("Could not resolve Drupal hostname")

    for address in addresses:
        if _is_blocked_ip(address):
            raise ValueError("Drupal URL resolves to a private/internal IP address")


class DrupalClient:
    """Publisher for one Drupal site."""

    def __init__(
        self,
        config: DrupalConfig,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        resolver: Callable[[str], list[str]] = _resolve_host,
    ):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=REQUEST_TIMEOUT)
        self._sleep = sleep
        self._resolver = resolver

    def _auth_header(self) -> str:
        creds = self.config.credentials
        if self.config.auth_type == "basic":
            raw = f"{creds.get('username') or ''}:{creds.get('password') or ''}"
            return "Basic " + base64.b64encode(raw.encode("utf-8")).decode("ascii")
        return f"Bearer {creds.get('token') or ''}"

    def _post_with_retry(self, url: str, **kwargs) -> httpx.Response:
        last_error: Optional[Exception] = None
        for attempt in range(MAX_RETRIES + 1):
            try:
                response = self._client.post(url, **kwargs)
                if response.status_code < 500 or attempt == MAX_RETRIES:
                    return response
                last_error = ProviderError(
                    f"Drupal returned {response.status_code}",
                    provider="drupal",
                    status_code=response.status_code,
                )
            except httpx.HTTPError as e:
                last_error = e
                if attempt == MAX_RETRIES:
                    break

            delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
            logger.warning(f"Drupal POST {url} failed ({last_error}), retrying in {delay}s")
            self._sleep(delay)

        raise ProviderError(
            f"Drupal request failed after retries: {last_error}", provider="drupal"
        ) from last_error

    # ── Public API ───────────────────────────────────────────

    def test_connection(self) -> dict:
        """Probe the site. Returns {ok, latencyMs, drupalVersion?, error?}."""
        start = time.time()
        try:
            validate_base_url(self.base_url, self._resolver)
            path = "/jsonapi" if self.config.adapter_type == "jsonapi" else "/morana/health"
            response = self._client.get(
                f"{self.base_url}{path}",
                headers={
                    "Accept": "application/vnd.api+json, application/json",
                    "Authorization": self._auth_header(),
                },
            )
            latency_ms = int((time.time() - start) * 1000)
            if not response.is_success:
                return {
                    "ok": False,
                    "latencyMs": latency_ms,
                    "error": f"HTTP {response.status_code}: {response.reason_phrase}",
                }
            version = response.headers.get("x-drupal-cache") or response.headers.get("x-generator")
            return {"ok": True, "latencyMs": latency_ms, "drupalVersion": version}
        except Exception as e:
            return {
                "ok": False,
                "latencyMs": int((time.time() - start) * 1000),
                "error": str(e) or "Connection failed",
            }

    def publish(self, request: PublishRequest) -> PublishResult:
        validate_base_url(self.base_url, self._resolver)
        if self.config.adapter_type == "custom_rest":
            return self._publish_custom_rest(request)
        return self._publish_jsonapi(request)

    # ── JSON:API adapter ─────────────────────────────────────

    def _upload_image(self, request: PublishRequest, content_type: str) -> str:
        """Upload the featured image to the node's image field. Returns the file UUID."""
        image = request.featured_image
        url = f"{self.base_url}/jsonapi/node/{content_type}/field_image"
        response = self._post_with_retry(
            url,
            content=image.data,
            headers={
                "Content-Type": "application/octet-stream",
                "Accept": "application/vnd.api+json",
                "Content-Disposition": f'file; filename="{request.featured_image_name}"',
                "Authorization": self._auth_header(),
            },
        )
        if not response.is_success:
            raise ProviderError(
                f"Drupal image upload error {response.status_code}: {response.text[:500]}",
                provider="drupal",
                status_code=response.status_code,
            )
        file_uuid = (response.json().get("data") or {}).get("id")
        if not file_uuid:
            raise ProviderError("Drupal image upload returned no file id", provider="drupal")
        return file_uuid

    def _publish_jsonapi(self, request: PublishRequest) -> PublishResult:
        content_type = self.config.default_content_type
        is_published = request.status == "publish"

        image_uploaded = False
        image_error = None
        relationships = {}
        if request.featured_image is not None:
            try:
                file_uuid = self._upload_image(request, content_type)
                relationships["field_image"] = {"data": {"type": "file--file", "id": file_uuid}}
                image_uploaded = True
            except Exception as e:
                image_error = str(e)
                logger.warning(f"Featured image upload failed (non-fatal): {e}")

        node = {
            "type": f"node--{content_type}",
            "attributes": {
                "title": request.title,
                "body": {
                    "value": request.body_html,
                    "format": self.config.body_format,
                    "summary": request.summary or "",
                },
                "status": is_published,
            },
        }
        if relationships:
            node["relationships"] = relationships

        response = self._post_with_retry(
            f"{self.base_url}/jsonapi/node/{content_type}",
            json={"data": node},
            headers={
                "Content-Type": "application/vnd.api+json",
                "Accept": "application/vnd.api+json",
                "Authorization": self._auth_header(),
            },
        )
        if not response.is_success:
            raise ProviderError(
                f"Drupal JSON:API error {response.status_code}: {response.text[:500]}",
                provider="drupal",
                status_code=response.status_code,
            )

        data = response.json().get("data") or {}
        attributes = data.get("attributes") or {}
        result = PublishResult(
            node_id=str(attributes.get("drupal_internal__nid") or ""),
            node_uuid=str(data.get("id") or ""),
            url=((data.get("links") or {}).get("self") or {}).get("href"),
            status="published" if is_published else "draft",
            image_uploaded=image_uploaded,
            image_error=image_error,
        )
        logger.info(f"Drupal node {result.node_id} created ({result.status})")
        return result

    # ── Custom REST adapter ──────────────────────────────────

    def _publish_custom_rest(self, request: PublishRequest) -> PublishResult:
        response = self._post_with_retry(
            f"{self.base_url}/morana/publish",
            json={
                "title": request.title,
                "body_html": request.body_html,
                "summary": request.summary or "",
                "status": request.status,
            },
            headers={
                "Content-Type": "application/json",
                "Authorization": self._auth_header(),
            },
        )
        if not response.is_success:
            raise ProviderError(
                f"Drupal custom REST error {response.status_code}: {response.text[:500]}",
                provider="drupal",
                status_code=response.status_code,
            )

        data = response.json()
        return PublishResult(
            node_id=str(data.get("nid") or ""),
            node_uuid=str(data.get("uuid") or ""),
            url=data.get("url"),
            status=data.get("status") or request.status,
            image_error=(
                "Featured image upload is not supported by the custom_rest adapter"
                if request.featured_image is not None else None
            ),
        )
