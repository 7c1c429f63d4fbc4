"""URL detection and page-text fetching for prompt context injection.

Finds URLs in a prompt, fetches them server-side, reduces HTML to
readable text and returns one context block to prepend to the prompt.
"""

import html
import json
import logging
import re
from dataclasses import dataclass
from typing import Optional

import html2text
import httpx

logger = logging.getLogger(__name__)

URL_RE = re.compile(r"https?://[^\s<>\"')\]]+", re.IGNORECASE)
MAX_URLS = 3
FETCH_TIMEOUT = 8.0
MAX_CONTENT_CHARS = 12_000  # per URL
MAX_TOTAL_CHARS = 30_000  # across all URLs

CONTEXT_HEADER = (
    "---\nThe user's message contains URLs. Here is the fetched content from those pages. "
    "Use ONLY the information provided below. Do not infer facts not present in the text.\n\n"
)

_STRIP_BLOCKS_RE = re.compile(
    r"<(script|style|nav|footer|aside)\b[\s\S]*?</\1\s*>", re.IGNORECASE
)
_MAIN_RE = re.compile(r"<(?:article|main)[^>]*>([\s\S]*?)</(?:article|main)>", re.IGNORECASE)
_TITLE_RE = re.compile(r"<title[^>]*>([\s\S]*?)</title>", re.IGNORECASE)
_META_DESC_RE = re.compile(
    r"<meta[^>]*(?:name|property)=[\"'](?:description|og:description)[\"'][^>]*"
    r"content=[\"']([\s\S]*?)[\"'][^>]*>",
    re.IGNORECASE,
)


@dataclass
class FetchedPage:
    url: str
    title: str = ""
    meta: str = ""
    content: str = ""
    error: Optional[str] = None


def extract_urls(text: str) -> list[str]:
    """Unique URLs in order of appearance, trailing punctuation stripped."""
    seen: list[str] = []
    for match in URL_RE.findall(text):
        url = re.sub(r"[.,;:!?)]+$", "", match)
        if url not in seen:
            seen.append(url)
    return seen[:MAX_URLS]


def _collapse_lines(text: str) -> str:
    lines = (re.sub(r"\s+", " ", line).strip() for line in text.split("\n"))
    joined = "\n".join(line for line in lines if line)
    return re.sub(r"\n{3,}", "\n\n", joined).strip()


def html_to_text(page_html: str) -> tuple[str, str]:
    """Return (title, readable text) from an HTML page."""
    title_match = _TITLE_RE.search(page_html)
    title = re.sub(r"\s+", " ", html.unescape(title_match.group(1))).strip() if title_match else ""

    cleaned = _STRIP_BLOCKS_RE.sub("", page_html)
    main = _MAIN_RE.search(cleaned)
    if main:
        cleaned = main.group(1)

    converter = html2text.HTML2Text()
    converter.ignore_links = True
    converter.ignore_images = True
    converter.unicode_snob = True
    converter.body_width = 0
    return title, _collapse_lines(converter.handle(cleaned))


class HttpUrlFetcher:
    """Fetches pages with httpx and builds the prompt context block."""

    def __init__(self, client: Optional[httpx.Client] = None):
        self._client = client or httpx.Client(
            timeout=FETCH_TIMEOUT,
            follow_redirects=True,
            headers={
                "User-Agent": "Mozilla/5.0 (compatible; RecipeEngine/1.0)",
                "Accept": "text/html,application/xhtml+xml,text/plain,application/json",
            },
        )

    def fetch_page(self, url: str) -> FetchedPage:
        try:
            response = self._client.get(url)
        except httpx.TimeoutException:
            return FetchedPage(url=url, error="Timeout")
        except httpx.HTTPError as e:
            return FetchedPage(url=url, error=str(e))

        if not response.is_success:
            return FetchedPage(url=url, error=f"HTTP {response.status_code}")

        content_type = response.headers.get("content-type", "")
        body = response.text

        if "application/json" in content_type:
            try:
                body = json.dumps(json.loads(body), indent=2, ensure_ascii=False)
            except ValueError:
                pass  # serve the raw body
            return FetchedPage(url=url, title="JSON response", content=body[:MAX_CONTENT_CHARS])

        if "text/plain" in content_type:
            name = url.rstrip("/").rsplit("/", 1)[-1] or "Text"
            return FetchedPage(url=url, title=name, content=body[:MAX_CONTENT_CHARS])

        title, text = html_to_text(body)
        meta_match = _META_DESC_RE.search(body)
        meta = re.sub(r"\s+", " ", html.unescape(meta_match.group(1))).strip() if meta_match else ""
        return FetchedPage(
            url=url,
            title=title or url,
            meta=meta,
            content=text[:MAX_CONTENT_CHARS],
        )

    def fetch_context(self, message: str) -> str:
        """Context block for the URLs in `message`, or "" when there are none."""
        urls = extract_urls(message)
        if not urls:
            return ""

        blocks: list[str] = []
        total_chars = 0
        for url in urls:
            page = self.fetch_page(url)
            if page.error or not page.content:
                logger.warning(f"URL fetch failed for {url}: {page.error or 'empty content'}")
                blocks.append(f"[URL: {url}]\n(Failed to fetch: {page.error or 'empty content'})\n")
                continue

            available = MAX_TOTAL_CHARS - total_chars
            if available <= 200:
                break

            parts = [f"[URL: {page.url}]" + (f" - {page.title}" if page.title else "")]
            if page.meta:
                parts.append(f"[META] {page.meta}")
            content = page.content[:available]
            parts.append(content)
            if len(content) < len(page.content):
                parts.append("[...truncated]")

            block = "\n".join(parts) + "\n"
            total_chars += len(block)
            blocks.append(block)

        logger.info(f"Fetched {len(urls)} URLs for prompt context ({total_chars:,} chars)")
        return CONTEXT_HEADER + "\n".join(blocks) + "---"
